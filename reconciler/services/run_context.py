import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from ..models import utc_now

logger = logging.getLogger(__name__)

ProgressListener = Callable[["ProgressUpdate"], None]


@dataclass(frozen=True)
class ProgressUpdate:
    activity: str
    status: str
    current_step: int
    total_steps: int

    @property
    def percent_complete(self) -> int:
        if self.total_steps <= 0:
            return 0
        return int(self.current_step * 100 / self.total_steps)


@dataclass
class RunContext:
    """
    Request-scoped state for one reconciliation run.

    Carries the dry-run flag and the progress position, and is passed
    explicitly to every stage instead of living in module globals.
    """
    dry_run: bool = False
    started_at: datetime = field(default_factory=utc_now)
    listeners: List[ProgressListener] = field(default_factory=list)
    history: List[ProgressUpdate] = field(default_factory=list)

    def report_progress(
        self, activity: str, status: str, current_step: int, total_steps: int
    ) -> ProgressUpdate:
        update = ProgressUpdate(activity, status, current_step, total_steps)
        self.history.append(update)
        logger.info(f"[{activity}] {status} ({current_step}/{total_steps})")
        for listener in self.listeners:
            listener(update)
        return update

    @property
    def last_update(self) -> Optional[ProgressUpdate]:
        return self.history[-1] if self.history else None
