from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Operation(str, Enum):
    """Outcome classification recorded for each device in a run."""
    PROCESSING = "Processing"
    PRESENT = "Present"
    ADDED = "Added"
    ADD_FAILED = "AddFailed"
    SKIPPED = "Skipped"
    REMOVED = "Removed"
    REMOVE_FAILED = "RemoveFailed"

    @property
    def is_terminal(self) -> bool:
        return self is not Operation.PROCESSING


TERMINAL_OPERATIONS = [op for op in Operation if op.is_terminal]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GroupHandle:
    """A group resolved to a unique directory identity."""
    distinguished_name: str
    security_identifier: str
    name: str
    server: str


@dataclass
class DeviceRecord:
    """
    Canonical device entity exchanged between the reconciliation components.

    Records are created fresh each run by the candidate resolver or the
    membership fetcher. Only the reconciler changes ``operation`` and
    ``observed_at`` afterwards.
    """
    security_identifier: str
    name: str
    operating_system: str = ""
    distinguished_name: str = ""
    group: str = ""
    server: str = ""
    operation: Operation = Operation.PROCESSING
    observed_at: datetime = field(default_factory=utc_now)
    domain_label: str = ""
    message: Optional[str] = None
    dry_run: bool = False

    @property
    def has_operating_system(self) -> bool:
        return bool(self.operating_system and self.operating_system.strip())

    def mark(self, operation: Operation, message: Optional[str] = None) -> "DeviceRecord":
        """Set the outcome classification and refresh the observation time."""
        self.operation = operation
        self.message = message
        self.observed_at = utc_now()
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the record for report rendering and JSON audit lines."""
        return {
            "DomainLabel": self.domain_label,
            "Server": self.server,
            "Group": self.group,
            "Name": self.name,
            "SecurityIdentifier": self.security_identifier,
            "OperatingSystem": self.operating_system,
            "DistinguishedName": self.distinguished_name,
            "Operation": self.operation.value,
            "DryRun": self.dry_run,
            "Message": self.message or "",
            "ObservedAt": self.observed_at.isoformat(),
        }
