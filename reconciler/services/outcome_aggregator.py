import logging
from collections import Counter
from typing import Any, Dict, List

from ..models import TERMINAL_OPERATIONS, DeviceRecord, Operation
from .group_reconciler import DomainOutcome

logger = logging.getLogger(__name__)


class OutcomeAggregator:
    """
    Collects domain outcomes into one ordered result set.

    Domains appear in processing order. Within a domain the add-path records
    come first, followed by the remove-path records.
    """

    def __init__(self):
        self.domain_outcomes: List[DomainOutcome] = []

    def add(self, outcome: DomainOutcome) -> None:
        self.domain_outcomes.append(outcome)
        logger.debug(
            f"Collected {len(outcome.records)} outcomes for {outcome.label}"
            + (" (failed)" if outcome.failed else "")
        )

    @property
    def records(self) -> List[DeviceRecord]:
        records = []
        for outcome in self.domain_outcomes:
            records.extend(outcome.records)
        return records

    @property
    def failed_domains(self) -> List[str]:
        return [outcome.label for outcome in self.domain_outcomes if outcome.failed]

    @property
    def has_failures(self) -> bool:
        if self.failed_domains:
            return True
        counts = self.counts()
        return counts[Operation.ADD_FAILED] > 0 or counts[Operation.REMOVE_FAILED] > 0

    def counts(self) -> Counter:
        counts = Counter({operation: 0 for operation in TERMINAL_OPERATIONS})
        counts.update(record.operation for record in self.records if record.operation.is_terminal)
        return counts

    def summary(self) -> Dict[str, Any]:
        """
        Summary counts across every domain.

        ``removed_total`` counts Skipped devices alongside Removed ones: both
        are devices the run chose not to manage. Skipped devices are never
        actually removed from the group.
        """
        counts = self.counts()
        summary = {operation.value: counts[operation] for operation in TERMINAL_OPERATIONS}
        summary["total"] = sum(counts.values())
        summary["removed_total"] = counts[Operation.REMOVED] + counts[Operation.SKIPPED]
        summary["domains"] = len(self.domain_outcomes)
        summary["failed_domains"] = self.failed_domains
        return summary

    def domain_rows(self) -> List[Dict[str, Any]]:
        """One row per domain entry, used for the report's domain table."""
        rows = []
        for outcome in self.domain_outcomes:
            counts = Counter(record.operation.value for record in outcome.records)
            rows.append({
                "DomainLabel": outcome.label,
                "Server": outcome.server,
                "Group": outcome.group,
                "Status": _domain_status(outcome),
                "Added": counts.get(Operation.ADDED.value, 0),
                "Present": counts.get(Operation.PRESENT.value, 0),
                "Removed": counts.get(Operation.REMOVED.value, 0),
                "Skipped": counts.get(Operation.SKIPPED.value, 0),
                "Failed": counts.get(Operation.ADD_FAILED.value, 0)
                + counts.get(Operation.REMOVE_FAILED.value, 0),
                "Errors": "; ".join(outcome.errors),
            })
        return rows


def _domain_status(outcome: DomainOutcome) -> str:
    if outcome.configuration_failed:
        return "ConfigurationError"
    if outcome.removals_suppressed:
        return "PartialLookupFailure"
    if outcome.lookup_failed:
        return "LookupFailed"
    return "Completed"
