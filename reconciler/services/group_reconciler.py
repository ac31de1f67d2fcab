"""
Group membership reconciler.

Converges one group's membership toward its desired candidate set:

1. Fetch the membership snapshot (fixed for the whole domain entry)
2. Resolve the candidate set from the configured search locations
3. Add path: classify every candidate, adding the ones not yet present
4. Remove path: evict every snapshot member the add path did not keep

Every device is mutated at most once per run, and a failed mutation is
recorded on that device alone without interrupting the rest of the batch.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from ..exceptions import DirectoryLookupError, DirectoryMutationError
from ..models import DeviceRecord, DomainConfig, Operation
from .candidate_resolver import CandidateResolver
from .directory_client import DirectoryClient
from .membership_fetcher import MembershipFetcher
from .run_context import RunContext

logger = logging.getLogger(__name__)

KEEP_OPERATIONS = (Operation.PRESENT, Operation.ADDED)


@dataclass
class DomainOutcome:
    """Everything one domain entry produced during a run."""
    label: str
    server: str = ""
    group: str = ""
    add_outcomes: List[DeviceRecord] = field(default_factory=list)
    remove_outcomes: List[DeviceRecord] = field(default_factory=list)
    lookup_failed: bool = False
    configuration_failed: bool = False
    removals_suppressed: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.lookup_failed or self.configuration_failed

    @property
    def records(self) -> List[DeviceRecord]:
        return self.add_outcomes + self.remove_outcomes


class GroupReconciler:
    """
    Reconciles group membership for one domain entry at a time.

    Args:
        directory: Directory client used for lookups and mutations
        dry_run: If True, every mutation is previewed instead of applied
    """

    def __init__(self, directory: DirectoryClient, dry_run: bool = False):
        self.directory = directory
        self.dry_run = dry_run
        self.membership_fetcher = MembershipFetcher(directory)
        self.candidate_resolver = CandidateResolver(directory)

    def reconcile_domain(self, config: DomainConfig, context: RunContext) -> DomainOutcome:
        """
        Run the full snapshot, resolve, add, remove sequence for one entry.

        A failure to read the group aborts the entry before any mutation.
        Failed search locations leave the add path running on the partial
        candidate set but suppress the remove path.
        """
        outcome = DomainOutcome(label=config.label, server=config.server, group=config.group)

        try:
            _, members = self.membership_fetcher.fetch(
                config.server, config.group, config.member_type
            )
        except DirectoryLookupError as e:
            logger.error(f"Skipping {config.label}: could not read group membership: {e}")
            outcome.lookup_failed = True
            outcome.errors.append(str(e))
            return outcome

        for member in members:
            member.domain_label = config.label
        snapshot = {member.security_identifier: member for member in members}

        resolution = self.candidate_resolver.resolve(config, context)
        for location, error in resolution.failed_locations.items():
            outcome.errors.append(f"{location}: {error}")

        outcome.add_outcomes, keep_set = self.reconcile_additions(
            config, resolution.candidates, snapshot, context
        )

        if resolution.complete:
            outcome.remove_outcomes = self.reconcile_removals(
                config, members, keep_set, context
            )
        else:
            outcome.lookup_failed = True
            outcome.removals_suppressed = True
            logger.warning(
                f"{config.label}: {len(resolution.failed_locations)} search location(s) "
                f"failed, not removing any members this run"
            )

        return outcome

    def reconcile_additions(
        self,
        config: DomainConfig,
        candidates: List[DeviceRecord],
        snapshot: Dict[str, DeviceRecord],
        context: RunContext,
    ) -> Tuple[List[DeviceRecord], Set[str]]:
        """
        Classify each candidate and add the ones missing from the group.

        Membership is checked before the OS guard: a device that is already a
        member is Present whatever its operatingSystem, and the guard only
        stops add attempts.

        Returns:
            The classified candidates in resolver order, and the keep set of
            SIDs classified Present or Added
        """
        outcomes = []
        keep_set = set()
        total = len(candidates)

        for step, candidate in enumerate(candidates, start=1):
            context.report_progress(
                f"Adding members to {config.group}", candidate.name, step, total
            )

            if candidate.security_identifier in snapshot:
                candidate.mark(Operation.PRESENT)
            elif not config.skip_os_check and not candidate.has_operating_system:
                candidate.mark(Operation.SKIPPED, "operatingSystem is empty")
                logger.info(f"Skipping {candidate.name}: operatingSystem is empty")
            else:
                self._apply_add(config, candidate)

            if candidate.operation in KEEP_OPERATIONS:
                keep_set.add(candidate.security_identifier)
            outcomes.append(candidate)

        return outcomes, keep_set

    def reconcile_removals(
        self,
        config: DomainConfig,
        members: Iterable[DeviceRecord],
        keep_set: Set[str],
        context: RunContext,
    ) -> List[DeviceRecord]:
        """
        Remove every member that the add path did not keep.

        Kept members produce no record since the add path already reported
        them. Members listed in SkipSID are reported as Skipped and left alone.
        """
        exempt = {sid.upper() for sid in config.skip_sid}
        members = list(members)
        outcomes = []
        total = len(members)

        for step, member in enumerate(members, start=1):
            if member.security_identifier in keep_set:
                continue

            context.report_progress(
                f"Removing members from {config.group}", member.name, step, total
            )

            if member.security_identifier.upper() in exempt:
                member.mark(Operation.SKIPPED, "exempt from removal")
            else:
                self._apply_remove(config, member)
            outcomes.append(member)

        return outcomes

    def _apply_add(self, config: DomainConfig, candidate: DeviceRecord) -> None:
        candidate.dry_run = self.dry_run
        try:
            added = self.directory.add_member(
                config.server, config.group, candidate.security_identifier, dry_run=self.dry_run
            )
        except DirectoryMutationError as e:
            logger.error(f"Failed to add {candidate.name} to {config.group}: {e}")
            candidate.mark(Operation.ADD_FAILED, str(e))
            return

        if added:
            candidate.mark(Operation.ADDED)
        else:
            # Joined the group after the snapshot was taken
            candidate.mark(Operation.PRESENT, "already a member")

    def _apply_remove(self, config: DomainConfig, member: DeviceRecord) -> None:
        member.dry_run = self.dry_run
        try:
            removed = self.directory.remove_member(
                config.server, config.group, member.security_identifier, dry_run=self.dry_run
            )
        except DirectoryMutationError as e:
            logger.error(f"Failed to remove {member.name} from {config.group}: {e}")
            member.mark(Operation.REMOVE_FAILED, str(e))
            return

        if removed:
            member.mark(Operation.REMOVED)
        else:
            # Listed by the transitive snapshot but not a direct member value
            logger.warning(
                f"Could not remove {member.name} from {config.group}: not a direct member"
            )
            member.mark(Operation.REMOVE_FAILED, "not a direct member (nested membership)")
