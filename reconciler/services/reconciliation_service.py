import logging
from typing import Dict, List, Optional, Tuple

from ..exceptions import ConfigurationError, DirectoryLookupError
from ..models import DomainConfig
from .directory_client import DirectoryClient
from .group_reconciler import DomainOutcome, GroupReconciler
from .outcome_aggregator import OutcomeAggregator
from .run_context import RunContext

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Runs every configured domain entry in order and aggregates the outcomes.

    Failures are scoped to the entry that raised them; the run always moves
    on to the next entry.
    """

    def __init__(self, directory: DirectoryClient, dry_run: bool = False):
        self.directory = directory
        self.dry_run = dry_run
        self.reconciler = GroupReconciler(directory, dry_run=dry_run)

    def run(
        self,
        configs: List[DomainConfig],
        rejected: Optional[Dict[str, ConfigurationError]] = None,
        context: Optional[RunContext] = None,
        order: Optional[List[str]] = None,
    ) -> OutcomeAggregator:
        """
        Reconcile all domain entries.

        Outcomes follow ``order``, the entry labels as they appear in the
        configuration file, so rejected entries are reported in place. Without
        it, rejected entries are reported first, then configs in list order.

        Args:
            configs: Validated domain entries, in processing order
            rejected: Entries that failed validation, keyed by label
            context: Run context (a fresh one is created when omitted)
            order: Labels of valid and rejected entries in file order

        Returns:
            OutcomeAggregator holding every domain outcome
        """
        context = context or RunContext(dry_run=self.dry_run)
        rejected = rejected or {}
        aggregator = OutcomeAggregator()
        by_label = {config.label: config for config in configs}
        if order is None:
            order = list(rejected) + [config.label for config in configs]

        # (server, group DN) -> label of the entry that manages it
        claimed: Dict[Tuple[str, str], str] = {}
        total = len(configs)
        step = 0

        for label in order:
            if label in rejected:
                logger.error(f"Not processing {label}: {rejected[label]}")
                aggregator.add(
                    DomainOutcome(
                        label=label, configuration_failed=True, errors=[str(rejected[label])]
                    )
                )
                continue

            config = by_label.get(label)
            if config is None:
                continue

            step += 1
            context.report_progress(
                "Reconciling device groups", f"{config.label} ({config.group})", step, total
            )
            aggregator.add(self._reconcile_entry(config, context, claimed))

        summary = aggregator.summary()
        logger.info(
            f"Run complete: {summary['total']} devices across {summary['domains']} domain "
            f"entries, {len(summary['failed_domains'])} failed"
        )
        return aggregator

    def claim_group(
        self, config: DomainConfig, claimed: Dict[Tuple[str, str], str]
    ) -> None:
        """
        Claim the resolved group for this entry.

        The same group can be named by DN, sAMAccountName or CN, so ownership
        is decided on the resolved distinguished name.

        Raises:
            ConfigurationError: If an earlier entry already manages the group
            DirectoryLookupError: If the group cannot be resolved
        """
        handle = self.directory.resolve_group(config.server, config.group)
        key = (config.server.strip().lower(), handle.distinguished_name.lower())
        owner = claimed.get(key)
        if owner is not None and owner != config.label:
            raise ConfigurationError(
                f"Domain entry '{config.label}' manages group {handle.distinguished_name} "
                f"on {config.server}, which is already managed by '{owner}'",
                config.label,
            )
        claimed[key] = config.label

    def _reconcile_entry(
        self,
        config: DomainConfig,
        context: RunContext,
        claimed: Dict[Tuple[str, str], str],
    ) -> DomainOutcome:
        try:
            self.claim_group(config, claimed)
            return self.reconciler.reconcile_domain(config, context)
        except ConfigurationError as e:
            logger.error(f"Configuration error in {config.label}: {e}")
            return DomainOutcome(
                label=config.label,
                server=config.server,
                group=config.group,
                configuration_failed=True,
                errors=[str(e)],
            )
        except DirectoryLookupError as e:
            logger.error(f"Lookup failed for {config.label}: {e}")
            return DomainOutcome(
                label=config.label,
                server=config.server,
                group=config.group,
                lookup_failed=True,
                errors=[str(e)],
            )
