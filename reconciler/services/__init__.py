from .candidate_resolver import CandidateResolution, CandidateResolver
from .directory_client import DirectoryClient
from .group_reconciler import DomainOutcome, GroupReconciler
from .membership_fetcher import MembershipFetcher
from .outcome_aggregator import OutcomeAggregator
from .reconciliation_service import ReconciliationService
from .run_context import ProgressUpdate, RunContext

__all__ = [
    "CandidateResolution",
    "CandidateResolver",
    "DirectoryClient",
    "DomainOutcome",
    "GroupReconciler",
    "MembershipFetcher",
    "OutcomeAggregator",
    "ProgressUpdate",
    "ReconciliationService",
    "RunContext",
]
