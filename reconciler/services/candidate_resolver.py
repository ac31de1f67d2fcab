import logging
from dataclasses import dataclass, field
from typing import Dict, List

from ..exceptions import DirectoryLookupError
from ..models import DeviceRecord, DomainConfig
from .directory_client import DirectoryClient
from .run_context import RunContext

logger = logging.getLogger(__name__)


@dataclass
class CandidateResolution:
    """Desired candidate set for one domain entry, plus any locations that failed."""
    candidates: List[DeviceRecord] = field(default_factory=list)
    failed_locations: Dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed_locations

    @property
    def security_identifiers(self) -> List[str]:
        return [candidate.security_identifier for candidate in self.candidates]


class CandidateResolver:
    """
    Builds the desired device set from a domain entry's search locations.

    Each location is queried independently and the results are unioned by
    SID. A failing location is recorded and the remaining locations are still
    resolved, so callers always receive whatever could be read together with
    an explicit record of what could not.
    """

    def __init__(self, directory: DirectoryClient):
        self.directory = directory

    def build_filter(self, config: DomainConfig) -> str:
        return f"(&{config.member_type.object_filter}{config.filter})"

    def resolve(self, config: DomainConfig, context: RunContext) -> CandidateResolution:
        resolution = CandidateResolution()
        seen = set()
        search_filter = self.build_filter(config)
        total = len(config.search_base)

        for step, location in enumerate(config.search_base, start=1):
            context.report_progress(
                f"Resolving candidates for {config.label}",
                f"Searching {location}",
                step,
                total,
            )
            try:
                devices = self.directory.query_objects(
                    config.server, search_filter, location, config.search_scope
                )
            except DirectoryLookupError as e:
                logger.error(f"Candidate search failed for {config.label} at {location}: {e}")
                resolution.failed_locations[location] = str(e)
                continue

            added = 0
            for device in devices:
                if not device.security_identifier or device.security_identifier in seen:
                    continue
                seen.add(device.security_identifier)
                device.group = config.group
                device.server = config.server
                device.domain_label = config.label
                resolution.candidates.append(device)
                added += 1

            logger.info(
                f"{location}: {len(devices)} matching devices, {added} new candidates"
            )

        logger.info(
            f"Resolved {len(resolution.candidates)} candidates for {config.label} "
            f"({len(resolution.failed_locations)} failed locations)"
        )
        return resolution
