import logging
from typing import List, Tuple

from ..models import DeviceRecord, GroupHandle, MemberType
from .directory_client import DirectoryClient

logger = logging.getLogger(__name__)


class MembershipFetcher:
    """Reads the current, deduplicated, transitive membership of a group."""

    def __init__(self, directory: DirectoryClient):
        self.directory = directory

    def fetch(
        self, server: str, group: str, member_type: MemberType = MemberType.COMPUTER
    ) -> Tuple[GroupHandle, List[DeviceRecord]]:
        """
        Fetch the membership snapshot for one group.

        Args:
            server: Directory endpoint hosting the group
            group: Group identity from configuration
            member_type: Which kind of member to return

        Returns:
            The resolved group and its members in fetch order, one record per SID

        Raises:
            DirectoryLookupError: If the group cannot be resolved to a unique
                identity or the member query fails
        """
        handle = self.directory.resolve_group(server, group)
        members = self.directory.query_transitive_members(server, handle, member_type)

        unique_members = []
        seen = set()
        for member in members:
            if member.security_identifier in seen:
                continue
            seen.add(member.security_identifier)
            member.group = group
            unique_members.append(member)

        if len(unique_members) != len(members):
            logger.debug(
                f"Dropped {len(members) - len(unique_members)} duplicate members of {group}"
            )
        logger.info(f"Group '{group}' on {server} has {len(unique_members)} {member_type.value.lower()} members")
        return handle, unique_members
