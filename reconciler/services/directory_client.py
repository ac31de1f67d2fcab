from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import DeviceRecord, GroupHandle, MemberType, SearchScope


class DirectoryClient(ABC):
    """
    Directory capability consumed by the reconciliation engine.

    Lookups raise DirectoryLookupError and mutations raise
    DirectoryMutationError. Mutations take a dry_run flag and must not change
    the directory when it is set.
    """

    @abstractmethod
    def resolve_group(self, server: str, group_identity: str) -> GroupHandle:
        pass

    @abstractmethod
    def query_objects(
        self,
        server: str,
        filter_predicate: str,
        search_root: str,
        scope: SearchScope,
        attributes: Optional[List[str]] = None,
    ) -> List[DeviceRecord]:
        pass

    @abstractmethod
    def query_transitive_members(
        self, server: str, group: GroupHandle, member_type: MemberType
    ) -> List[DeviceRecord]:
        pass

    @abstractmethod
    def add_member(
        self, server: str, group_identity: str, member_sid: str, dry_run: bool = False
    ) -> bool:
        pass

    @abstractmethod
    def remove_member(
        self, server: str, group_identity: str, member_sid: str, dry_run: bool = False
    ) -> bool:
        pass
