import sys
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reconciler.exceptions import DirectoryLookupError, DirectoryMutationError
from reconciler.models import DeviceRecord, DomainConfig, GroupHandle, MemberType, SearchScope
from reconciler.services import DirectoryClient, RunContext


class FakeDirectory(DirectoryClient):
    """In-memory directory: devices live in OUs, groups hold member SIDs."""

    def __init__(self):
        self.devices: Dict[str, Tuple[str, str, str]] = {}
        self.locations: Dict[str, List[str]] = {}
        self.groups: Dict[str, List[str]] = {}
        self.aliases: Dict[str, str] = {}
        self.failing_locations: Set[str] = set()
        self.failing_groups: Set[str] = set()
        self.failing_adds: Set[str] = set()
        self.failing_removes: Set[str] = set()
        self.add_calls: List[Tuple[str, str, bool]] = []
        self.remove_calls: List[Tuple[str, str, bool]] = []
        self.queries: List[Tuple[str, str]] = []

    def add_device(self, sid: str, name: str, operating_system: str = "Windows 11",
                   location: str = "OU=Devices,DC=example,DC=com") -> None:
        self.devices[sid] = (name, operating_system, f"CN={name},{location}")
        self.locations.setdefault(location, []).append(sid)

    def add_group(self, group: str, members: Optional[List[str]] = None) -> None:
        self.groups[group] = list(members or [])

    def add_alias(self, alias: str, group: str) -> None:
        """Let a DN or sAMAccountName name an existing group."""
        self.aliases[alias] = group

    def _group(self, group_identity: str) -> str:
        return self.aliases.get(group_identity, group_identity)

    def _record(self, sid: str, server: str) -> DeviceRecord:
        name, operating_system, dn = self.devices[sid]
        return DeviceRecord(
            security_identifier=sid,
            name=name,
            operating_system=operating_system,
            distinguished_name=dn,
            server=server,
        )

    def resolve_group(self, server: str, group_identity: str) -> GroupHandle:
        group_identity = self._group(group_identity)
        if group_identity in self.failing_groups or group_identity not in self.groups:
            raise DirectoryLookupError(f"Group '{group_identity}' not found on {server}")
        return GroupHandle(
            distinguished_name=f"CN={group_identity},OU=Groups,DC=example,DC=com",
            security_identifier="S-1-5-21-1-2-3-9999",
            name=group_identity,
            server=server,
        )

    def query_objects(self, server, filter_predicate, search_root, scope, attributes=None):
        self.queries.append((search_root, filter_predicate))
        if search_root in self.failing_locations:
            raise DirectoryLookupError(f"Search under '{search_root}' failed")
        return [self._record(sid, server) for sid in self.locations.get(search_root, [])]

    def query_transitive_members(self, server, group, member_type):
        return [self._record(sid, server) for sid in self.groups[group.name]]

    def add_member(self, server, group_identity, member_sid, dry_run=False):
        group_identity = self._group(group_identity)
        self.add_calls.append((group_identity, member_sid, dry_run))
        if member_sid in self.failing_adds:
            raise DirectoryMutationError(f"Could not add {member_sid}")
        if dry_run:
            return True
        if member_sid in self.groups[group_identity]:
            return False
        self.groups[group_identity].append(member_sid)
        return True

    def remove_member(self, server, group_identity, member_sid, dry_run=False):
        group_identity = self._group(group_identity)
        self.remove_calls.append((group_identity, member_sid, dry_run))
        if member_sid in self.failing_removes:
            raise DirectoryMutationError(f"Could not remove {member_sid}")
        if dry_run:
            return True
        if member_sid not in self.groups[group_identity]:
            return False
        self.groups[group_identity].remove(member_sid)
        return True


@pytest.fixture
def fake_directory():
    return FakeDirectory()


@pytest.fixture
def run_context():
    return RunContext()


@pytest.fixture
def make_config():
    def _make_config(label="workstations", group="Managed Workstations",
                     search_base=("OU=Devices,DC=example,DC=com",), **overrides):
        values = {
            "label": label,
            "server": "dc01.example.com",
            "group": group,
            "search_base": tuple(search_base),
            "search_scope": SearchScope.SUBTREE,
            "filter": "(objectClass=computer)",
            "skip_os_check": False,
            "skip_sid": (),
            "member_type": MemberType.COMPUTER,
        }
        values.update(overrides)
        return DomainConfig(**values)

    return _make_config
