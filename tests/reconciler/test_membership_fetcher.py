"""
Unit tests for MembershipFetcher.
"""

from unittest.mock import MagicMock

import pytest

from reconciler.exceptions import DirectoryLookupError
from reconciler.models import DeviceRecord, GroupHandle, MemberType
from reconciler.services import DirectoryClient, MembershipFetcher


@pytest.fixture
def directory():
    directory = MagicMock(spec=DirectoryClient)
    directory.resolve_group.return_value = GroupHandle(
        distinguished_name="CN=Kiosks,OU=Groups,DC=example,DC=com",
        security_identifier="S-1-5-21-1-2-3-1000",
        name="Kiosks",
        server="dc01.example.com",
    )
    return directory


class TestMembershipFetcher:
    """Tests for membership snapshots."""

    def test_members_are_deduplicated_in_fetch_order(self, directory):
        directory.query_transitive_members.return_value = [
            DeviceRecord(security_identifier="S-2", name="KIOSK-2"),
            DeviceRecord(security_identifier="S-1", name="KIOSK-1"),
            DeviceRecord(security_identifier="S-2", name="KIOSK-2"),
        ]

        handle, members = MembershipFetcher(directory).fetch("dc01.example.com", "Kiosks")

        assert handle.name == "Kiosks"
        assert [member.security_identifier for member in members] == ["S-2", "S-1"]
        assert all(member.group == "Kiosks" for member in members)

    def test_member_type_is_passed_through(self, directory):
        directory.query_transitive_members.return_value = []

        MembershipFetcher(directory).fetch("dc01.example.com", "Kiosks", MemberType.USER)

        handle = directory.resolve_group.return_value
        directory.query_transitive_members.assert_called_once_with(
            "dc01.example.com", handle, MemberType.USER
        )

    def test_empty_group(self, directory):
        directory.query_transitive_members.return_value = []

        _, members = MembershipFetcher(directory).fetch("dc01.example.com", "Kiosks")

        assert members == []

    def test_unresolved_group_propagates(self, directory):
        directory.resolve_group.side_effect = DirectoryLookupError("Group 'Kiosks' not found")

        with pytest.raises(DirectoryLookupError):
            MembershipFetcher(directory).fetch("dc01.example.com", "Kiosks")

        directory.query_transitive_members.assert_not_called()
