"""
Unit tests for LDAPAdapter.

The ldap3 Server and Connection classes are patched so no network access
is needed.
"""

from unittest.mock import MagicMock, patch

import pytest
from ldap3 import LEVEL, MODIFY_ADD, MODIFY_DELETE
from ldap3.core.exceptions import LDAPException

from directory.adapters.ldap_adapter import PAGED_RESULTS_OID, LDAPAdapter

GROUP_DN = "CN=Managed Workstations,OU=Groups,DC=example,DC=com"


def make_config(**overrides):
    config = {
        "server": "dc01.example.com",
        "user": "EXAMPLE\\svc-groups",
        "password": "secret",
        "search_base": "DC=example,DC=com",
    }
    config.update(overrides)
    return config


def paged_result(cookie):
    return {"result": 0, "controls": {PAGED_RESULTS_OID: {"value": {"cookie": cookie}}}}


@pytest.fixture
def mock_connection():
    with patch("directory.adapters.ldap_adapter.Server"), \
         patch("directory.adapters.ldap_adapter.Connection") as mock_connection_class:
        connection = MagicMock()
        connection.bound = True
        connection.result = {"result": 0}
        connection.entries = []
        mock_connection_class.return_value = connection
        connection.connection_class = mock_connection_class
        yield connection


class TestLDAPAdapterInit:
    """Tests for configuration handling."""

    def test_missing_required_keys(self):
        with pytest.raises(ValueError, match="Missing required configuration keys"):
            LDAPAdapter({"server": "dc01.example.com"})

    def test_config_must_be_dict(self):
        with pytest.raises(TypeError):
            LDAPAdapter("dc01.example.com")

    def test_defaults(self):
        adapter = LDAPAdapter({"server": "dc01.example.com", "user": "svc"})

        assert adapter.use_ssl is True
        assert adapter.port == 636
        assert adapter.timeout == 120
        assert adapter.page_size == 1000
        assert adapter.keyring_service == "ad_device_groups"

    def test_connection_info_excludes_password(self):
        info = LDAPAdapter(make_config()).get_connection_info()

        assert info["server"] == "dc01.example.com"
        assert "password" not in info


class TestLDAPAdapterConnection:
    """Tests for binding and password lookup."""

    def test_connection_uses_receive_timeout(self, mock_connection):
        adapter = LDAPAdapter(make_config(timeout=30))

        adapter._get_connection()

        kwargs = mock_connection.connection_class.call_args.kwargs
        assert kwargs["receive_timeout"] == 30
        assert kwargs["password"] == "secret"

    def test_connection_is_reused(self, mock_connection):
        adapter = LDAPAdapter(make_config())

        adapter._get_connection()
        adapter._get_connection()

        assert mock_connection.connection_class.call_count == 1

    def test_password_from_keyring(self, mock_connection):
        adapter = LDAPAdapter(make_config(password=None))

        with patch("directory.adapters.ldap_adapter.keyring") as mock_keyring:
            mock_keyring.get_password.return_value = "from-keyring"
            adapter._get_connection()

        mock_keyring.get_password.assert_called_once_with("ad_device_groups", "EXAMPLE\\svc-groups")
        assert mock_connection.connection_class.call_args.kwargs["password"] == "from-keyring"

    def test_no_password_without_terminal(self):
        adapter = LDAPAdapter(make_config(password=None))

        with patch("directory.adapters.ldap_adapter.keyring") as mock_keyring, \
             patch("directory.adapters.ldap_adapter.sys") as mock_sys:
            mock_keyring.get_password.return_value = None
            mock_sys.stdin.isatty.return_value = False

            with pytest.raises(LDAPException, match="no terminal to prompt on"):
                adapter._get_password()

    def test_close_unbinds(self, mock_connection):
        adapter = LDAPAdapter(make_config())
        adapter._get_connection()

        adapter.close()

        mock_connection.unbind.assert_called_once()
        assert adapter._connection is None

    def test_naming_context_from_root_dse(self, mock_connection):
        mock_connection.server.info.other = {"defaultNamingContext": ["DC=corp,DC=example,DC=com"]}
        adapter = LDAPAdapter(make_config(search_base=None))

        assert adapter.get_default_naming_context() == "DC=corp,DC=example,DC=com"


class TestLDAPAdapterSearch:
    """Tests for paged and simple searches."""

    def test_paged_search_follows_cookie(self, mock_connection):
        pages = [
            (["entry-1", "entry-2"], paged_result(b"next-page")),
            (["entry-3"], paged_result(b"")),
        ]

        def search(**kwargs):
            entries, result = pages.pop(0)
            mock_connection.entries = entries
            mock_connection.result = result

        mock_connection.search.side_effect = search
        adapter = LDAPAdapter(make_config(page_size=2))

        results = adapter.search("(objectClass=computer)", search_base="OU=Devices,DC=example,DC=com")

        assert results == ["entry-1", "entry-2", "entry-3"]
        calls = mock_connection.search.call_args_list
        assert calls[0].kwargs["paged_cookie"] is None
        assert calls[1].kwargs["paged_cookie"] == b"next-page"
        assert calls[0].kwargs["paged_size"] == 2

    def test_failed_search_raises(self, mock_connection):
        mock_connection.result = {"result": 50, "description": "insufficientAccessRights"}
        adapter = LDAPAdapter(make_config())

        with pytest.raises(LDAPException, match="insufficientAccessRights"):
            adapter.search("(objectClass=computer)")

    def test_invalid_scope(self, mock_connection):
        adapter = LDAPAdapter(make_config())

        with pytest.raises(ValueError, match="scope must be one of"):
            adapter.search("(objectClass=computer)", scope="forest")

    def test_simple_search_scope(self, mock_connection):
        mock_connection.entries = ["entry-1"]
        adapter = LDAPAdapter(make_config())

        results = adapter.search("(objectClass=computer)", scope="level", use_pagination=False)

        assert results == ["entry-1"]
        assert mock_connection.search.call_args.kwargs["search_scope"] == LEVEL

    def test_find_group_by_name_escapes_identity(self, mock_connection):
        adapter = LDAPAdapter(make_config())

        adapter.find_group("Kiosks (Lobby)")

        search_filter = mock_connection.search.call_args.kwargs["search_filter"]
        assert "sAMAccountName=Kiosks \\28Lobby\\29" in search_filter

    def test_find_group_by_missing_dn_returns_empty(self, mock_connection):
        mock_connection.result = {"result": 32, "description": "noSuchObject"}
        adapter = LDAPAdapter(make_config())

        assert adapter.find_group(GROUP_DN) == []
        assert mock_connection.search.call_args.kwargs["search_base"] == GROUP_DN

    def test_transitive_member_filter(self, mock_connection):
        adapter = LDAPAdapter(make_config())

        adapter.search_transitive_members(GROUP_DN, "(objectClass=computer)")

        search_filter = mock_connection.search.call_args.kwargs["search_filter"]
        assert search_filter == (
            "(&(objectClass=computer)"
            f"(memberOf:1.2.840.113556.1.4.1941:={GROUP_DN}))"
        )


class TestLDAPAdapterMembers:
    """Tests for member add and remove."""

    def test_add_member_by_sid(self, mock_connection):
        adapter = LDAPAdapter(make_config())

        assert adapter.add_group_member(GROUP_DN, "S-1-5-21-1-2-3-1101") is True
        mock_connection.modify.assert_called_once_with(
            GROUP_DN, {"member": [(MODIFY_ADD, ["<SID=S-1-5-21-1-2-3-1101>"])]}
        )

    @pytest.mark.parametrize("result_code", [20, 68])
    def test_add_existing_member(self, mock_connection, result_code):
        mock_connection.result = {"result": result_code}
        adapter = LDAPAdapter(make_config())

        assert adapter.add_group_member(GROUP_DN, "S-1") is False

    def test_add_member_failure(self, mock_connection):
        mock_connection.result = {"result": 50, "description": "insufficientAccessRights"}
        adapter = LDAPAdapter(make_config())

        with pytest.raises(LDAPException):
            adapter.add_group_member(GROUP_DN, "S-1")

    def test_remove_member_by_sid(self, mock_connection):
        adapter = LDAPAdapter(make_config())

        assert adapter.remove_group_member(GROUP_DN, "S-1") is True
        mock_connection.modify.assert_called_once_with(
            GROUP_DN, {"member": [(MODIFY_DELETE, ["<SID=S-1>"])]}
        )

    def test_remove_non_member(self, mock_connection):
        mock_connection.result = {"result": 16}
        adapter = LDAPAdapter(make_config())

        assert adapter.remove_group_member(GROUP_DN, "S-1") is False

    def test_dry_run_sends_nothing(self, mock_connection):
        adapter = LDAPAdapter(make_config())

        assert adapter.add_group_member(GROUP_DN, "S-1", dry_run=True) is True
        assert adapter.remove_group_member(GROUP_DN, "S-1", dry_run=True) is True
        mock_connection.modify.assert_not_called()
        mock_connection.connection_class.assert_not_called()
