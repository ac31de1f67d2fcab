"""
Directory Facade for the device group reconciler

This facade provides the directory client capability the reconciliation
engine consumes: group resolution, object queries, transitive member queries,
and member add/remove. It holds one LDAP adapter per domain controller and
translates ldap3 errors into the reconciler's error taxonomy.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ldap3.core.exceptions import LDAPException
from ldap3.protocol.formatters.formatters import format_sid

from reconciler.exceptions import DirectoryLookupError, DirectoryMutationError
from reconciler.models import DeviceRecord, GroupHandle, MemberType, SearchScope
from reconciler.services.directory_client import DirectoryClient

from ..adapters.ldap_adapter import LDAPAdapter

logger = logging.getLogger(__name__)

DEVICE_ATTRIBUTES = ["objectSid", "name", "operatingSystem", "distinguishedName"]


class DirectoryFacade(DirectoryClient):
    """
    Directory client spanning every server named in the run's domain entries.

    Adapters are created on first use from a shared connection configuration
    (credentials, port, timeout) with the server hostname filled in per call.
    Resolved groups are cached so that member mutations can address the
    group by the same identity used in configuration.
    """

    def __init__(self, connection_config: Dict[str, Any]) -> None:
        """
        Args:
            connection_config: LDAPAdapter settings shared by all servers,
                without the 'server' key
        """
        self.connection_config = dict(connection_config)
        self._adapters: Dict[str, LDAPAdapter] = {}
        self._groups: Dict[Tuple[str, str], GroupHandle] = {}

    def adapter_for(self, server: str) -> LDAPAdapter:
        key = server.lower()
        if key not in self._adapters:
            logger.debug(f"Creating LDAP adapter for {server}")
            config = dict(self.connection_config)
            config["server"] = server
            self._adapters[key] = LDAPAdapter(config)
        return self._adapters[key]

    # Lookups

    def resolve_group(self, server: str, group_identity: str) -> GroupHandle:
        """
        Resolve a group identity to exactly one directory object.

        Raises:
            DirectoryLookupError: If the group is missing, ambiguous, or the
                lookup fails
        """
        cache_key = (server.lower(), group_identity.lower())
        if cache_key in self._groups:
            return self._groups[cache_key]

        try:
            entries = self.adapter_for(server).find_group(group_identity)
        except LDAPException as e:
            raise DirectoryLookupError(
                f"Could not look up group '{group_identity}' on {server}: {e}"
            ) from e

        if not entries:
            raise DirectoryLookupError(f"Group '{group_identity}' not found on {server}")
        if len(entries) > 1:
            matches = [entry.entry_dn for entry in entries]
            raise DirectoryLookupError(
                f"Group '{group_identity}' is ambiguous on {server}: {matches}"
            )

        attributes = entries[0].entry_attributes_as_dict
        handle = GroupHandle(
            distinguished_name=entries[0].entry_dn,
            security_identifier=_sid_string(_first(attributes.get("objectSid"))),
            name=str(_first(attributes.get("name")) or group_identity),
            server=server,
        )
        logger.debug(f"Resolved group '{group_identity}' to {handle.distinguished_name}")
        self._groups[cache_key] = handle
        return handle

    def query_objects(
        self,
        server: str,
        filter_predicate: str,
        search_root: str,
        scope: SearchScope,
        attributes: Optional[List[str]] = None,
    ) -> List[DeviceRecord]:
        """
        Return the devices under search_root matching filter_predicate.

        Raises:
            DirectoryLookupError: If the search fails or times out
        """
        try:
            entries = self.adapter_for(server).search(
                filter_predicate,
                search_base=search_root,
                scope=scope.ldap_scope,
                attributes=attributes or DEVICE_ATTRIBUTES,
            )
        except LDAPException as e:
            raise DirectoryLookupError(
                f"Search under '{search_root}' on {server} failed: {e}"
            ) from e

        return [_to_device_record(entry, server) for entry in entries]

    def query_transitive_members(
        self, server: str, group: GroupHandle, member_type: MemberType
    ) -> List[DeviceRecord]:
        """
        Return direct and nested members of a group of the given member type.

        Raises:
            DirectoryLookupError: If the member query fails or times out
        """
        try:
            entries = self.adapter_for(server).search_transitive_members(
                group.distinguished_name,
                member_type.object_filter,
                attributes=DEVICE_ATTRIBUTES,
            )
        except LDAPException as e:
            raise DirectoryLookupError(
                f"Could not read members of '{group.name}' on {server}: {e}"
            ) from e

        return [_to_device_record(entry, server, group.name) for entry in entries]

    # Mutations

    def add_member(
        self, server: str, group_identity: str, member_sid: str, dry_run: bool = False
    ) -> bool:
        """
        Add a member to the group.

        Raises:
            DirectoryMutationError: If the modify request fails
        """
        group_dn = self._group_dn(server, group_identity)
        try:
            return self.adapter_for(server).add_group_member(group_dn, member_sid, dry_run=dry_run)
        except LDAPException as e:
            raise DirectoryMutationError(
                f"Could not add {member_sid} to '{group_identity}' on {server}: {e}"
            ) from e

    def remove_member(
        self, server: str, group_identity: str, member_sid: str, dry_run: bool = False
    ) -> bool:
        """
        Remove a member from the group.

        Raises:
            DirectoryMutationError: If the modify request fails
        """
        group_dn = self._group_dn(server, group_identity)
        try:
            return self.adapter_for(server).remove_group_member(
                group_dn, member_sid, dry_run=dry_run
            )
        except LDAPException as e:
            raise DirectoryMutationError(
                f"Could not remove {member_sid} from '{group_identity}' on {server}: {e}"
            ) from e

    def _group_dn(self, server: str, group_identity: str) -> str:
        try:
            return self.resolve_group(server, group_identity).distinguished_name
        except DirectoryLookupError as e:
            raise DirectoryMutationError(str(e)) from e

    def get_connection_info(self) -> Dict[str, Dict[str, Any]]:
        return {
            server: adapter.get_connection_info()
            for server, adapter in self._adapters.items()
        }

    def close_connections(self) -> None:
        logger.info("Closing directory connections")
        for adapter in self._adapters.values():
            adapter.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connections()


def _first(values: Any) -> Any:
    if isinstance(values, (list, tuple)):
        return values[0] if values else None
    return values


def _sid_string(value: Any) -> str:
    """objectSid arrives formatted when the schema is loaded, raw bytes otherwise."""
    if value is None:
        return ""
    if isinstance(value, bytes):
        return format_sid(value)
    return str(value)


def _to_device_record(entry, server: str, group: str = "") -> DeviceRecord:
    attributes = entry.entry_attributes_as_dict
    return DeviceRecord(
        security_identifier=_sid_string(_first(attributes.get("objectSid"))),
        name=str(_first(attributes.get("name")) or ""),
        operating_system=str(_first(attributes.get("operatingSystem")) or ""),
        distinguished_name=entry.entry_dn,
        group=group,
        server=server,
    )
