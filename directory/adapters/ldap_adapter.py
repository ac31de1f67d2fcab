import getpass
import logging
import sys
from typing import Any, Dict, List, Optional

import keyring
from ldap3 import (
    ALL,
    BASE,
    LEVEL,
    MODIFY_ADD,
    MODIFY_DELETE,
    SUBTREE,
    Connection,
    Server,
)
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

logger = logging.getLogger(__name__)

# Simple Paged Results control (RFC 2696)
PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"
# LDAP_MATCHING_RULE_IN_CHAIN, walks nested group membership server-side
IN_CHAIN_RULE_OID = "1.2.840.113556.1.4.1941"

RESULT_SUCCESS = 0
RESULT_NO_SUCH_ATTRIBUTE = 16
RESULT_ATTRIBUTE_OR_VALUE_EXISTS = 20
RESULT_ENTRY_ALREADY_EXISTS = 68


class LDAPAdapter:
    """
    LDAP connection adapter for one Active Directory domain controller.

    This class handles the connection, authentication, paged searching and
    group member modification. Every network call is bounded by the configured
    timeout; failures are raised as ldap3 ``LDAPException`` and translated to
    the reconciler's error taxonomy by the directory facade.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP adapter with configuration settings.

        Args:
            config: Dictionary containing LDAP connection settings.
                   Required keys:
                   - 'server': Domain controller hostname
                   - 'user': Username for authentication

                   Optional keys with defaults:
                   - 'password': Password (default: looked up in keyring)
                   - 'keyring_service': Keyring service name (default: 'ad_device_groups')
                   - 'search_base': Root DN for group lookups (default: defaultNamingContext)
                   - 'use_ssl': Enable SSL/TLS (default: True)
                   - 'port': LDAP port (default: 636 for SSL, 389 for non-SSL)
                   - 'timeout': Connect and receive timeout in seconds (default: 120)
                   - 'get_info': Server info level (default: ALL)
                   - 'page_size': Page size for paged searches (default: 1000)

        Raises:
            ValueError: If required configuration keys are missing
            TypeError: If configuration is not a dictionary
        """
        if not isinstance(config, dict):
            raise TypeError("Configuration must be a dictionary")

        required_keys = ["server", "user"]
        missing_keys = [key for key in required_keys if not config.get(key)]
        if missing_keys:
            raise ValueError(f"Missing required configuration keys: {missing_keys}")

        self.server_hostname = config["server"]
        self.user = config["user"]
        self.keyring_service = config.get("keyring_service", "ad_device_groups")
        self.search_base = config.get("search_base")

        self.use_ssl = config.get("use_ssl", True)
        self.port = config.get("port", 636 if self.use_ssl else 389)
        self.timeout = config.get("timeout", 120)
        self.get_info = config.get("get_info", ALL)
        self.page_size = config.get("page_size", 1000)

        self._server = None
        self._connection = None
        self._password = config.get("password")

        logger.debug(f"LDAP adapter initialized for server: {self.server_hostname}")

    def _get_password(self) -> str:
        """
        Retrieve the bind password.

        Resolution order is the configured password, then the keyring, then an
        interactive prompt when running attached to a terminal.

        Raises:
            LDAPException: If no password is available
        """
        if self._password:
            return self._password

        try:
            password = keyring.get_password(self.keyring_service, self.user)
            if password:
                logger.debug("Using password from keyring")
                self._password = password
                return password
        except Exception as e:
            logger.warning(f"Could not retrieve password from keyring: {e}")

        if not sys.stdin.isatty():
            raise LDAPException(
                f"No password configured for {self.user} and no terminal to prompt on"
            )

        self._password = getpass.getpass(f"Enter LDAP password for {self.user}: ")
        return self._password

    def _create_server(self) -> Server:
        if not self._server:
            self._server = Server(
                self.server_hostname,
                use_ssl=self.use_ssl,
                port=self.port,
                get_info=self.get_info,
                connect_timeout=self.timeout,
            )
            logger.debug(
                f"LDAP server object created: {self.server_hostname}:{self.port}"
            )
        return self._server

    def _get_connection(self) -> Connection:
        """
        Return the bound connection for this adapter, binding on first use.

        Raises:
            LDAPException: If connection or authentication fails
        """
        if self._connection is not None and self._connection.bound:
            return self._connection

        server = self._create_server()
        password = self._get_password()

        connection = Connection(
            server,
            user=self.user,
            password=password,
            auto_bind=True,
            receive_timeout=self.timeout,
        )
        if not connection.bound:
            raise LDAPException(f"Failed to bind to {self.server_hostname}")

        logger.info(f"Successfully connected to {self.server_hostname}")
        self._connection = connection
        return connection

    def close(self) -> None:
        """Unbind the cached connection, if any."""
        if self._connection is not None:
            try:
                self._connection.unbind()
                logger.debug(f"LDAP connection to {self.server_hostname} closed")
            except LDAPException as e:
                logger.warning(f"Error closing connection to {self.server_hostname}: {e}")
            finally:
                self._connection = None

    def test_connection(self) -> bool:
        """
        Bind and read the root DSE to verify the server is usable.

        Returns:
            bool: True if the connection test succeeds, False otherwise
        """
        try:
            naming_context = self.get_default_naming_context()
            logger.info(
                f"Connection test successful for {self.server_hostname} ({naming_context})"
            )
            return True
        except LDAPException as e:
            logger.error(f"LDAP connection test failed: {e}")
            return False

    def get_connection_info(self) -> Dict[str, Any]:
        """Configuration details with the password excluded."""
        return {
            "server": self.server_hostname,
            "port": self.port,
            "use_ssl": self.use_ssl,
            "search_base": self.search_base,
            "user": self.user,
            "keyring_service": self.keyring_service,
            "timeout": self.timeout,
            "page_size": self.page_size,
        }

    def __str__(self) -> str:
        ssl_status = "SSL" if self.use_ssl else "non-SSL"
        return f"LDAPAdapter({self.server_hostname}:{self.port}, {ssl_status}, user={self.user})"

    def __repr__(self) -> str:
        return (
            f"LDAPAdapter(server='{self.server_hostname}', port={self.port}, "
            f"use_ssl={self.use_ssl}, search_base='{self.search_base}', "
            f"user='{self.user}', keyring_service='{self.keyring_service}')"
        )

    def get_default_naming_context(self) -> str:
        """
        Root DN used for group and member lookups.

        Uses the configured search_base when present, otherwise the
        defaultNamingContext advertised in the server's root DSE.
        """
        if self.search_base:
            return self.search_base

        conn = self._get_connection()
        info = conn.server.info
        contexts = info.other.get("defaultNamingContext") if info else None
        if not contexts:
            raise LDAPException(
                f"{self.server_hostname} did not advertise a defaultNamingContext"
            )
        self.search_base = contexts[0]
        return self.search_base

    # Core Search Infrastructure

    def search(
        self,
        search_filter: str,
        search_base: Optional[str] = None,
        scope: str = "subtree",
        attributes: Optional[List[str]] = None,
        use_pagination: bool = True,
        page_size: Optional[int] = None,
    ) -> List:
        """
        Run a search and return every matching entry.

        Paging is on by default so results are never truncated by the
        server's MaxPageSize. A non-success result code raises instead of
        returning an empty list, so callers can tell "nothing matched" apart
        from "the search failed".

        Args:
            search_filter: LDAP filter string (e.g., '(objectClass=computer)')
            search_base: Base DN for search (defaults to the naming context)
            scope: Search scope - 'base', 'level', or 'subtree' (default: 'subtree')
            attributes: List of attributes to retrieve (None for all)
            use_pagination: Use the paged results control (default: True)
            page_size: Page size (defaults to the adapter's configured size)

        Returns:
            List: ldap3 Entry objects

        Raises:
            LDAPException: If the search fails or times out
            ValueError: If parameters are invalid
        """
        if not search_filter or not isinstance(search_filter, str):
            raise ValueError("search_filter must be a non-empty string")

        scope_mapping = {"base": BASE, "level": LEVEL, "subtree": SUBTREE}
        if scope.lower() not in scope_mapping:
            raise ValueError(f"scope must be one of: {list(scope_mapping.keys())}")

        base_dn = search_base if search_base is not None else self.get_default_naming_context()
        conn = self._get_connection()

        search_kwargs = {
            "search_base": base_dn,
            "search_filter": search_filter,
            "search_scope": scope_mapping[scope.lower()],
            "attributes": attributes if attributes else ["*"],
        }

        logger.debug(
            f"Executing search: filter='{search_filter}', base='{base_dn}', "
            f"scope='{scope}', pagination={use_pagination}"
        )

        if use_pagination:
            results = self._execute_paged_search(
                conn, page_size or self.page_size, **search_kwargs
            )
        else:
            results = self._execute_simple_search(conn, **search_kwargs)

        logger.info(f"Search completed successfully: {len(results)} results returned")
        return results

    def _execute_simple_search(self, conn: Connection, **search_kwargs) -> List:
        conn.search(**search_kwargs)
        self._check_result(conn, "search")
        return list(conn.entries)

    def _execute_paged_search(
        self, conn: Connection, page_size: int, **search_kwargs
    ) -> List:
        """
        Cookie-driven paged search.

        Each page is requested with the paged results control and the cookie
        returned by the previous page, until the server sends an empty cookie.

        Args:
            conn: Active LDAP connection
            page_size: Number of results per page
            **search_kwargs: Search parameters

        Returns:
            List: Combined Entry objects from all pages
        """
        all_results = []
        page_num = 0
        cookie = None

        while True:
            page_num += 1
            conn.search(paged_size=page_size, paged_cookie=cookie, **search_kwargs)
            self._check_result(conn, f"paged search (page {page_num})")

            page_entries = list(conn.entries)
            all_results.extend(page_entries)
            logger.debug(f"Page {page_num}: Got {len(page_entries)} entries")

            controls = conn.result.get("controls") or {}
            cookie = controls.get(PAGED_RESULTS_OID, {}).get("value", {}).get("cookie")
            if not cookie:
                break

        logger.debug(
            f"Paged search completed: {len(all_results)} entries across {page_num} pages"
        )
        return all_results

    def _check_result(self, conn: Connection, operation: str) -> None:
        result_code = conn.result.get("result", RESULT_SUCCESS)
        if result_code != RESULT_SUCCESS:
            description = conn.result.get("description", "unknown")
            message = conn.result.get("message", "")
            raise LDAPException(
                f"{operation} failed on {self.server_hostname}: "
                f"{description} (code {result_code}) {message}".strip()
            )

    # Group Operations

    def find_group(self, identity: str, attributes: Optional[List[str]] = None) -> List:
        """
        Look up group objects matching a DN, sAMAccountName or CN.

        A DN is read directly with base scope; any other identity is searched
        for under the naming context. Callers decide what to do with zero or
        several matches.
        """
        attributes = attributes or ["distinguishedName", "objectSid", "name", "sAMAccountName"]

        if _looks_like_dn(identity):
            try:
                return self.search(
                    "(objectClass=group)",
                    search_base=identity,
                    scope="base",
                    attributes=attributes,
                    use_pagination=False,
                )
            except LDAPException as e:
                if "noSuchObject" in str(e):
                    return []
                raise

        escaped = escape_filter_chars(identity)
        search_filter = (
            f"(&(objectClass=group)(|(sAMAccountName={escaped})(cn={escaped})))"
        )
        return self.search(search_filter, attributes=attributes)

    def search_transitive_members(
        self,
        group_dn: str,
        object_filter: str,
        attributes: Optional[List[str]] = None,
    ) -> List:
        """
        Return all direct and nested members of a group matching object_filter.

        Uses the in-chain matching rule so the directory walks nested groups,
        and paged search so large groups are returned in full.
        """
        search_filter = (
            f"(&{object_filter}"
            f"(memberOf:{IN_CHAIN_RULE_OID}:={escape_filter_chars(group_dn)}))"
        )
        return self.search(search_filter, attributes=attributes)

    def add_group_member(
        self, group_dn: str, member_sid: str, dry_run: bool = False
    ) -> bool:
        """
        Add a member, referenced by SID, to a group.

        Returns:
            bool: True if the member was added (or would be, in dry run),
                  False if it was already a member

        Raises:
            LDAPException: If the modify request fails
        """
        if dry_run:
            logger.info(f"[DRY RUN] Would add {member_sid} to {group_dn}")
            return True

        conn = self._get_connection()
        conn.modify(group_dn, {"member": [(MODIFY_ADD, [f"<SID={member_sid}>"])]})

        result_code = conn.result.get("result", RESULT_SUCCESS)
        if result_code in (RESULT_ATTRIBUTE_OR_VALUE_EXISTS, RESULT_ENTRY_ALREADY_EXISTS):
            logger.debug(f"{member_sid} is already a member of {group_dn}")
            return False
        self._check_result(conn, f"add member {member_sid}")

        logger.info(f"Added {member_sid} to {group_dn}")
        return True

    def remove_group_member(
        self, group_dn: str, member_sid: str, dry_run: bool = False
    ) -> bool:
        """
        Remove a member, referenced by SID, from a group.

        Returns:
            bool: True if the member was removed (or would be, in dry run),
                  False if it was not a direct member

        Raises:
            LDAPException: If the modify request fails
        """
        if dry_run:
            logger.info(f"[DRY RUN] Would remove {member_sid} from {group_dn}")
            return True

        conn = self._get_connection()
        conn.modify(group_dn, {"member": [(MODIFY_DELETE, [f"<SID={member_sid}>"])]})

        if conn.result.get("result", RESULT_SUCCESS) == RESULT_NO_SUCH_ATTRIBUTE:
            logger.debug(f"{member_sid} is not a direct member of {group_dn}")
            return False
        self._check_result(conn, f"remove member {member_sid}")

        logger.info(f"Removed {member_sid} from {group_dn}")
        return True


def _looks_like_dn(identity: str) -> bool:
    return "=" in identity and "," in identity
