from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

from ..exceptions import ConfigurationError


class SearchScope(str, Enum):
    BASE = "Base"
    ONE_LEVEL = "OneLevel"
    SUBTREE = "Subtree"

    @property
    def ldap_scope(self) -> str:
        """Scope name understood by the LDAP adapter's search()."""
        return {"Base": "base", "OneLevel": "level", "Subtree": "subtree"}[self.value]


class MemberType(str, Enum):
    COMPUTER = "Computer"
    USER = "User"

    @property
    def object_filter(self) -> str:
        if self is MemberType.COMPUTER:
            return "(objectClass=computer)"
        return "(&(objectCategory=person)(objectClass=user))"


DEFAULT_FILTER = "(objectClass=computer)"

REQUIRED_KEYS = ["Server", "Group", "SearchBase"]
OPTIONAL_KEYS = ["SearchScope", "Filter", "SkipOSCheck", "SkipSID", "MemberType"]


@dataclass(frozen=True)
class DomainConfig:
    """One reconciliation target: a group and the criteria for its desired members."""
    label: str
    server: str
    group: str
    search_base: Tuple[str, ...]
    search_scope: SearchScope = SearchScope.SUBTREE
    filter: str = DEFAULT_FILTER
    skip_os_check: bool = False
    skip_sid: Tuple[str, ...] = field(default_factory=tuple)
    member_type: MemberType = MemberType.COMPUTER

    @property
    def group_key(self) -> Tuple[str, str]:
        """Identity used to detect two entries managing the same group."""
        return (self.server.strip().lower(), self.group.strip().lower())

    @classmethod
    def from_dict(cls, label: str, data: Dict[str, Any]) -> "DomainConfig":
        """
        Build a DomainConfig from one raw configuration entry.

        Args:
            label: Key of the entry in the configuration file
            data: Raw entry using the PascalCase keys of the configuration file

        Raises:
            ConfigurationError: If the entry has unknown, missing or mistyped fields
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Domain entry '{label}' must be an object", label)

        unknown_keys = [key for key in data if key not in REQUIRED_KEYS + OPTIONAL_KEYS]
        if unknown_keys:
            raise ConfigurationError(
                f"Domain entry '{label}' has unknown keys: {unknown_keys}", label
            )

        missing_keys = [key for key in REQUIRED_KEYS if key not in data]
        if missing_keys:
            raise ConfigurationError(
                f"Domain entry '{label}' is missing required keys: {missing_keys}", label
            )

        server = _require_text(label, "Server", data["Server"])
        group = _require_text(label, "Group", data["Group"])

        search_base = data["SearchBase"]
        if isinstance(search_base, str):
            search_base = [search_base]
        if not isinstance(search_base, list) or not search_base:
            raise ConfigurationError(
                f"Domain entry '{label}': SearchBase must be a non-empty list", label
            )
        search_base = tuple(_require_text(label, "SearchBase", base) for base in search_base)

        filter_value = data.get("Filter", DEFAULT_FILTER)
        filter_value = _require_text(label, "Filter", filter_value)
        if not filter_value.startswith("("):
            filter_value = f"({filter_value})"
        if filter_value.count("(") != filter_value.count(")"):
            raise ConfigurationError(
                f"Domain entry '{label}': Filter has unbalanced parentheses", label
            )

        skip_os_check = data.get("SkipOSCheck", False)
        if not isinstance(skip_os_check, bool):
            raise ConfigurationError(
                f"Domain entry '{label}': SkipOSCheck must be true or false", label
            )

        skip_sid = data.get("SkipSID", [])
        if not isinstance(skip_sid, list):
            raise ConfigurationError(
                f"Domain entry '{label}': SkipSID must be a list", label
            )

        return cls(
            label=label,
            server=server,
            group=group,
            search_base=search_base,
            search_scope=_parse_enum(label, "SearchScope", SearchScope,
                                     data.get("SearchScope", SearchScope.SUBTREE.value)),
            filter=filter_value,
            skip_os_check=skip_os_check,
            skip_sid=tuple(_require_text(label, "SkipSID", sid).upper() for sid in skip_sid),
            member_type=_parse_enum(label, "MemberType", MemberType,
                                    data.get("MemberType", MemberType.COMPUTER.value)),
        )


def _require_text(label: str, key: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(
            f"Domain entry '{label}': {key} must be a non-empty string", label
        )
    return value.strip()


def _parse_enum(label: str, key: str, enum_type, value: Any):
    for member in enum_type:
        if isinstance(value, str) and value.lower() == member.value.lower():
            return member
    allowed = [member.value for member in enum_type]
    raise ConfigurationError(
        f"Domain entry '{label}': {key} must be one of {allowed}, got {value!r}", label
    )
