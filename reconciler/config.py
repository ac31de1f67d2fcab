import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .models import DomainConfig

logger = logging.getLogger(__name__)

load_dotenv()

TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class LoadedDomains:
    """Domain entries that passed validation and those that were rejected."""
    configs: List[DomainConfig] = field(default_factory=list)
    rejected: Dict[str, ConfigurationError] = field(default_factory=dict)
    order: List[str] = field(default_factory=list)


class ReconcilerConfig:
    """Centralized configuration for the device group reconciler."""

    @staticmethod
    def get_connection_config() -> Dict[str, Any]:
        """LDAP connection settings shared by every server, from environment variables."""
        use_ssl = os.getenv("AD_USE_SSL", "true").lower() in TRUE_VALUES
        try:
            return {
                "user": os.getenv("AD_USER"),
                "password": os.getenv("AD_PASSWORD"),
                "keyring_service": os.getenv("AD_KEYRING_SERVICE", "ad_device_groups"),
                "use_ssl": use_ssl,
                "port": int(os.getenv("AD_PORT", "636" if use_ssl else "389")),
                "timeout": int(os.getenv("AD_TIMEOUT", "120")),
                "page_size": int(os.getenv("AD_PAGE_SIZE", "1000")),
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric LDAP setting: {e}") from e

    @staticmethod
    def get_run_config() -> Dict[str, Any]:
        """Paths used by the command line entry point."""
        return {
            "config_path": os.getenv("RECONCILER_CONFIG", "domains.json"),
            "report_dir": os.getenv("RECONCILER_REPORT_DIR", "reports"),
            "log_dir": os.getenv("RECONCILER_LOG_DIR", "logs"),
        }


class ParsedObject(dict):
    """JSON object that records keys repeated inside it instead of overwriting silently."""

    def __init__(self, pairs: List[Tuple[str, Any]]):
        super().__init__()
        self.duplicate_keys: List[str] = []
        for key, value in pairs:
            if key in self:
                self.duplicate_keys.append(key)
            self[key] = value


def _check_duplicate_keys(value: Any, where: str, label: Optional[str] = None) -> None:
    duplicates = getattr(value, "duplicate_keys", [])
    if duplicates:
        raise ConfigurationError(f"Duplicate key '{duplicates[0]}' in {where}", label)


def read_config_file(path: str) -> Dict[str, Any]:
    """
    Read the JSON configuration file.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid JSON,
            repeats a key at the top level or among the domain
            labels, or has no 'domains' object
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh, object_pairs_hook=ParsedObject)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}") from e

    _check_duplicate_keys(data, f"configuration file {path}")
    if not isinstance(data, dict) or not isinstance(data.get("domains"), dict):
        raise ConfigurationError(f"Configuration file {path} must contain a 'domains' object")
    _check_duplicate_keys(data["domains"], f"the domains of {path}")
    return data


def parse_domains(raw_domains: Dict[str, Any]) -> LoadedDomains:
    """
    Validate raw domain entries in file order.

    Invalid entries, including entries that repeat one of their own keys, are
    rejected individually. An entry naming a group that an earlier entry
    already manages is rejected too, rather than silently overriding it.
    """
    loaded = LoadedDomains()
    claimed_groups: Dict[Tuple[str, str], str] = {}

    for label, raw in raw_domains.items():
        loaded.order.append(label)
        try:
            _check_duplicate_keys(raw, f"domain entry '{label}'", label)
            config = DomainConfig.from_dict(label, raw)
        except ConfigurationError as e:
            logger.error(str(e))
            loaded.rejected[label] = e
            continue

        owner = claimed_groups.get(config.group_key)
        if owner is not None:
            error = ConfigurationError(
                f"Domain entry '{label}' manages group '{config.group}' on "
                f"{config.server}, which is already managed by '{owner}'",
                label,
            )
            logger.error(str(error))
            loaded.rejected[label] = error
            continue

        claimed_groups[config.group_key] = label
        loaded.configs.append(config)

    logger.info(
        f"Loaded {len(loaded.configs)} domain entries ({len(loaded.rejected)} rejected)"
    )
    return loaded


def load_domain_configs(path: str) -> LoadedDomains:
    return parse_domains(read_config_file(path)["domains"])
