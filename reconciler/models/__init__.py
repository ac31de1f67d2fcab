from .device_record import (
    TERMINAL_OPERATIONS,
    DeviceRecord,
    GroupHandle,
    Operation,
    utc_now,
)
from .domain_config import DomainConfig, MemberType, SearchScope

__all__ = [
    "DeviceRecord",
    "DomainConfig",
    "GroupHandle",
    "MemberType",
    "Operation",
    "SearchScope",
    "TERMINAL_OPERATIONS",
    "utc_now",
]
