from typing import Optional


class DeviceGroupReconcilerError(Exception):
    """Base exception for device group reconciliation errors."""
    pass

class DirectoryLookupError(DeviceGroupReconcilerError):
    """Raised when a group or device query against the directory fails."""
    pass

class DirectoryMutationError(DeviceGroupReconcilerError):
    """Raised when adding or removing a group member fails."""
    pass

class ConfigurationError(DeviceGroupReconcilerError):
    """Raised when a domain entry or the configuration file is malformed."""

    def __init__(self, message: str, label: Optional[str] = None):
        super().__init__(message)
        self.label = label

class ReportWriteError(DeviceGroupReconcilerError):
    """Raised when the run's report or audit log cannot be written."""
    pass
