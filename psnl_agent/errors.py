"""
Error types raised by the agent.

Startup errors (ConfigLoadError, MalformedScheduleError) are fatal and abort
the process. Runtime errors (RemoteError, ConfigurationError) are caught by
the trigger action that raised them, logged, and never reach the clock loop.
"""
from typing import Optional


class PsnlError(Exception):
    """Base class for agent errors."""
    error: str = "psnl_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class ConfigLoadError(PsnlError):
    """Configuration file is missing, unreadable or malformed."""
    error = "config_load_error"


class MalformedScheduleError(ConfigLoadError):
    """A schedule time of day is not a valid HH:MM."""
    error = "malformed_schedule"


class RemoteError(PsnlError):
    """The Proxmox API answered with a non-success status or was unreachable."""
    error = "remote_error"

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message, detail)


class ConfigurationError(PsnlError):
    """The guest configuration lacks the interface a trigger targets."""
    error = "configuration_error"
