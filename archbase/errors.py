"""
Errors Module

Exception types shared by the installer modules.
"""

from typing import List, Optional, Sequence


class InstallerError(Exception):
    """Base class for all installer errors."""


class ValidationRejection(InstallerError):
    """A user-supplied value failed validation. Always handled at the prompt."""


class PreconditionFailure(InstallerError):
    """The environment does not meet a hard requirement."""


class EnvironmentCheckFailure(InstallerError):
    """Required privileges or tools are missing before any work began."""


class UserAbort(InstallerError):
    """The user declined a confirmation or cancelled a prompt."""


class ExternalOperationFailure(InstallerError):
    """An external tool call did not succeed."""

    def __init__(self, message: str, command: Optional[Sequence[str]] = None,
                 returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.command: List[str] = list(command or [])
        self.returncode = returncode
        self.stderr = stderr
