"""Exceptions raised by the setup and upgrade workflows."""

from __future__ import annotations


class VpnError(Exception):
    """Base class for all errors that stop a run."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PreconditionError(VpnError):
    """The system or the input isn't in a state that allows the operation."""


class CommandError(VpnError):
    """An external tool returned a non-zero exit status."""


class SetupAborted(VpnError):
    """The operator declined to continue."""

    def __init__(self, message: str = "Abort. No changes were made.") -> None:
        super().__init__(message)
