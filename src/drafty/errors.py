"""Exception hierarchy for the Drafty data layer."""

from __future__ import annotations


class DraftyError(Exception):
    """Base class for every error raised by :mod:`drafty`."""


class InvalidEntity(DraftyError):
    """An entity, stored collection, or import document has the wrong shape."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class RemoteError(DraftyError):
    """The remote host answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(f"Remote host error {status_code}" + (f": {message}" if message else ""))
        self.status_code = status_code


class RemoteUnavailable(DraftyError):
    """The remote host could not be reached (network failure or timeout)."""


class InvalidToken(DraftyError):
    """A sync token failed the credential check."""
