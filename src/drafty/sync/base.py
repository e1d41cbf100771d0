"""Abstract snapshot backend protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from drafty.models import Snapshot


@runtime_checkable
class SnapshotBackend(Protocol):
    """Interface of a remote store that holds one snapshot document per user.

    Implementations resolve the document lazily and cache its id for their
    own lifetime; they never retry.  Failures are raised as
    :class:`~drafty.errors.RemoteError` or
    :class:`~drafty.errors.RemoteUnavailable`.
    """

    # --------------------------------------------------------------- resolve

    async def discover(self) -> str | None:
        """Return the id of the user's snapshot document, or ``None``."""
        ...

    async def create(self, snapshot: Snapshot) -> str:
        """Create the snapshot document holding *snapshot*; return its id."""
        ...

    # ------------------------------------------------------------- read/write

    async def update(self, remote_id: str, snapshot: Snapshot) -> None:
        """Replace the content of document *remote_id* with *snapshot*."""
        ...

    async def fetch(self, remote_id: str) -> Snapshot | None:
        """Read document *remote_id*, or ``None`` when it holds no snapshot."""
        ...

    # ------------------------------------------------------------ credentials

    async def test_token(self, token: str | None = None) -> bool:
        """Return ``True`` iff *token* (default: the backend's own) is accepted."""
        ...

    async def aclose(self) -> None: ...
