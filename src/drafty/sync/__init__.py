"""Remote snapshot backends and the sync orchestrator."""

from drafty.sync.base import SnapshotBackend
from drafty.sync.gist import GIST_DESCRIPTION, GIST_FILENAME, GistClient
from drafty.sync.orchestrator import StatusKind, SyncOrchestrator, SyncStatus

__all__ = [
    "SnapshotBackend",
    "GistClient",
    "GIST_DESCRIPTION",
    "GIST_FILENAME",
    "SyncOrchestrator",
    "SyncStatus",
    "StatusKind",
]
