"""SyncOrchestrator: push, pull, and token handling for one LocalStore.

Sync policy
-----------
The remote document is a whole-dataset snapshot and the last writer wins:

- ``push`` overwrites the remote snapshot with all four local collections.
  Local state is never modified by a push.
- ``pull`` overwrites all four local collections with the remote snapshot.
  Local changes made since the last push are discarded.

There is no merging.  Each operation resolves to exactly one
:class:`SyncStatus`; remote failures are reported, never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import duckdb

from drafty.errors import DraftyError, InvalidToken
from drafty.models import Collection, Snapshot, now_iso, unlink_missing_folders
from drafty.store import LocalStore
from drafty.sync.base import SnapshotBackend
from drafty.sync.gist import GistClient

logger = logging.getLogger(__name__)

BackendFactory = Callable[[str], SnapshotBackend]


class StatusKind(str, Enum):
    SYNCED = "synced"
    LOADED = "loaded"
    NO_REMOTE_DATA = "no_remote_data"
    TOKEN_SAVED = "token_saved"
    NO_TOKEN = "no_token"
    INVALID_TOKEN = "invalid_token"
    FAILED = "failed"


_FAILURES = {StatusKind.NO_TOKEN, StatusKind.INVALID_TOKEN, StatusKind.FAILED}


@dataclass(frozen=True)
class SyncStatus:
    """Terminal outcome of a sync operation, with a message for the user."""

    kind: StatusKind
    message: str

    @property
    def ok(self) -> bool:
        return self.kind not in _FAILURES

    def __str__(self) -> str:
        return self.message


class SyncOrchestrator:
    """Turns sync intents into LocalStore and backend calls.

    Backends are created by *backend_factory* (default :class:`GistClient`)
    and cached per token, so every operation made with the same token sees
    the same discovered remote id.
    """

    def __init__(
        self,
        store: LocalStore,
        backend_factory: BackendFactory | None = None,
        *,
        clock: Callable[[], str] = now_iso,
    ) -> None:
        self.store = store
        self._factory: BackendFactory = backend_factory or GistClient
        self._clock = clock
        self._backends: dict[str, SnapshotBackend] = {}

    def _backend(self, token: str) -> SnapshotBackend:
        backend = self._backends.get(token)
        if backend is None:
            try:
                backend = self._factory(token)
            except ValueError as exc:
                # httpx only sends ASCII header values
                raise InvalidToken(f"token cannot be sent: {exc}") from exc
            self._backends[token] = backend
        return backend

    # ------------------------------------------------------------------
    # Snapshot assembly
    # ------------------------------------------------------------------

    def snapshot(self, user_id: str) -> Snapshot:
        """Package every local collection of *user_id* with ``last_sync = now``."""
        return Snapshot.from_collections(self.store.load_all(user_id), self._clock())

    @staticmethod
    async def _verify(backend: SnapshotBackend, token: str) -> None:
        try:
            valid = await backend.test_token(token)
        except DraftyError as exc:
            raise InvalidToken(str(exc)) from exc
        if not valid:
            raise InvalidToken("token was not accepted by the remote host")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def push(self, user_id: str) -> SyncStatus:
        token = self.store.load_token(user_id)
        if not token:
            return SyncStatus(StatusKind.NO_TOKEN, "Sync failed: please save a valid token first")

        problems = self.store.unreadable(user_id)
        if problems:
            logger.warning("Push for user %s refused: %s", user_id, "; ".join(problems.values()))
            names = ", ".join(c.value for c in problems)
            return SyncStatus(StatusKind.FAILED, f"Sync failed: local {names} data is unreadable")

        snapshot = self.snapshot(user_id)
        try:
            backend = self._backend(token)
            remote_id = await backend.discover()
            if remote_id is None:
                remote_id = await backend.create(snapshot)
            else:
                await backend.update(remote_id, snapshot)
        except DraftyError as exc:
            logger.warning("Push for user %s failed: %s", user_id, exc)
            return SyncStatus(StatusKind.FAILED, f"Sync failed: {exc}")

        logger.info("Pushed snapshot for user %s to %s", user_id, remote_id)
        return SyncStatus(StatusKind.SYNCED, "Successfully synced to Gist!")

    async def pull(self, user_id: str) -> SyncStatus:
        token = self.store.load_token(user_id)
        if not token:
            return SyncStatus(StatusKind.NO_TOKEN, "Load failed: please save a valid token first")

        try:
            backend = self._backend(token)
            remote_id = await backend.discover()
            snapshot = None if remote_id is None else await backend.fetch(remote_id)
        except DraftyError as exc:
            logger.warning("Pull for user %s failed: %s", user_id, exc)
            return SyncStatus(StatusKind.FAILED, f"Load failed: {exc}")

        if snapshot is None:
            return SyncStatus(StatusKind.NO_REMOTE_DATA, "No data found in Gist")

        collections = snapshot.collections()
        # a remote snapshot may name folders it does not carry
        folder_ids = [f.id for f in snapshot.flashcard_folders]
        collections[Collection.FLASHCARDS] = unlink_missing_folders(snapshot.flashcards, folder_ids, touch=False)
        try:
            self.store.save_many(user_id, collections)
        except (DraftyError, duckdb.Error) as exc:
            logger.warning("Pull for user %s could not be stored: %s", user_id, exc)
            return SyncStatus(StatusKind.FAILED, f"Load failed: {exc}")

        logger.info("Loaded snapshot from %s for user %s (lastSync %s)", remote_id, user_id, snapshot.last_sync)
        return SyncStatus(StatusKind.LOADED, "Successfully loaded from Gist!")

    async def save_token(self, user_id: str, token: str) -> SyncStatus:
        """Persist *token* for *user_id* only after the backend accepts it."""
        token = token.strip()
        if not token:
            return SyncStatus(StatusKind.INVALID_TOKEN, "Invalid token: please enter a token")

        try:
            await self._verify(self._backend(token), token)
        except InvalidToken as exc:
            logger.warning("Rejected sync token for user %s: %s", user_id, exc)
            backend = self._backends.pop(token, None)
            if backend is not None:
                await backend.aclose()
            return SyncStatus(StatusKind.INVALID_TOKEN, "Invalid token - please check your token")

        self.store.save_token(user_id, token)
        logger.info("Saved sync token for user %s", user_id)
        return SyncStatus(StatusKind.TOKEN_SAVED, "Token saved successfully!")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        backends, self._backends = self._backends, {}
        for backend in backends.values():
            await backend.aclose()

    async def __aenter__(self) -> "SyncOrchestrator":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
