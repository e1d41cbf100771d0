"""LocalStore: durable per-user key-value persistence on DuckDB.

Every collection of every user is stored as one JSON document under a key
that embeds the user id verbatim::

    drafty-books-<uid>
    drafty-projects-<uid>
    drafty-flashcards-<uid>
    drafty-flashcard-folders-<uid>
    drafty-gist-token-<uid>

No key prefix is a prefix of another, so two (user, collection) pairs can
never share a key.

Reads fail soft: corrupt or mis-shaped documents load as an empty
collection and a warning is logged.  Writes replace a whole document in one
statement, and :meth:`LocalStore.save_many` replaces several documents in
one transaction, so a reader never sees a partial write.

Usage::

    store = LocalStore("~/.drafty/drafty.duckdb")
    books = store.load("uid-1", Collection.BOOKS)
    store.save("uid-1", Collection.BOOKS, books)

Environment variables (direct kwargs take precedence):
    DRAFTY_DB_PATH – DuckDB database file (default: ``:memory:``)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Mapping

import duckdb

from drafty.errors import InvalidEntity
from drafty.models import (
    Collection,
    Flashcard,
    decode_collection,
    encode_collection,
    unlink_missing_folders,
    validate_collection,
)

logger = logging.getLogger(__name__)


class LocalStore:
    """Namespaced JSON blob storage for one or more users."""

    _TABLE = "kv"
    _PREFIX = "drafty"

    def __init__(self, db_path: Path | str | None = None) -> None:
        path = str(db_path or os.getenv("DRAFTY_DB_PATH", ":memory:"))
        if path != ":memory:":
            path = str(Path(path).expanduser())
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._db_path = path
        self.conn: duckdb.DuckDBPyConnection = duckdb.connect(self._db_path)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self._TABLE} (
                key        VARCHAR PRIMARY KEY,
                value      VARCHAR NOT NULL,
                updated_at TIMESTAMPTZ DEFAULT now()
            );
        """)

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @classmethod
    def key(cls, user_id: str, collection: Collection) -> str:
        """Storage key for *collection* of *user_id*."""
        return f"{cls._PREFIX}-{Collection(collection).slug}-{user_id}"

    @classmethod
    def token_key(cls, user_id: str) -> str:
        return f"{cls._PREFIX}-gist-token-{user_id}"

    @classmethod
    def legacy_notes_key(cls, user_id: str) -> str:
        """Key of the flat note list that predates notebooks."""
        return f"{cls._PREFIX}-notes-{user_id}"

    # ------------------------------------------------------------------
    # Raw blobs
    # ------------------------------------------------------------------

    def read_raw(self, key: str) -> str | None:
        row = self.conn.execute(f"SELECT value FROM {self._TABLE} WHERE key = ?", [key]).fetchone()
        return None if row is None else row[0]

    def write_raw(self, key: str, value: str) -> None:
        self.conn.execute(
            f"""
            INSERT INTO {self._TABLE} (key, value, updated_at)
            VALUES (?, ?, now())
            ON CONFLICT (key) DO UPDATE SET
                value      = excluded.value,
                updated_at = now();
            """,
            [key, value],
        )

    def delete_raw(self, key: str) -> None:
        self.conn.execute(f"DELETE FROM {self._TABLE} WHERE key = ?", [key])

    def keys(self) -> list[str]:
        rows = self.conn.execute(f"SELECT key FROM {self._TABLE} ORDER BY key").fetchall()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _read_collection(self, user_id: str, collection: Collection) -> tuple[list[Any], str | None]:
        """Return ``(entities, problem)``; *problem* describes an unreadable document."""
        key = self.key(user_id, collection)
        try:
            raw = self.read_raw(key)
        except duckdb.Error as exc:
            return [], f"{key}: {exc}"
        if raw is None:
            return [], None
        try:
            return decode_collection(collection, json.loads(raw)), None
        except (ValueError, InvalidEntity) as exc:
            return [], f"{key}: {exc}"

    def load(self, user_id: str, collection: Collection) -> list[Any]:
        """Return the stored entities, or ``[]`` when absent or unreadable."""
        entities, problem = self._read_collection(user_id, Collection(collection))
        if problem is not None:
            logger.warning("Ignoring unreadable local data under %s", problem)
        return entities

    def load_all(self, user_id: str) -> dict[Collection, list[Any]]:
        return {c: self.load(user_id, c) for c in Collection}

    def unreadable(self, user_id: str) -> dict[Collection, str]:
        """Collections of *user_id* that exist but cannot be read, with the reason."""
        problems = {}
        for collection in Collection:
            _, problem = self._read_collection(user_id, collection)
            if problem is not None:
                problems[collection] = problem
        return problems

    def save(self, user_id: str, collection: Collection, entities: Iterable[Any]) -> None:
        """Validate and overwrite the whole of *collection*."""
        collection = Collection(collection)
        entities = list(entities)
        validate_collection(collection, entities)
        self.write_raw(self.key(user_id, collection), json.dumps(encode_collection(entities)))

    def save_many(self, user_id: str, collections: Mapping[Collection, Iterable[Any]]) -> None:
        """Validate every collection first, then write them all in one transaction."""
        writes: dict[str, str] = {}
        for collection, entities in collections.items():
            collection = Collection(collection)
            entities = list(entities)
            validate_collection(collection, entities)
            writes[self.key(user_id, collection)] = json.dumps(encode_collection(entities))
        self._apply(writes)

    def _apply(self, writes: Mapping[str, str], deletes: Iterable[str] = ()) -> None:
        self.conn.begin()
        try:
            for key in deletes:
                self.delete_raw(key)
            for key, value in writes.items():
                self.write_raw(key, value)
        except duckdb.Error:
            self.conn.rollback()
            raise
        self.conn.commit()

    def _unlinked_flashcards(self, user_id: str, folder_ids: Iterable[str]) -> list[Flashcard] | None:
        """Stored flashcards with dangling folder links cleared, or ``None`` if none dangle."""
        cards = self.load(user_id, Collection.FLASHCARDS)
        unlinked = unlink_missing_folders(cards, folder_ids)
        return None if unlinked == cards else unlinked

    def clear(self, user_id: str, collection: Collection) -> None:
        """Delete *collection*; clearing folders also unfiles every flashcard."""
        collection = Collection(collection)
        deletes = [self.key(user_id, collection)]
        if collection is Collection.BOOKS:
            deletes.append(self.legacy_notes_key(user_id))
        writes: dict[str, str] = {}
        if collection is Collection.FLASHCARD_FOLDERS:
            cards = self._unlinked_flashcards(user_id, ())
            if cards is not None:
                writes[self.key(user_id, Collection.FLASHCARDS)] = json.dumps(encode_collection(cards))
        self._apply(writes, deletes)
        logger.info("Cleared %s for user %s", collection.value, user_id)

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------

    def export_blob(self, user_id: str, collection: Collection) -> list[Any]:
        """Return the stored JSON document for *collection* (``[]`` when absent)."""
        key = self.key(user_id, collection)
        try:
            raw = self.read_raw(key)
        except duckdb.Error as exc:
            logger.warning("Exporting empty collection: could not read %s (%s)", key, exc)
            return []
        if raw is None:
            return []
        try:
            doc = json.loads(raw)
        except ValueError as exc:
            logger.warning("Exporting empty collection: stored data under %s is not JSON (%s)", key, exc)
            return []
        return doc if isinstance(doc, list) else []

    def import_blob(self, user_id: str, collection: Collection, document: Any) -> list[Any]:
        """Replace *collection* with *document* after validating all of it.

        *document* may be JSON text or an already-parsed value.  Raises
        :class:`InvalidEntity` and leaves the stored collection untouched
        unless the whole document is a JSON array of valid entities.

        Folder links are kept consistent: imported flashcards lose links to
        folders that are not stored, and importing folders unfiles stored
        flashcards whose folder is not among them.
        """
        collection = Collection(collection)
        if isinstance(document, (str, bytes, bytearray)):
            try:
                document = json.loads(document)
            except ValueError as exc:
                raise InvalidEntity(f"import file is not valid JSON: {exc}") from exc
        entities = decode_collection(collection, document)
        writes: dict[Collection, list[Any]] = {collection: entities}
        if collection is Collection.FLASHCARDS:
            folder_ids = [f.id for f in self.load(user_id, Collection.FLASHCARD_FOLDERS)]
            entities = writes[collection] = unlink_missing_folders(entities, folder_ids)
        elif collection is Collection.FLASHCARD_FOLDERS:
            cards = self._unlinked_flashcards(user_id, [f.id for f in entities])
            if cards is not None:
                writes[Collection.FLASHCARDS] = cards
        self.save_many(user_id, writes)
        logger.info("Imported %d %s for user %s", len(entities), collection.value, user_id)
        return entities

    # ------------------------------------------------------------------
    # Sync token
    # ------------------------------------------------------------------

    def load_token(self, user_id: str) -> str | None:
        return self.read_raw(self.token_key(user_id))

    def save_token(self, user_id: str, token: str) -> None:
        self.write_raw(self.token_key(user_id), token)

    def clear_token(self, user_id: str) -> None:
        self.delete_raw(self.token_key(user_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "LocalStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
