"""Entity dataclasses for notebooks, flashcards, folders, and projects.

Entities are frozen: sequences are stored as tuples and every mutation goes
through :func:`dataclasses.replace`, so a holder never sees another holder's
change.  Field names are snake_case in Python and camelCase on the wire
(``to_dict`` / ``from_dict``).
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Union

from drafty.errors import InvalidEntity

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MISSING = object()


def now_iso() -> str:
    """Current UTC instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def parse_instant(value: Any) -> datetime:
    """Parse an ISO-8601 instant; naive values are read as UTC."""
    if not isinstance(value, str) or not value:
        raise InvalidEntity(f"expected an ISO-8601 timestamp, got {value!r}")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise InvalidEntity(f"not an ISO-8601 timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _get(data: dict[str, Any], key: str, kind: type | tuple[type, ...], entity: str, default: Any = _MISSING) -> Any:
    if key not in data or data[key] is None:
        if default is _MISSING:
            raise InvalidEntity(f"{entity}: missing required field '{key}'")
        return default
    value = data[key]
    # bool is an int subclass; never accept it where a number is expected
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise InvalidEntity(f"{entity}: field '{key}' has wrong type {type(value).__name__}")
    return value


def _mapping(data: Any, entity: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidEntity(f"{entity}: expected a JSON object, got {type(data).__name__}")
    return data


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Page:
    """A page of a notebook, ordered among its siblings by ``order``."""

    id: str
    name: str
    content: str
    order: int
    created_at: str
    updated_at: str

    @classmethod
    def from_dict(cls, data: Any) -> "Page":
        data = _mapping(data, "page")
        return cls(
            id=_get(data, "id", str, "page"),
            name=_get(data, "name", str, "page"),
            content=_get(data, "content", str, "page", ""),
            order=_get(data, "order", int, "page", 0),
            created_at=_get(data, "createdAt", str, "page"),
            updated_at=_get(data, "updatedAt", str, "page"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "content": self.content,
            "order": self.order,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class Notebook:
    """A notebook (``book`` on the wire); owns its pages."""

    id: str
    name: str
    created_at: str
    updated_at: str
    pages: tuple[Page, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> "Notebook":
        data = _mapping(data, "notebook")
        pages = _get(data, "pages", list, "notebook", [])
        return cls(
            id=_get(data, "id", str, "notebook"),
            name=_get(data, "name", str, "notebook"),
            created_at=_get(data, "createdAt", str, "notebook"),
            updated_at=_get(data, "updatedAt", str, "notebook"),
            pages=tuple(Page.from_dict(p) for p in pages),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "pages": [p.to_dict() for p in self.pages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class FlashcardFolder:
    id: str
    name: str
    created_at: str
    updated_at: str

    @classmethod
    def from_dict(cls, data: Any) -> "FlashcardFolder":
        data = _mapping(data, "flashcard folder")
        return cls(
            id=_get(data, "id", str, "flashcard folder"),
            name=_get(data, "name", str, "flashcard folder"),
            created_at=_get(data, "createdAt", str, "flashcard folder"),
            updated_at=_get(data, "updatedAt", str, "flashcard folder"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class Flashcard:
    """A question/answer card.  ``folder_id`` is a weak reference, never ownership."""

    id: str
    front: str
    back: str
    created_at: str
    updated_at: str
    folder_id: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "Flashcard":
        data = _mapping(data, "flashcard")
        return cls(
            id=_get(data, "id", str, "flashcard"),
            front=_get(data, "front", str, "flashcard"),
            back=_get(data, "back", str, "flashcard"),
            folder_id=_get(data, "folderId", str, "flashcard", None),
            created_at=_get(data, "createdAt", str, "flashcard"),
            updated_at=_get(data, "updatedAt", str, "flashcard"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "front": self.front,
            "back": self.back,
            "folderId": self.folder_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class ItemKind(str, Enum):
    NOTEBOOK = "notebook"
    FLASHCARD = "flashcard"
    PAGE = "page"


#: Older exports call notebooks "book"
_LEGACY_KINDS = {"book": ItemKind.NOTEBOOK}


@dataclass(frozen=True)
class ProjectItem:
    kind: ItemKind
    id: str

    @classmethod
    def from_dict(cls, data: Any) -> "ProjectItem":
        data = _mapping(data, "project item")
        raw_kind = _get(data, "kind", str, "project item")
        kind = _LEGACY_KINDS.get(raw_kind)
        if kind is None:
            try:
                kind = ItemKind(raw_kind)
            except ValueError as exc:
                raise InvalidEntity(f"project item: unknown kind {raw_kind!r}") from exc
        return cls(kind=kind, id=_get(data, "id", str, "project item"))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "id": self.id}


@dataclass(frozen=True)
class Project:
    """A named group of weak references to notebooks, pages, and flashcards."""

    id: str
    name: str
    created_at: str
    updated_at: str
    items: tuple[ProjectItem, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> "Project":
        data = _mapping(data, "project")
        items = _get(data, "items", list, "project", [])
        return cls(
            id=_get(data, "id", str, "project"),
            name=_get(data, "name", str, "project"),
            created_at=_get(data, "createdAt", str, "project"),
            updated_at=_get(data, "updatedAt", str, "project"),
            items=tuple(ProjectItem.from_dict(i) for i in items),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "items": [i.to_dict() for i in self.items],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


Entity = Union[Notebook, Page, FlashcardFolder, Flashcard, Project]


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class Collection(str, Enum):
    """The four per-user collections; values are the snapshot field names."""

    BOOKS = "books"
    PROJECTS = "projects"
    FLASHCARDS = "flashcards"
    FLASHCARD_FOLDERS = "flashcardFolders"

    @property
    def slug(self) -> str:
        """Storage-key fragment for this collection."""
        return _SLUGS[self]

    @property
    def entity_type(self) -> type:
        return _ENTITY_TYPES[self]


_SLUGS = {
    Collection.BOOKS: "books",
    Collection.PROJECTS: "projects",
    Collection.FLASHCARDS: "flashcards",
    Collection.FLASHCARD_FOLDERS: "flashcard-folders",
}

_ENTITY_TYPES: dict[Collection, type] = {
    Collection.BOOKS: Notebook,
    Collection.PROJECTS: Project,
    Collection.FLASHCARDS: Flashcard,
    Collection.FLASHCARD_FOLDERS: FlashcardFolder,
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_text(value: Any, name: str, entity: str, *, allow_empty: bool = True) -> None:
    if not isinstance(value, str):
        raise InvalidEntity(f"{entity}: '{name}' must be a string")
    if not allow_empty and not value:
        raise InvalidEntity(f"{entity}: '{name}' must not be empty")


def _check_timestamps(entity: Any, label: str) -> None:
    created = parse_instant(entity.created_at)
    updated = parse_instant(entity.updated_at)
    if updated < created:
        raise InvalidEntity(f"{label} {entity.id!r}: updatedAt precedes createdAt")


def _unique_ids(entities: Iterable[Any], label: str) -> None:
    seen: set[str] = set()
    for e in entities:
        if e.id in seen:
            raise InvalidEntity(f"duplicate {label} id {e.id!r}")
        seen.add(e.id)


def validate(entity: Any) -> None:
    """Raise :class:`InvalidEntity` unless *entity* is well formed.

    Checks required fields, non-empty ids, parseable timestamps with
    ``updated_at >= created_at``, and recurses into pages and project items.
    Project items may point at ids that no longer exist.
    """
    if isinstance(entity, Page):
        label = "page"
    elif isinstance(entity, Notebook):
        label = "notebook"
    elif isinstance(entity, FlashcardFolder):
        label = "flashcard folder"
    elif isinstance(entity, Flashcard):
        label = "flashcard"
    elif isinstance(entity, Project):
        label = "project"
    else:
        raise InvalidEntity(f"not an entity: {type(entity).__name__}")

    _check_text(entity.id, "id", label, allow_empty=False)
    _check_timestamps(entity, label)

    if isinstance(entity, Page):
        _check_text(entity.name, "name", label)
        _check_text(entity.content, "content", label)
        if not isinstance(entity.order, int) or isinstance(entity.order, bool):
            raise InvalidEntity(f"page {entity.id!r}: 'order' must be an integer")
    elif isinstance(entity, Notebook):
        _check_text(entity.name, "name", label)
        for page in entity.pages:
            validate(page)
        _unique_ids(entity.pages, "page")
    elif isinstance(entity, FlashcardFolder):
        _check_text(entity.name, "name", label)
    elif isinstance(entity, Flashcard):
        _check_text(entity.front, "front", label)
        _check_text(entity.back, "back", label)
        if entity.folder_id is not None:
            _check_text(entity.folder_id, "folderId", label, allow_empty=False)
    else:
        _check_text(entity.name, "name", label)
        for item in entity.items:
            if not isinstance(item, ProjectItem) or not isinstance(item.kind, ItemKind):
                raise InvalidEntity(f"project {entity.id!r}: malformed item {item!r}")
            _check_text(item.id, "item id", label, allow_empty=False)


def validate_collection(collection: Collection, entities: Iterable[Any]) -> None:
    """Validate every entity of *collection* and check ids are unique."""
    entities = list(entities)
    expected = collection.entity_type
    for entity in entities:
        if not isinstance(entity, expected):
            raise InvalidEntity(f"{collection.value}: expected {expected.__name__}, got {type(entity).__name__}")
        validate(entity)
    _unique_ids(entities, collection.entity_type.__name__)


def decode_collection(collection: Collection, data: Any) -> list[Any]:
    """Turn a parsed JSON document into validated entities of *collection*."""
    if not isinstance(data, list):
        raise InvalidEntity(f"{collection.value}: expected a JSON array, got {type(data).__name__}")
    entities = [collection.entity_type.from_dict(item) for item in data]
    validate_collection(collection, entities)
    return entities


def encode_collection(entities: Iterable[Any]) -> list[dict[str, Any]]:
    return [e.to_dict() for e in entities]


def unlink_missing_folders(
    flashcards: Iterable[Flashcard],
    folder_ids: Iterable[str],
    *,
    now: str | None = None,
    touch: bool = True,
) -> list[Flashcard]:
    """Unassign every card whose ``folder_id`` is not one of *folder_ids*.

    Unlinked cards get a fresh ``updated_at`` unless *touch* is false.
    Cards are never removed.
    """
    known = set(folder_ids)
    stamp = now or now_iso()
    result = []
    for card in flashcards:
        if card.folder_id is not None and card.folder_id not in known:
            card = replace(card, folder_id=None, updated_at=stamp) if touch else replace(card, folder_id=None)
        result.append(card)
    return result


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Snapshot:
    """A full copy of one user's four collections; never a diff."""

    books: tuple[Notebook, ...] = ()
    projects: tuple[Project, ...] = ()
    flashcards: tuple[Flashcard, ...] = ()
    flashcard_folders: tuple[FlashcardFolder, ...] = ()
    last_sync: str = field(default_factory=now_iso)

    @classmethod
    def from_collections(cls, collections: dict[Collection, Iterable[Any]], last_sync: str | None = None) -> "Snapshot":
        return cls(
            books=tuple(collections.get(Collection.BOOKS, ())),
            projects=tuple(collections.get(Collection.PROJECTS, ())),
            flashcards=tuple(collections.get(Collection.FLASHCARDS, ())),
            flashcard_folders=tuple(collections.get(Collection.FLASHCARD_FOLDERS, ())),
            last_sync=now_iso() if last_sync is None else last_sync,
        )

    def collections(self) -> dict[Collection, list[Any]]:
        return {
            Collection.BOOKS: list(self.books),
            Collection.PROJECTS: list(self.projects),
            Collection.FLASHCARDS: list(self.flashcards),
            Collection.FLASHCARD_FOLDERS: list(self.flashcard_folders),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        """Decode a snapshot document.  Missing collections become empty."""
        data = _mapping(data, "snapshot")
        decoded: dict[Collection, list[Any]] = {}
        for collection in Collection:
            raw = data.get(collection.value)
            decoded[collection] = [] if raw is None else decode_collection(collection, raw)
        last_sync = data.get("lastSync")
        return cls.from_collections(decoded, last_sync if isinstance(last_sync, str) else None)

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {c.value: encode_collection(v) for c, v in self.collections().items()}
        doc["lastSync"] = self.last_sync
        return doc

    @classmethod
    def from_json(cls, text: str) -> "Snapshot":
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise InvalidEntity(f"snapshot is not valid JSON: {exc}") from exc
        return cls.from_dict(data)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
