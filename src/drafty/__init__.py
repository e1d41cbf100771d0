"""Drafty local-first data layer with Gist snapshot sync."""

from drafty.errors import DraftyError, InvalidEntity, InvalidToken, RemoteError, RemoteUnavailable
from drafty.library import Library
from drafty.models import (
    Collection,
    Flashcard,
    FlashcardFolder,
    ItemKind,
    Notebook,
    Page,
    Project,
    ProjectItem,
    Snapshot,
    validate,
)
from drafty.store import LocalStore

__all__ = [
    "Collection",
    "Flashcard",
    "FlashcardFolder",
    "ItemKind",
    "Notebook",
    "Page",
    "Project",
    "ProjectItem",
    "Snapshot",
    "validate",
    "LocalStore",
    "Library",
    "DraftyError",
    "InvalidEntity",
    "InvalidToken",
    "RemoteError",
    "RemoteUnavailable",
]
