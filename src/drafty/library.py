"""Collection mutations with the ownership and weak-reference rules.

The module-level functions are pure: they take the current collection(s)
and return new lists, leaving their inputs and the entities in them
untouched.  Every changed entity gets a fresh ``updated_at``.

- Deleting a notebook deletes its pages and nothing else.
- Deleting a folder unassigns its flashcards (``folder_id = None``); no
  flashcard is removed.
- Project items are weak references.  Nothing cascades into projects, and
  :func:`resolve_project_items` skips ids that no longer resolve.

:class:`Library` binds these functions to a :class:`~drafty.store.LocalStore`
and a user id, loading and saving around each call.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Sequence, TypeVar

from drafty.models import (
    Collection,
    Flashcard,
    FlashcardFolder,
    ItemKind,
    Notebook,
    Page,
    Project,
    ProjectItem,
    new_id,
    now_iso,
)
from drafty.store import LocalStore

T = TypeVar("T", Notebook, Page, Flashcard, FlashcardFolder, Project)

DEFAULT_NOTEBOOK_NAME = "Untitled Notebook"
DEFAULT_PAGE_NAME = "Untitled Page"
DEFAULT_FOLDER_NAME = "New Folder"
DEFAULT_PROJECT_NAME = "Untitled Project"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _index(entities: Sequence[T], entity_id: str, label: str) -> int:
    for i, e in enumerate(entities):
        if e.id == entity_id:
            return i
    raise KeyError(f"no {label} with id {entity_id!r}")


def _replace_at(entities: Sequence[T], index: int, entity: T) -> list[T]:
    result = list(entities)
    result[index] = entity
    return result


def _touch(entity: T, now: str | None, **changes: Any) -> T:
    return replace(entity, updated_at=now or now_iso(), **changes)


# ---------------------------------------------------------------------------
# Notebooks and pages
# ---------------------------------------------------------------------------


def create_notebook(
    notebooks: Sequence[Notebook], name: str = DEFAULT_NOTEBOOK_NAME, *, now: str | None = None
) -> tuple[list[Notebook], Notebook]:
    """Prepend a new empty notebook; return ``(notebooks, new_notebook)``."""
    now = now or now_iso()
    notebook = Notebook(id=new_id(), name=name, created_at=now, updated_at=now)
    return [notebook, *notebooks], notebook


def ensure_notebook(notebooks: Sequence[Notebook], *, now: str | None = None) -> list[Notebook]:
    """Give a user with no notebooks a first, empty one."""
    if notebooks:
        return list(notebooks)
    result, _ = create_notebook(notebooks, now=now)
    return result


def rename_notebook(notebooks: Sequence[Notebook], notebook_id: str, name: str, *, now: str | None = None) -> list[Notebook]:
    i = _index(notebooks, notebook_id, "notebook")
    return _replace_at(notebooks, i, _touch(notebooks[i], now, name=name))


def delete_notebook(notebooks: Sequence[Notebook], notebook_id: str) -> list[Notebook]:
    """Remove a notebook together with all of its pages."""
    _index(notebooks, notebook_id, "notebook")
    return [n for n in notebooks if n.id != notebook_id]


def sorted_pages(notebook: Notebook) -> list[Page]:
    """Pages in display order; equal ``order`` values keep insertion order."""
    return sorted(notebook.pages, key=lambda p: p.order)


def add_page(
    notebooks: Sequence[Notebook],
    notebook_id: str,
    name: str = DEFAULT_PAGE_NAME,
    content: str = "",
    *,
    now: str | None = None,
) -> tuple[list[Notebook], Page]:
    """Append a page after the notebook's last page."""
    now = now or now_iso()
    i = _index(notebooks, notebook_id, "notebook")
    notebook = notebooks[i]
    order = max((p.order for p in notebook.pages), default=-1) + 1
    page = Page(id=new_id(), name=name, content=content, order=order, created_at=now, updated_at=now)
    updated = _touch(notebook, now, pages=(*notebook.pages, page))
    return _replace_at(notebooks, i, updated), page


def _update_pages(
    notebooks: Sequence[Notebook], notebook_id: str, page_id: str, now: str | None, **changes: Any
) -> list[Notebook]:
    now = now or now_iso()
    i = _index(notebooks, notebook_id, "notebook")
    notebook = notebooks[i]
    j = _index(notebook.pages, page_id, "page")
    pages = _replace_at(notebook.pages, j, _touch(notebook.pages[j], now, **changes))
    return _replace_at(notebooks, i, _touch(notebook, now, pages=tuple(pages)))


def update_page(
    notebooks: Sequence[Notebook],
    notebook_id: str,
    page_id: str,
    *,
    name: str | None = None,
    content: str | None = None,
    now: str | None = None,
) -> list[Notebook]:
    changes: dict[str, Any] = {}
    if name is not None:
        changes["name"] = name
    if content is not None:
        changes["content"] = content
    return _update_pages(notebooks, notebook_id, page_id, now, **changes)


def move_page(
    notebooks: Sequence[Notebook], notebook_id: str, page_id: str, order: int, *, now: str | None = None
) -> list[Notebook]:
    return _update_pages(notebooks, notebook_id, page_id, now, order=order)


def delete_page(notebooks: Sequence[Notebook], notebook_id: str, page_id: str, *, now: str | None = None) -> list[Notebook]:
    i = _index(notebooks, notebook_id, "notebook")
    notebook = notebooks[i]
    _index(notebook.pages, page_id, "page")
    pages = tuple(p for p in notebook.pages if p.id != page_id)
    return _replace_at(notebooks, i, _touch(notebook, now, pages=pages))


# ---------------------------------------------------------------------------
# Flashcard folders
# ---------------------------------------------------------------------------


def create_folder(
    folders: Sequence[FlashcardFolder], name: str = "", *, now: str | None = None
) -> tuple[list[FlashcardFolder], FlashcardFolder]:
    now = now or now_iso()
    folder = FlashcardFolder(id=new_id(), name=name.strip() or DEFAULT_FOLDER_NAME, created_at=now, updated_at=now)
    return [folder, *folders], folder


def rename_folder(
    folders: Sequence[FlashcardFolder], folder_id: str, name: str, *, now: str | None = None
) -> list[FlashcardFolder]:
    i = _index(folders, folder_id, "folder")
    return _replace_at(folders, i, _touch(folders[i], now, name=name))


def delete_folder(
    folders: Sequence[FlashcardFolder],
    flashcards: Sequence[Flashcard],
    folder_id: str,
    *,
    now: str | None = None,
) -> tuple[list[FlashcardFolder], list[Flashcard]]:
    """Remove a folder and unassign (never delete) the flashcards it held."""
    now = now or now_iso()
    _index(folders, folder_id, "folder")
    remaining = [f for f in folders if f.id != folder_id]
    cards = [_touch(c, now, folder_id=None) if c.folder_id == folder_id else c for c in flashcards]
    return remaining, cards


# ---------------------------------------------------------------------------
# Flashcards
# ---------------------------------------------------------------------------


def _check_folder(folders: Sequence[FlashcardFolder], folder_id: str | None) -> None:
    if folder_id is not None:
        _index(folders, folder_id, "folder")


def create_flashcard(
    flashcards: Sequence[Flashcard],
    front: str,
    back: str,
    *,
    folder_id: str | None = None,
    folders: Sequence[FlashcardFolder] = (),
    now: str | None = None,
) -> tuple[list[Flashcard], Flashcard]:
    """Prepend a new card.  *folder_id*, when given, must name one of *folders*."""
    if not front.strip() and not back.strip():
        raise ValueError("a flashcard needs a front or a back")
    _check_folder(folders, folder_id)
    now = now or now_iso()
    card = Flashcard(id=new_id(), front=front, back=back, folder_id=folder_id, created_at=now, updated_at=now)
    return [card, *flashcards], card


def update_flashcard(
    flashcards: Sequence[Flashcard],
    card_id: str,
    *,
    front: str | None = None,
    back: str | None = None,
    now: str | None = None,
) -> list[Flashcard]:
    changes: dict[str, Any] = {}
    if front is not None:
        changes["front"] = front
    if back is not None:
        changes["back"] = back
    i = _index(flashcards, card_id, "flashcard")
    return _replace_at(flashcards, i, _touch(flashcards[i], now, **changes))


def move_flashcard(
    flashcards: Sequence[Flashcard],
    folders: Sequence[FlashcardFolder],
    card_id: str,
    folder_id: str | None,
    *,
    now: str | None = None,
) -> list[Flashcard]:
    _check_folder(folders, folder_id)
    i = _index(flashcards, card_id, "flashcard")
    return _replace_at(flashcards, i, _touch(flashcards[i], now, folder_id=folder_id))


def delete_flashcard(flashcards: Sequence[Flashcard], card_id: str) -> list[Flashcard]:
    _index(flashcards, card_id, "flashcard")
    return [c for c in flashcards if c.id != card_id]


def flashcards_in_folder(flashcards: Sequence[Flashcard], folder_id: str | None) -> list[Flashcard]:
    """Cards filed under *folder_id*; ``None`` selects unfiled cards."""
    return [c for c in flashcards if c.folder_id == folder_id]


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def create_project(
    projects: Sequence[Project], name: str = DEFAULT_PROJECT_NAME, *, now: str | None = None
) -> tuple[list[Project], Project]:
    now = now or now_iso()
    project = Project(id=new_id(), name=name, created_at=now, updated_at=now)
    return [project, *projects], project


def rename_project(projects: Sequence[Project], project_id: str, name: str, *, now: str | None = None) -> list[Project]:
    i = _index(projects, project_id, "project")
    return _replace_at(projects, i, _touch(projects[i], now, name=name))


def delete_project(projects: Sequence[Project], project_id: str) -> list[Project]:
    _index(projects, project_id, "project")
    return [p for p in projects if p.id != project_id]


def add_project_item(
    projects: Sequence[Project], project_id: str, kind: ItemKind, item_id: str, *, now: str | None = None
) -> list[Project]:
    """Put a reference at the front of the project; an existing one is left alone."""
    i = _index(projects, project_id, "project")
    project = projects[i]
    item = ProjectItem(kind=ItemKind(kind), id=item_id)
    if item in project.items:
        return list(projects)
    return _replace_at(projects, i, _touch(project, now, items=(item, *project.items)))


def remove_project_item(
    projects: Sequence[Project], project_id: str, kind: ItemKind, item_id: str, *, now: str | None = None
) -> list[Project]:
    i = _index(projects, project_id, "project")
    project = projects[i]
    item = ProjectItem(kind=ItemKind(kind), id=item_id)
    items = tuple(it for it in project.items if it != item)
    return _replace_at(projects, i, _touch(project, now, items=items))


def resolve_project_items(
    project: Project, notebooks: Sequence[Notebook], flashcards: Sequence[Flashcard]
) -> list[tuple[ProjectItem, Notebook | Page | Flashcard]]:
    """Pair each item with its entity, skipping references that no longer resolve."""
    by_kind: dict[ItemKind, dict[str, Any]] = {
        ItemKind.NOTEBOOK: {n.id: n for n in notebooks},
        ItemKind.PAGE: {p.id: p for n in notebooks for p in n.pages},
        ItemKind.FLASHCARD: {c.id: c for c in flashcards},
    }
    resolved = []
    for item in project.items:
        target = by_kind[item.kind].get(item.id)
        if target is not None:
            resolved.append((item, target))
    return resolved


# ---------------------------------------------------------------------------
# Store-bound facade
# ---------------------------------------------------------------------------


class Library:
    """One user's collections, persisted through a :class:`LocalStore`."""

    def __init__(self, store: LocalStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id

    @property
    def notebooks(self) -> list[Notebook]:
        return self.store.load(self.user_id, Collection.BOOKS)

    @property
    def flashcards(self) -> list[Flashcard]:
        return self.store.load(self.user_id, Collection.FLASHCARDS)

    @property
    def folders(self) -> list[FlashcardFolder]:
        return self.store.load(self.user_id, Collection.FLASHCARD_FOLDERS)

    @property
    def projects(self) -> list[Project]:
        return self.store.load(self.user_id, Collection.PROJECTS)

    def _save(self, collection: Collection, entities: Sequence[Any]) -> None:
        self.store.save(self.user_id, collection, entities)

    # ---------------------------------------------------------------- notebooks

    def open_notebooks(self) -> list[Notebook]:
        """Load notebooks, creating a first one for a user who has none."""
        current = self.notebooks
        if current:
            return current
        notebooks = ensure_notebook(current)
        self._save(Collection.BOOKS, notebooks)
        return notebooks

    def create_notebook(self, name: str = DEFAULT_NOTEBOOK_NAME) -> Notebook:
        notebooks, notebook = create_notebook(self.notebooks, name)
        self._save(Collection.BOOKS, notebooks)
        return notebook

    def rename_notebook(self, notebook_id: str, name: str) -> None:
        self._save(Collection.BOOKS, rename_notebook(self.notebooks, notebook_id, name))

    def delete_notebook(self, notebook_id: str) -> None:
        self._save(Collection.BOOKS, delete_notebook(self.notebooks, notebook_id))

    def add_page(self, notebook_id: str, name: str = DEFAULT_PAGE_NAME, content: str = "") -> Page:
        notebooks, page = add_page(self.notebooks, notebook_id, name, content)
        self._save(Collection.BOOKS, notebooks)
        return page

    def update_page(self, notebook_id: str, page_id: str, *, name: str | None = None, content: str | None = None) -> None:
        self._save(Collection.BOOKS, update_page(self.notebooks, notebook_id, page_id, name=name, content=content))

    def move_page(self, notebook_id: str, page_id: str, order: int) -> None:
        self._save(Collection.BOOKS, move_page(self.notebooks, notebook_id, page_id, order))

    def delete_page(self, notebook_id: str, page_id: str) -> None:
        self._save(Collection.BOOKS, delete_page(self.notebooks, notebook_id, page_id))

    # ---------------------------------------------------------------- flashcards

    def create_folder(self, name: str = "") -> FlashcardFolder:
        folders, folder = create_folder(self.folders, name)
        self._save(Collection.FLASHCARD_FOLDERS, folders)
        return folder

    def rename_folder(self, folder_id: str, name: str) -> None:
        self._save(Collection.FLASHCARD_FOLDERS, rename_folder(self.folders, folder_id, name))

    def delete_folder(self, folder_id: str) -> None:
        folders, cards = delete_folder(self.folders, self.flashcards, folder_id)
        self.store.save_many(
            self.user_id,
            {Collection.FLASHCARD_FOLDERS: folders, Collection.FLASHCARDS: cards},
        )

    def create_flashcard(self, front: str, back: str, folder_id: str | None = None) -> Flashcard:
        cards, card = create_flashcard(self.flashcards, front, back, folder_id=folder_id, folders=self.folders)
        self._save(Collection.FLASHCARDS, cards)
        return card

    def update_flashcard(self, card_id: str, *, front: str | None = None, back: str | None = None) -> None:
        self._save(Collection.FLASHCARDS, update_flashcard(self.flashcards, card_id, front=front, back=back))

    def move_flashcard(self, card_id: str, folder_id: str | None) -> None:
        self._save(Collection.FLASHCARDS, move_flashcard(self.flashcards, self.folders, card_id, folder_id))

    def delete_flashcard(self, card_id: str) -> None:
        self._save(Collection.FLASHCARDS, delete_flashcard(self.flashcards, card_id))

    # ---------------------------------------------------------------- projects

    def create_project(self, name: str = DEFAULT_PROJECT_NAME) -> Project:
        projects, project = create_project(self.projects, name)
        self._save(Collection.PROJECTS, projects)
        return project

    def rename_project(self, project_id: str, name: str) -> None:
        self._save(Collection.PROJECTS, rename_project(self.projects, project_id, name))

    def delete_project(self, project_id: str) -> None:
        self._save(Collection.PROJECTS, delete_project(self.projects, project_id))

    def add_project_item(self, project_id: str, kind: ItemKind, item_id: str) -> None:
        self._save(Collection.PROJECTS, add_project_item(self.projects, project_id, kind, item_id))

    def remove_project_item(self, project_id: str, kind: ItemKind, item_id: str) -> None:
        self._save(Collection.PROJECTS, remove_project_item(self.projects, project_id, kind, item_id))

    def project_contents(self, project_id: str) -> list[tuple[ProjectItem, Notebook | Page | Flashcard]]:
        projects = self.projects
        project = projects[_index(projects, project_id, "project")]
        return resolve_project_items(project, self.notebooks, self.flashcards)
