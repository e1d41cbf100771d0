"""Unit tests for drafty.store.LocalStore."""

import json
import logging
from pathlib import Path

import pytest

from drafty.errors import InvalidEntity
from drafty.models import Collection, Flashcard, FlashcardFolder, ItemKind, Notebook, Page, Project, ProjectItem
from drafty.store import LocalStore

T0 = "2026-01-01T00:00:00.000Z"

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def notebooks() -> list[Notebook]:
    page = Page(id="p1", name="Intro", content="hello", order=0, created_at=T0, updated_at=T0)
    return [
        Notebook(id="1", name="A", created_at=T0, updated_at=T0, pages=(page,)),
        Notebook(id="2", name="B", created_at=T0, updated_at=T0),
    ]


@pytest.fixture()
def flashcards() -> list[Flashcard]:
    return [
        Flashcard(id="f1", front="Q", back="A", created_at=T0, updated_at=T0),
        Flashcard(id="f2", front="Q2", back="A2", folder_id="d1", created_at=T0, updated_at=T0),
    ]


# ---------------------------------------------------------------------------
# key()
# ---------------------------------------------------------------------------


class TestKeys:
    def test_embeds_user_id(self):
        assert LocalStore.key("uid-42", Collection.BOOKS) == "drafty-books-uid-42"

    def test_folder_key(self):
        assert LocalStore.key("u", Collection.FLASHCARD_FOLDERS) == "drafty-flashcard-folders-u"

    def test_accepts_collection_value(self):
        assert LocalStore.key("u", "flashcardFolders") == LocalStore.key("u", Collection.FLASHCARD_FOLDERS)

    def test_token_key(self):
        assert LocalStore.token_key("u") == "drafty-gist-token-u"

    def test_keys_are_distinct_across_users_and_collections(self):
        users = ["a", "b", "a-b", "books-a", "flashcards-a"]
        keys = [LocalStore.key(u, c) for u in users for c in Collection] + [LocalStore.token_key(u) for u in users]
        assert len(keys) == len(set(keys))


# ---------------------------------------------------------------------------
# save() / load()
# ---------------------------------------------------------------------------


class TestSaveLoad:
    def test_absent_collection_is_empty(self, store: LocalStore):
        assert store.load("u1", Collection.PROJECTS) == []

    def test_round_trip_notebooks(self, store: LocalStore, notebooks):
        store.save("u1", Collection.BOOKS, notebooks)
        assert store.load("u1", Collection.BOOKS) == notebooks

    def test_round_trip_flashcards(self, store: LocalStore, flashcards):
        store.save("u1", Collection.FLASHCARDS, flashcards)
        assert store.load("u1", Collection.FLASHCARDS) == flashcards

    def test_round_trip_projects(self, store: LocalStore):
        project = Project(
            id="p", name="P", created_at=T0, updated_at=T0,
            items=(ProjectItem(ItemKind.NOTEBOOK, "1"), ProjectItem(ItemKind.PAGE, "p1")),
        )
        store.save("u1", Collection.PROJECTS, [project])
        assert store.load("u1", Collection.PROJECTS) == [project]

    def test_save_overwrites(self, store: LocalStore, notebooks):
        store.save("u1", Collection.BOOKS, notebooks)
        store.save("u1", Collection.BOOKS, notebooks[:1])
        assert store.load("u1", Collection.BOOKS) == notebooks[:1]

    def test_users_are_isolated(self, store: LocalStore, notebooks):
        store.save("u1", Collection.BOOKS, notebooks)
        assert store.load("u2", Collection.BOOKS) == []

    def test_save_rejects_invalid_entities(self, store: LocalStore, notebooks):
        store.save("u1", Collection.BOOKS, notebooks)
        with pytest.raises(InvalidEntity):
            store.save("u1", Collection.BOOKS, [notebooks[0], notebooks[0]])
        assert store.load("u1", Collection.BOOKS) == notebooks

    def test_persists_across_connections(self, tmp_path: Path, notebooks):
        path = tmp_path / "persist.duckdb"
        with LocalStore(path) as first:
            first.save("u1", Collection.BOOKS, notebooks)
        with LocalStore(path) as second:
            assert second.load("u1", Collection.BOOKS) == notebooks

    def test_db_path_from_environment(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "env" / "drafty.duckdb"
        monkeypatch.setenv("DRAFTY_DB_PATH", str(path))
        with LocalStore() as s:
            s.save_token("u1", "t")
        assert path.exists()


class TestCorruptData:
    def test_invalid_json_loads_empty(self, store: LocalStore, caplog):
        store.write_raw(LocalStore.key("u1", Collection.BOOKS), "{not json")
        with caplog.at_level(logging.WARNING, logger="drafty.store"):
            assert store.load("u1", Collection.BOOKS) == []
        assert "unreadable" in caplog.text

    def test_wrong_shape_loads_empty(self, store: LocalStore):
        store.write_raw(LocalStore.key("u1", Collection.FLASHCARDS), json.dumps({"id": "f1"}))
        assert store.load("u1", Collection.FLASHCARDS) == []

    def test_invalid_entity_loads_empty(self, store: LocalStore):
        store.write_raw(LocalStore.key("u1", Collection.FLASHCARDS), json.dumps([{"id": "", "front": "Q"}]))
        assert store.load("u1", Collection.FLASHCARDS) == []

    def test_corrupt_data_is_left_in_place(self, store: LocalStore):
        key = LocalStore.key("u1", Collection.BOOKS)
        store.write_raw(key, "{not json")
        store.load("u1", Collection.BOOKS)
        assert store.read_raw(key) == "{not json"

    def test_database_error_loads_empty(self, tmp_path: Path, caplog):
        closed = LocalStore(tmp_path / "closed.duckdb")
        closed.close()
        with caplog.at_level(logging.WARNING, logger="drafty.store"):
            assert closed.load("u1", Collection.BOOKS) == []
            assert closed.export_blob("u1", Collection.BOOKS) == []
        assert "unreadable" in caplog.text

    def test_unreadable_names_corrupt_collections(self, store: LocalStore, notebooks):
        store.save("u1", Collection.BOOKS, notebooks)
        store.write_raw(LocalStore.key("u1", Collection.FLASHCARDS), "{not json")
        problems = store.unreadable("u1")
        assert list(problems) == [Collection.FLASHCARDS]
        assert LocalStore.key("u1", Collection.FLASHCARDS) in problems[Collection.FLASHCARDS]

    def test_absent_collections_are_not_unreadable(self, store: LocalStore):
        assert store.unreadable("u1") == {}


# ---------------------------------------------------------------------------
# save_many()
# ---------------------------------------------------------------------------


class TestSaveMany:
    def test_writes_all_collections(self, store: LocalStore, notebooks, flashcards):
        store.save_many("u1", {Collection.BOOKS: notebooks, Collection.FLASHCARDS: flashcards})
        assert store.load("u1", Collection.BOOKS) == notebooks
        assert store.load("u1", Collection.FLASHCARDS) == flashcards

    def test_invalid_collection_writes_nothing(self, store: LocalStore, notebooks, flashcards):
        with pytest.raises(InvalidEntity):
            store.save_many("u1", {Collection.BOOKS: notebooks, Collection.FLASHCARDS: [flashcards[0]] * 2})
        assert store.load("u1", Collection.BOOKS) == []


# ---------------------------------------------------------------------------
# clear()
# ---------------------------------------------------------------------------


class TestClear:
    def test_clear_removes_collection(self, store: LocalStore, notebooks):
        store.save("u1", Collection.BOOKS, notebooks)
        store.clear("u1", Collection.BOOKS)
        assert store.read_raw(LocalStore.key("u1", Collection.BOOKS)) is None

    def test_clear_books_removes_legacy_notes(self, store: LocalStore):
        store.write_raw(LocalStore.legacy_notes_key("u1"), "[]")
        store.clear("u1", Collection.BOOKS)
        assert store.read_raw(LocalStore.legacy_notes_key("u1")) is None

    def test_clear_leaves_other_collections(self, store: LocalStore, notebooks, flashcards):
        store.save("u1", Collection.BOOKS, notebooks)
        store.save("u1", Collection.FLASHCARDS, flashcards)
        store.clear("u1", Collection.FLASHCARDS)
        assert store.load("u1", Collection.BOOKS) == notebooks

    def test_clear_absent_is_noop(self, store: LocalStore):
        store.clear("u1", Collection.PROJECTS)
        assert store.keys() == []

    def test_clear_folders_unfiles_flashcards(self, store: LocalStore, flashcards):
        folder = FlashcardFolder(id="d1", name="Bio", created_at=T0, updated_at=T0)
        store.save_many("u1", {Collection.FLASHCARDS: flashcards, Collection.FLASHCARD_FOLDERS: [folder]})
        store.clear("u1", Collection.FLASHCARD_FOLDERS)
        cards = store.load("u1", Collection.FLASHCARDS)
        assert [c.id for c in cards] == ["f1", "f2"]
        assert all(c.folder_id is None for c in cards)
        assert cards[0] == flashcards[0]
        assert cards[1].updated_at != T0

    def test_clear_folders_leaves_corrupt_flashcards(self, store: LocalStore):
        key = LocalStore.key("u1", Collection.FLASHCARDS)
        store.write_raw(key, "{not json")
        store.clear("u1", Collection.FLASHCARD_FOLDERS)
        assert store.read_raw(key) == "{not json"


# ---------------------------------------------------------------------------
# export_blob() / import_blob()
# ---------------------------------------------------------------------------


class TestExportImport:
    def test_export_absent_is_empty_list(self, store: LocalStore):
        assert store.export_blob("u1", Collection.BOOKS) == []

    def test_export_is_wire_json(self, store: LocalStore, flashcards):
        store.save("u1", Collection.FLASHCARDS, flashcards)
        exported = store.export_blob("u1", Collection.FLASHCARDS)
        assert exported[1]["folderId"] == "d1"

    def test_export_corrupt_is_empty(self, store: LocalStore):
        store.write_raw(LocalStore.key("u1", Collection.BOOKS), "{not json")
        assert store.export_blob("u1", Collection.BOOKS) == []

    def test_import_into_other_user(self, store: LocalStore, notebooks):
        store.save("u1", Collection.BOOKS, notebooks)
        store.import_blob("u2", Collection.BOOKS, store.export_blob("u1", Collection.BOOKS))
        assert store.load("u2", Collection.BOOKS) == notebooks

    def test_import_json_text(self, store: LocalStore):
        folder = FlashcardFolder(id="d1", name="Bio", created_at=T0, updated_at=T0)
        store.import_blob("u1", Collection.FLASHCARD_FOLDERS, json.dumps([folder.to_dict()]))
        assert store.load("u1", Collection.FLASHCARD_FOLDERS) == [folder]

    def test_import_object_root_rejected(self, store: LocalStore, notebooks):
        store.save("u1", Collection.BOOKS, notebooks)
        with pytest.raises(InvalidEntity):
            store.import_blob("u1", Collection.BOOKS, {"books": []})
        assert store.load("u1", Collection.BOOKS) == notebooks

    def test_import_array_of_wrong_entities_rejected(self, store: LocalStore, notebooks, flashcards):
        store.save("u1", Collection.BOOKS, notebooks)
        with pytest.raises(InvalidEntity):
            store.import_blob("u1", Collection.BOOKS, [c.to_dict() for c in flashcards])
        assert store.load("u1", Collection.BOOKS) == notebooks

    def test_import_partially_valid_rejected(self, store: LocalStore, flashcards):
        doc = [flashcards[0].to_dict(), {"id": "bad"}]
        with pytest.raises(InvalidEntity):
            store.import_blob("u1", Collection.FLASHCARDS, doc)
        assert store.read_raw(LocalStore.key("u1", Collection.FLASHCARDS)) is None

    def test_import_invalid_json_text(self, store: LocalStore):
        with pytest.raises(InvalidEntity, match="not valid JSON"):
            store.import_blob("u1", Collection.BOOKS, "{oops")

    def test_import_flashcards_drops_unknown_folder(self, store: LocalStore, flashcards):
        imported = store.import_blob("u1", Collection.FLASHCARDS, [c.to_dict() for c in flashcards])
        assert imported[1].folder_id is None
        assert [c.folder_id for c in store.load("u1", Collection.FLASHCARDS)] == [None, None]

    def test_import_flashcards_keeps_known_folder(self, store: LocalStore, flashcards):
        store.save("u1", Collection.FLASHCARD_FOLDERS, [FlashcardFolder(id="d1", name="Bio", created_at=T0, updated_at=T0)])
        store.import_blob("u1", Collection.FLASHCARDS, [c.to_dict() for c in flashcards])
        assert store.load("u1", Collection.FLASHCARDS) == flashcards

    def test_import_folders_unfiles_orphaned_flashcards(self, store: LocalStore, flashcards):
        old = FlashcardFolder(id="d1", name="Bio", created_at=T0, updated_at=T0)
        new = FlashcardFolder(id="d2", name="Chem", created_at=T0, updated_at=T0)
        store.save_many("u1", {Collection.FLASHCARDS: flashcards, Collection.FLASHCARD_FOLDERS: [old]})
        store.import_blob("u1", Collection.FLASHCARD_FOLDERS, [new.to_dict()])
        assert store.load("u1", Collection.FLASHCARD_FOLDERS) == [new]
        assert [c.folder_id for c in store.load("u1", Collection.FLASHCARDS)] == [None, None]


# ---------------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------------


class TestToken:
    def test_absent_token(self, store: LocalStore):
        assert store.load_token("u1") is None

    def test_save_and_load(self, store: LocalStore):
        store.save_token("u1", "ghp_x")
        assert store.load_token("u1") == "ghp_x"
        assert store.load_token("u2") is None

    def test_clear(self, store: LocalStore):
        store.save_token("u1", "ghp_x")
        store.clear_token("u1")
        assert store.load_token("u1") is None
