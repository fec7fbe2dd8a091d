import asyncio
from unittest.mock import AsyncMock

import pytest

from library import Library
from store import MemoryStore
from utils.validators import ValidationError

DUNE = {"title": "Dune", "author": "Frank Herbert", "isbn": "978-0441172719", "category": "Science Fiction"}


def run(coro):
    return asyncio.run(coro)


def test_load_books_keeps_store_order(lib, store):
    assert [b.id for b in lib.list_books()] == [b.id for b in run(store.get_all())]
    assert lib.books.size == 5


def test_refresh_replaces_contents(lib, store):
    run(store.delete("1"))
    assert lib.find_book("1") is not None
    run(lib.refresh())
    assert lib.find_book("1") is None
    assert lib.books.size == 4


def test_add_book_prepends_and_syncs(lib, store, monkeypatch):
    sync = AsyncMock()
    monkeypatch.setattr(store, "sync", sync)

    book = run(lib.add_book(DUNE))

    assert book is not None
    assert book.is_available is True
    assert lib.list_books()[0].id == book.id
    assert lib.books.size == 6
    assert run(store.find(book.id)) is not None
    sync.assert_awaited_once()


def test_add_book_rejects_invalid_form(lib):
    with pytest.raises(ValidationError) as excinfo:
        run(lib.add_book({"title": " ", "author": "A", "isbn": "12", "category": "Cats"}))
    assert set(excinfo.value.errors) == {"title", "isbn", "category"}
    assert lib.books.size == 5


def test_add_book_allows_duplicate_isbn(lib):
    first = run(lib.add_book(DUNE))
    second = run(lib.add_book(DUNE))
    assert first.id != second.id
    assert lib.books.size == 7


def test_add_book_returns_none_when_store_fails(lib, store, monkeypatch):
    monkeypatch.setattr(store, "add", AsyncMock(side_effect=RuntimeError("store down")))
    assert run(lib.add_book(DUNE)) is None
    assert lib.books.size == 5


def test_delete_book(lib, store):
    assert run(lib.delete_book("3")) is True
    assert lib.find_book("3") is None
    assert lib.books.size == 4
    assert run(store.find("3")) is None


def test_delete_unknown_book_leaves_collection(lib):
    before = [b.id for b in lib.list_books()]
    assert run(lib.delete_book("missing")) is False
    assert [b.id for b in lib.list_books()] == before


def test_store_rejection_leaves_local_list_untouched(lib, store, monkeypatch):
    monkeypatch.setattr(store, "delete", AsyncMock(return_value=False))
    monkeypatch.setattr(store, "update", AsyncMock(return_value=None))

    assert run(lib.delete_book("1")) is False
    assert lib.find_book("1") is not None
    assert run(lib.update_book("1", {"title": "Changed"})) is False
    assert lib.find_book("1").title == "The Great Gatsby"


def test_update_book_merges_in_place(lib):
    before = lib.find_book("4")
    stamp = before.updated_at
    assert run(lib.update_book("4", {"title": "Pride & Prejudice"})) is True

    after = lib.find_book("4")
    assert after.title == "Pride & Prejudice"
    assert after.author == "Jane Austen"
    assert after.updated_at > stamp
    assert [b.id for b in lib.list_books()] == ["5", "4", "3", "2", "1"]


def test_update_unknown_book_fails(lib):
    assert run(lib.update_book("missing", {"title": "X"})) is False


def test_borrow_then_second_borrow_fails(lib):
    assert run(lib.borrow_book("5", "2")) is True
    book = lib.find_book("5")
    assert book.is_available is False
    assert book.borrowed_by == "2"
    assert book.borrowed_at is not None

    assert run(lib.borrow_book("5", "3")) is False
    assert lib.find_book("5").borrowed_by == "2"


def test_return_requires_matching_borrower(lib):
    run(lib.borrow_book("5", "2"))
    stamp = lib.find_book("5").updated_at

    assert run(lib.return_book("5", "3")) is False
    book = lib.find_book("5")
    assert book.borrowed_by == "2"
    assert book.updated_at == stamp

    assert run(lib.return_book("5", "2")) is True
    book = lib.find_book("5")
    assert book.is_available is True
    assert book.borrowed_by is None
    assert book.borrowed_at is None


def test_return_of_available_book_fails(lib):
    assert run(lib.return_book("1", "2")) is False


def test_sync_failure_does_not_fail_write(lib, store, monkeypatch):
    monkeypatch.setattr(store, "sync", AsyncMock(side_effect=RuntimeError("offline")))
    assert run(lib.delete_book("2")) is True
    assert lib.find_book("2") is None


def test_search_books_deduplicates_title_and_author_matches(empty_store):
    library = Library(empty_store)
    run(library.add_book({"title": "Austen Country", "author": "Someone", "isbn": "1234567890",
                          "category": "Travel"}))
    run(library.add_book({"title": "Emma", "author": "Jane Austen", "isbn": "1234567891",
                          "category": "Romance"}))
    run(library.add_book({"title": "Austen's Letters", "author": "Jane Austen", "isbn": "1234567892",
                          "category": "Biography"}))

    results = library.search_books("austen")
    assert [b.title for b in results] == ["Austen's Letters", "Austen Country", "Emma"]


def test_category_user_and_available_queries(lib):
    run(lib.borrow_book("2", "3"))
    assert [b.id for b in lib.books_by_category("FICTION")] == ["2", "1"]
    assert [b.id for b in lib.books_by_user("3")] == ["2"]
    assert "2" not in [b.id for b in lib.available_books()]
    assert lib.categories() == ["Fantasy", "Fiction", "Romance", "Science Fiction"]


def test_borrowed_books_pairs_borrowers(lib):
    run(lib.borrow_book("1", "3"))
    rows = run(lib.borrowed_books())
    assert len(rows) == 1
    book, user = rows[0]
    assert book.id == "1"
    assert user.name == "Jane Smith"


def test_statistics(lib):
    run(lib.borrow_book("1", "2"))
    stats = run(lib.get_statistics())
    assert stats == {
        "total_books": 5,
        "available_books": 4,
        "borrowed_books": 1,
        "categories": 4,
        "unique_authors": 5,
        "total_users": 3,
    }


def test_local_records_are_separate_from_store():
    store = MemoryStore.with_sample_data()
    library = Library(store)
    run(library.load_books())
    library.find_book("1").title = "Local only"
    assert run(store.find("1")).title == "The Great Gatsby"


def test_update_book_validates_supplied_fields(lib, store):
    with pytest.raises(ValidationError) as excinfo:
        run(lib.update_book("1", {"title": None, "isbn": "not-an-isbn"}))
    assert set(excinfo.value.errors) == {"title", "isbn"}

    with pytest.raises(ValidationError):
        run(lib.update_book("1", {"category": "Cats"}))

    assert lib.find_book("1").title == "The Great Gatsby"
    assert run(store.find("1")).isbn == "978-0743273565"


def test_update_book_refuses_borrower_state(lib, store):
    with pytest.raises(ValidationError) as excinfo:
        run(lib.update_book("1", {"is_available": False}))
    assert "is_available" in excinfo.value.errors

    book = lib.find_book("1")
    assert book.is_available is True
    assert book.borrowed_by is None
    assert run(store.find("1")).is_available is True


def test_update_book_normalizes_isbn_and_matches_store(lib, store):
    assert run(lib.update_book("2", {"isbn": " 978 0061120084 "})) is True
    local = lib.find_book("2")
    stored = run(store.find("2"))
    assert local.isbn == stored.isbn == "9780061120084"
    assert local.updated_at == stored.updated_at


def test_borrow_times_match_store(lib, store):
    assert run(lib.borrow_book("3", "2")) is True
    local = lib.find_book("3")
    stored = run(store.find("3"))
    assert local.borrowed_at == stored.borrowed_at
    assert local.updated_at == stored.updated_at
