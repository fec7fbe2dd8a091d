import asyncio
from datetime import datetime, timezone

import pytest

from book import Book
from library import Library
from store import MemoryStore, sample_users


def _make_book(book_id: str, title: str = "Title", author: str = "Author", category: str = "Fiction",
               day: int = 1) -> Book:
    created = datetime(2024, 2, day, tzinfo=timezone.utc)
    return Book(id=book_id, title=title, author=author, isbn="978-0000000000", category=category,
                created_at=created, updated_at=created)


@pytest.fixture
def make_book():
    return _make_book


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # The CLI keeps its output mode in the environment
    monkeypatch.delenv("LIB_CLI_OUTPUT", raising=False)


@pytest.fixture
def store():
    return MemoryStore.with_sample_data()


@pytest.fixture
def empty_store():
    return MemoryStore(users=sample_users())


@pytest.fixture
def lib(store):
    library = Library(store)
    asyncio.run(library.load_books())
    yield library
    asyncio.run(library.close())
