"""Persistence collaborators for the catalog.

A store is the system of record: the library writes to it first and mirrors
successful writes into its in-memory linked list. Stores are constructed
explicitly and handed to the library; there is no process-wide instance.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from book import Book, User, next_timestamp, parse_datetime, utcnow
from config import Settings

logger = logging.getLogger(__name__)


def sample_books() -> List[Book]:
    """Seed catalog, newest first."""
    rows = [
        ("5", "The Hobbit", "J.R.R. Tolkien", "978-0547928241", "Fantasy", 5),
        ("4", "Pride and Prejudice", "Jane Austen", "978-0141439518", "Romance", 4),
        ("3", "1984", "George Orwell", "978-0451524935", "Science Fiction", 3),
        ("2", "To Kill a Mockingbird", "Harper Lee", "978-0446310789", "Fiction", 2),
        ("1", "The Great Gatsby", "F. Scott Fitzgerald", "978-0743273565", "Fiction", 1),
    ]
    books = []
    for book_id, title, author, isbn, category, day in rows:
        created = datetime(2024, 1, day, tzinfo=timezone.utc)
        books.append(Book(id=book_id, title=title, author=author, isbn=isbn, category=category,
                          created_at=created, updated_at=created))
    return books


def sample_users() -> List[User]:
    return [
        User(id="1", name="Admin User", email="admin@library.com", role="admin"),
        User(id="2", name="John Doe", email="john@example.com"),
        User(id="3", name="Jane Smith", email="jane@example.com"),
    ]


def new_book_id() -> str:
    return uuid.uuid4().hex


class BookStore:
    """Interface every store implements. All operations are coroutines."""

    async def get_all(self) -> List[Book]:
        raise NotImplementedError

    async def add(self, fields: dict) -> Book:
        raise NotImplementedError

    async def update(self, book_id: str, fields: dict) -> Optional[Book]:
        raise NotImplementedError

    async def delete(self, book_id: str) -> bool:
        raise NotImplementedError

    async def find(self, book_id: str) -> Optional[Book]:
        raise NotImplementedError

    async def borrow(self, book_id: str, user_id: str) -> bool:
        raise NotImplementedError

    async def return_book(self, book_id: str, user_id: str) -> bool:
        raise NotImplementedError

    async def search(self, query: str) -> List[Book]:
        raise NotImplementedError

    async def books_by_category(self, category: str) -> List[Book]:
        raise NotImplementedError

    async def books_by_user(self, user_id: str) -> List[Book]:
        raise NotImplementedError

    async def get_all_users(self) -> List[User]:
        raise NotImplementedError

    async def find_user(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    async def find_user_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    async def update_user(self, user_id: str, fields: dict) -> Optional[User]:
        raise NotImplementedError

    async def sync(self) -> None:
        """Best-effort flush of local state to the backing store."""

    async def close(self) -> None:
        return None


class MemoryStore(BookStore):
    """In-memory document store. Hands out copies so callers never share records."""

    def __init__(self, books: Optional[List[Book]] = None, users: Optional[List[User]] = None,
                 latency: float = 0.0) -> None:
        self._books: List[Book] = [b.copy() for b in (books or [])]
        self._users: List[User] = [u.copy() for u in (users or [])]
        self.latency = latency

    @classmethod
    def with_sample_data(cls, latency: float = 0.0) -> "MemoryStore":
        return cls(books=sample_books(), users=sample_users(), latency=latency)

    async def _delay(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    def _book_index(self, book_id: str) -> int:
        for index, book in enumerate(self._books):
            if book.id == book_id:
                return index
        return -1

    def _user_index(self, user_id: str) -> int:
        for index, user in enumerate(self._users):
            if user.id == user_id:
                return index
        return -1

    # ------------------------- Books ------------------------- #
    async def get_all(self) -> List[Book]:
        await self._delay()
        return [b.copy() for b in self._books]

    async def add(self, fields: dict) -> Book:
        await self._delay()
        now = utcnow()
        book = Book(
            id=new_book_id(),
            title=fields["title"],
            author=fields["author"],
            isbn=fields["isbn"],
            category=fields["category"],
            is_available=fields.get("is_available", True),
            borrowed_by=fields.get("borrowed_by"),
            borrowed_at=parse_datetime(fields.get("borrowed_at")),
            created_at=now,
            updated_at=now,
        )
        self._books.insert(0, book)
        return book.copy()

    async def update(self, book_id: str, fields: dict) -> Optional[Book]:
        await self._delay()
        index = self._book_index(book_id)
        if index == -1:
            return None
        self._books[index].apply(fields)
        return self._books[index].copy()

    async def delete(self, book_id: str) -> bool:
        await self._delay()
        index = self._book_index(book_id)
        if index == -1:
            return False
        del self._books[index]
        return True

    async def find(self, book_id: str) -> Optional[Book]:
        await self._delay()
        index = self._book_index(book_id)
        return self._books[index].copy() if index != -1 else None

    async def borrow(self, book_id: str, user_id: str) -> bool:
        await self._delay()
        book_index = self._book_index(book_id)
        user_index = self._user_index(user_id)
        if book_index == -1 or user_index == -1:
            return False
        book = self._books[book_index]
        if not book.is_available:
            return False

        now = next_timestamp(book.updated_at)
        book.apply({"is_available": False, "borrowed_by": user_id, "borrowed_at": now, "updated_at": now})
        self._users[user_index].borrowed_books.append(book_id)
        return True

    async def return_book(self, book_id: str, user_id: str) -> bool:
        await self._delay()
        book_index = self._book_index(book_id)
        user_index = self._user_index(user_id)
        if book_index == -1 or user_index == -1:
            return False
        book = self._books[book_index]
        if book.borrowed_by != user_id:
            return False

        book.apply({"is_available": True, "borrowed_by": None, "borrowed_at": None})
        user = self._users[user_index]
        user.borrowed_books = [b for b in user.borrowed_books if b != book_id]
        return True

    async def search(self, query: str) -> List[Book]:
        await self._delay()
        term = query.lower()
        return [
            b.copy() for b in self._books
            if term in b.title.lower() or term in b.author.lower() or term in b.isbn.lower()
        ]

    async def books_by_category(self, category: str) -> List[Book]:
        await self._delay()
        wanted = category.lower()
        return [b.copy() for b in self._books if b.category.lower() == wanted]

    async def books_by_user(self, user_id: str) -> List[Book]:
        await self._delay()
        return [b.copy() for b in self._books if b.borrowed_by == user_id]

    # ------------------------- Users ------------------------- #
    async def get_all_users(self) -> List[User]:
        await self._delay()
        return [u.copy() for u in self._users]

    async def find_user(self, user_id: str) -> Optional[User]:
        await self._delay()
        index = self._user_index(user_id)
        return self._users[index].copy() if index != -1 else None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        await self._delay()
        for user in self._users:
            if user.email == email:
                return user.copy()
        return None

    async def update_user(self, user_id: str, fields: dict) -> Optional[User]:
        await self._delay()
        index = self._user_index(user_id)
        if index == -1:
            return None
        merged = {**self._users[index].to_dict(), **fields, "id": user_id}
        self._users[index] = User.from_dict(merged)
        return self._users[index].copy()

    async def sync(self) -> None:
        logger.info(f"Syncing to store... {len(self._books)} books")
        await self._delay()


def create_store(config: Settings) -> BookStore:
    """Build the store selected by ``config.store_backend``."""
    backend = config.store_backend
    if backend == "sqlite":
        from database import SQLiteStore
        return SQLiteStore(config.db_file, seed=config.seed_sample_data)
    if backend == "memory":
        if config.seed_sample_data:
            return MemoryStore.with_sample_data(latency=config.store_latency)
        return MemoryStore(latency=config.store_latency)
    raise ValueError(f"Unknown store backend: {backend}")
