import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from book import Book, User, utcnow
from linked_list import BookLinkedList
from store import BookStore
from utils.validators import (
    BOOK_FORM_FIELDS,
    ISBNValidator,
    ValidationError,
    validate_book_form,
    validate_book_updates,
)

logger = logging.getLogger(__name__)


class Library:
    """Manages the book collection and keeps it in step with the store.

    Writes go to the store first. Only when the store accepts a write is the
    same change applied to the in-memory linked list, followed by a
    best-effort ``sync``. Failures are reported as ``False``/``None``.
    """

    def __init__(self, store: BookStore) -> None:
        self.store = store
        self.books = BookLinkedList()
        # One mutation in flight at a time
        self._lock = asyncio.Lock()

    # ------------------------- Loading ------------------------- #
    async def load_books(self) -> None:
        """Replace the list contents with the store's books."""
        async with self._lock:
            books_from_store = await self.store.get_all()
            self.books.clear()
            # The store is newest first; prepend oldest first to keep that order
            for book in reversed(books_from_store):
                self.books.insert(book)
        logger.info(f"Loaded {len(self.books)} books from store")

    async def refresh(self) -> None:
        await self.load_books()

    # ------------------------- Core operations ------------------------- #
    async def add_book(self, form: dict) -> Optional[Book]:
        """Validate ``form`` and add a new, available book.

        Raises ValidationError for a malformed form; returns None when the
        store rejects the write.
        """
        errors = validate_book_form(form)
        if errors:
            raise ValidationError(errors)

        fields = {
            "title": form["title"].strip(),
            "author": form["author"].strip(),
            "isbn": ISBNValidator.normalize_isbn(form["isbn"]),
            "category": form["category"],
            "is_available": True,
        }
        async with self._lock:
            try:
                new_book = await self.store.add(fields)
            except Exception as e:
                logger.error(f"Error adding book: {e}")
                return None
            self.books.insert(new_book)
            await self._sync()
        logger.info(f"Added book {new_book.id}: {new_book.title}")
        return new_book

    async def delete_book(self, book_id: str) -> bool:
        async with self._lock:
            try:
                success = await self.store.delete(book_id)
            except Exception as e:
                logger.error(f"Error deleting book {book_id}: {e}")
                return False
            if not success:
                logger.warning(f"Delete rejected, book {book_id} not found")
                return False
            self.books.remove_by_id(book_id)
            await self._sync()
        logger.info(f"Deleted book {book_id}")
        return True

    async def update_book(self, book_id: str, updates: Dict[str, Any]) -> bool:
        """Edit a book's catalog fields (title, author, isbn, category).

        Supplied fields are checked with the add-form rules and a
        ValidationError is raised for bad values or for borrower state,
        which only borrow/return may change.
        """
        errors = validate_book_updates(updates)
        if errors:
            raise ValidationError(errors)

        fields = {k: v for k, v in updates.items() if k in BOOK_FORM_FIELDS}
        if "isbn" in fields:
            fields["isbn"] = ISBNValidator.normalize_isbn(fields["isbn"])
        async with self._lock:
            try:
                updated = await self.store.update(book_id, fields)
            except Exception as e:
                logger.error(f"Error updating book {book_id}: {e}")
                return False
            if updated is None:
                logger.warning(f"Update rejected, book {book_id} not found")
                return False
            self.books.update_by_id(book_id, {**fields, "updated_at": updated.updated_at})
            await self._sync()
        return True

    async def borrow_book(self, book_id: str, user_id: str) -> bool:
        async with self._lock:
            try:
                success = await self.store.borrow(book_id, user_id)
            except Exception as e:
                logger.error(f"Error borrowing book {book_id}: {e}")
                return False
            if not success:
                logger.warning(f"Borrow rejected: book={book_id} user={user_id}")
                return False
            try:
                stored = await self.store.find(book_id)
            except Exception as e:
                logger.warning(f"Could not reload borrowed book {book_id}: {e}")
                stored = None
            # Take the borrow time from the store
            borrowed_at = stored.borrowed_at if stored and stored.borrowed_at else utcnow()
            self.books.update_by_id(book_id, {
                "is_available": False,
                "borrowed_by": user_id,
                "borrowed_at": borrowed_at,
                "updated_at": stored.updated_at if stored else None,
            })
            await self._sync()
        logger.info(f"Book {book_id} borrowed by {user_id}")
        return True

    async def return_book(self, book_id: str, user_id: str) -> bool:
        async with self._lock:
            try:
                success = await self.store.return_book(book_id, user_id)
            except Exception as e:
                logger.error(f"Error returning book {book_id}: {e}")
                return False
            if not success:
                logger.warning(f"Return rejected: book={book_id} user={user_id}")
                return False
            self.books.update_by_id(book_id, {
                "is_available": True,
                "borrowed_by": None,
                "borrowed_at": None,
            })
            await self._sync()
        logger.info(f"Book {book_id} returned by {user_id}")
        return True

    async def _sync(self) -> None:
        try:
            await self.store.sync()
        except Exception as e:
            logger.warning(f"Store sync failed: {e}")

    # ------------------------- Queries ------------------------- #
    def list_books(self) -> List[Book]:
        return self.books.to_list()

    def find_book(self, book_id: str) -> Optional[Book]:
        return self.books.find_by_id(book_id)

    def search_books(self, query: str) -> List[Book]:
        """Title matches then author matches, each book once."""
        results: List[Book] = []
        seen = set()
        for book in self.books.search_by_title(query) + self.books.search_by_author(query):
            if book.id not in seen:
                seen.add(book.id)
                results.append(book)
        return results

    def books_by_category(self, category: str) -> List[Book]:
        return self.books.filter_by_category(category)

    def books_by_user(self, user_id: str) -> List[Book]:
        return self.books.filter_by_borrower(user_id)

    def available_books(self) -> List[Book]:
        return self.books.available_books()

    def categories(self) -> List[str]:
        return sorted({book.category for book in self.books})

    async def borrowed_books(self) -> List[Tuple[Book, Optional[User]]]:
        """Borrowed books paired with their borrower (None if the user is gone)."""
        users = {user.id: user for user in await self.store.get_all_users()}
        return [(book, users.get(book.borrowed_by)) for book in self.books if not book.is_available]

    async def get_statistics(self) -> Dict[str, Any]:
        """Get library statistics."""
        books = self.list_books()
        available = sum(1 for b in books if b.is_available)
        users = await self.store.get_all_users()
        return {
            "total_books": len(books),
            "available_books": available,
            "borrowed_books": len(books) - available,
            "categories": len({b.category for b in books}),
            "unique_authors": len({b.author for b in books}),
            "total_users": len(users),
        }

    async def close(self) -> None:
        await self.store.close()
