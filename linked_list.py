"""Singly-linked list holding the catalog's books, newest first."""
from __future__ import annotations

from typing import Callable, Iterator, List, Optional

from book import Book


class BookNode:
    __slots__ = ("data", "next")

    def __init__(self, book: Book) -> None:
        self.data = book
        self.next: Optional[BookNode] = None


class BookLinkedList:
    """Ordered collection of books.

    Insertion prepends in O(1), so iteration runs from the most recently
    inserted book to the oldest. Every query is a linear scan from the head;
    updates keep a book's position and only insert/remove change the order.
    """

    def __init__(self) -> None:
        self.head: Optional[BookNode] = None
        self._size = 0

    # ------------------------- Mutations ------------------------- #
    def insert(self, book: Book) -> None:
        node = BookNode(book)
        node.next = self.head
        self.head = node
        self._size += 1

    def remove_by_id(self, book_id: str) -> bool:
        """Unlink the first node holding ``book_id``. Returns False if absent."""
        if self.head is None:
            return False

        if self.head.data.id == book_id:
            self.head = self.head.next
            self._size -= 1
            return True

        current = self.head
        while current.next is not None:
            if current.next.data.id == book_id:
                current.next = current.next.next
                self._size -= 1
                return True
            current = current.next
        return False

    def update_by_id(self, book_id: str, fields: dict) -> bool:
        """Merge ``fields`` into the matching book in place."""
        book = self.find_by_id(book_id)
        if book is None:
            return False
        book.apply(fields)
        return True

    def clear(self) -> None:
        self.head = None
        self._size = 0

    # ------------------------- Queries ------------------------- #
    def find_by_id(self, book_id: str) -> Optional[Book]:
        for book in self:
            if book.id == book_id:
                return book
        return None

    def search_by_title(self, title: str) -> List[Book]:
        term = title.lower()
        return self._collect(lambda b: term in b.title.lower())

    def search_by_author(self, author: str) -> List[Book]:
        term = author.lower()
        return self._collect(lambda b: term in b.author.lower())

    def filter_by_category(self, category: str) -> List[Book]:
        wanted = category.lower()
        return self._collect(lambda b: b.category.lower() == wanted)

    def filter_by_borrower(self, user_id: str) -> List[Book]:
        return self._collect(lambda b: b.borrowed_by is not None and b.borrowed_by == user_id)

    def available_books(self) -> List[Book]:
        return self._collect(lambda b: b.is_available)

    def to_list(self) -> List[Book]:
        return list(self)

    @property
    def size(self) -> int:
        return self._size

    def is_empty(self) -> bool:
        return self._size == 0

    def _collect(self, predicate: Callable[[Book], bool]) -> List[Book]:
        return [book for book in self if predicate(book)]

    # ------------------------- Protocols ------------------------- #
    def __iter__(self) -> Iterator[Book]:
        current = self.head
        while current is not None:
            yield current.data
            current = current.next

    def __len__(self) -> int:
        return self._size

    def __contains__(self, book_id: object) -> bool:
        return isinstance(book_id, str) and self.find_by_id(book_id) is not None
