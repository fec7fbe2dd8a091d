from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any

CATEGORIES = [
    "Fiction",
    "Non-Fiction",
    "Science Fiction",
    "Fantasy",
    "Romance",
    "Mystery",
    "Thriller",
    "Biography",
    "History",
    "Science",
    "Technology",
    "Philosophy",
    "Religion",
    "Self-Help",
    "Business",
    "Economics",
    "Politics",
    "Travel",
    "Cooking",
    "Art",
    "Music",
    "Sports",
    "Health",
    "Education",
    "Children",
    "Young Adult",
    "Poetry",
    "Drama",
    "Comics",
    "Other",
]

# Fields a partial update may touch; id and created_at are fixed at creation.
UPDATABLE_FIELDS = (
    "title",
    "author",
    "isbn",
    "category",
    "is_available",
    "borrowed_by",
    "borrowed_at",
    "updated_at",
)

ROLES = ("user", "admin")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(previous: datetime | None) -> datetime:
    """Return the current time, nudged forward so it is strictly after ``previous``."""
    now = utcnow()
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class Book:
    """A single book in the catalog."""

    def __init__(self, id: str, title: str, author: str, isbn: str, category: str,
                 is_available: bool = True, borrowed_by: str | None = None,
                 borrowed_at: datetime | None = None, created_at: datetime | None = None,
                 updated_at: datetime | None = None) -> None:
        self.id = str(id)
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip()
        self.category = category.strip()
        self.is_available = is_available
        self.borrowed_by = borrowed_by
        self.borrowed_at = borrowed_at
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def __repr__(self) -> str:  # pragma: no cover
        return f"Book(id={self.id!r}, title={self.title!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def apply(self, fields: dict) -> None:
        """Merge ``fields`` into the record and advance ``updated_at``.

        Unknown keys are ignored. An explicit ``updated_at`` is only honoured
        when it moves the timestamp forward.
        """
        previous = self.updated_at
        for key, value in fields.items():
            if key not in UPDATABLE_FIELDS or key == "updated_at":
                continue
            if key in ("title", "author", "isbn", "category") and isinstance(value, str):
                value = value.strip()
            if key == "borrowed_at":
                value = parse_datetime(value)
            setattr(self, key, value)
        requested = parse_datetime(fields.get("updated_at"))
        if requested is not None and requested > previous:
            self.updated_at = requested
        else:
            self.updated_at = next_timestamp(previous)

    def copy(self) -> "Book":
        return copy.copy(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category,
            "is_available": self.is_available,
            "borrowed_by": self.borrowed_by,
            "borrowed_at": _format_datetime(self.borrowed_at),
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite stores booleans as integers
        available = data.get("is_available", True)
        if isinstance(available, int):
            available = bool(available)

        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            category=data["category"],
            is_available=available,
            borrowed_by=data.get("borrowed_by"),
            borrowed_at=parse_datetime(data.get("borrowed_at")),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


class User:
    """A library member or administrator."""

    def __init__(self, id: str, name: str, email: str, role: str = "user",
                 borrowed_books: list[str] | None = None) -> None:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        self.id = str(id)
        self.name = name
        self.email = email
        self.role = role
        self.borrowed_books = list(borrowed_books or [])

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, User):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def copy(self) -> "User":
        return User.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "borrowed_books": list(self.borrowed_books),
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            role=data.get("role", "user"),
            borrowed_books=data.get("borrowed_books"),
        )
