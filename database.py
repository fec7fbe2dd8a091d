import json
import logging
import sqlite3
from typing import List, Optional

from book import Book, User, next_timestamp, parse_datetime, utcnow
from store import BookStore, new_book_id, sample_books, sample_users

logger = logging.getLogger(__name__)

BOOK_COLUMNS = (
    "id", "title", "author", "isbn", "category", "is_available",
    "borrowed_by", "borrowed_at", "created_at", "updated_at",
)


class SQLiteStore(BookStore):
    """Store backed by a SQLite file so state survives between CLI runs."""

    def __init__(self, db_file: str, seed: bool = True) -> None:
        self.db_file = db_file
        self.create_tables()
        if seed:
            self.seed_sample_data()

    def get_db_connection(self) -> sqlite3.Connection:
        """Open a connection to the SQLite database."""
        conn = sqlite3.connect(self.db_file)
        conn.row_factory = sqlite3.Row
        return conn

    def create_tables(self) -> None:
        """Create the tables if they do not exist yet."""
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()
            # seq keeps insertion order; newest rows have the highest seq
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS books (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    isbn TEXT NOT NULL,
                    category TEXT NOT NULL,
                    is_available INTEGER NOT NULL DEFAULT 1,
                    borrowed_by TEXT,
                    borrowed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT UNIQUE NOT NULL,
                    role TEXT NOT NULL DEFAULT 'user',
                    borrowed_books TEXT NOT NULL DEFAULT '[]'
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_category ON books(category)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_borrowed_by ON books(borrowed_by)")
            conn.commit()
        finally:
            conn.close()

    def seed_sample_data(self) -> None:
        """Insert the sample catalog and users into an empty database."""
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM books")
            book_count = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM users")
            user_count = cursor.fetchone()[0]
            if book_count == 0 and user_count == 0:
                # Oldest first so the newest book gets the highest seq
                for book in reversed(sample_books()):
                    self._insert_book(cursor, book)
                for user in sample_users():
                    self._insert_user(cursor, user)
                conn.commit()
                logger.info(f"Seeded sample data into {self.db_file}")
        finally:
            conn.close()

    # ------------------------- Row helpers ------------------------- #
    @staticmethod
    def _insert_book(cursor: sqlite3.Cursor, book: Book) -> None:
        row = book.to_dict()
        cursor.execute(
            f"INSERT INTO books ({', '.join(BOOK_COLUMNS)}) VALUES ({', '.join('?' for _ in BOOK_COLUMNS)})",
            tuple(row[c] for c in BOOK_COLUMNS),
        )

    @staticmethod
    def _insert_user(cursor: sqlite3.Cursor, user: User) -> None:
        cursor.execute(
            "INSERT INTO users (id, name, email, role, borrowed_books) VALUES (?, ?, ?, ?, ?)",
            (user.id, user.name, user.email, user.role, json.dumps(user.borrowed_books)),
        )

    @staticmethod
    def _row_to_book(row: sqlite3.Row) -> Book:
        return Book.from_dict({c: row[c] for c in BOOK_COLUMNS})

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        data = dict(row)
        data["borrowed_books"] = json.loads(data.get("borrowed_books") or "[]")
        return User.from_dict(data)

    def _write_book(self, cursor: sqlite3.Cursor, book: Book) -> None:
        row = book.to_dict()
        columns = [c for c in BOOK_COLUMNS if c not in ("id", "created_at")]
        cursor.execute(
            f"UPDATE books SET {', '.join(f'{c} = ?' for c in columns)} WHERE id = ?",
            tuple(row[c] for c in columns) + (book.id,),
        )

    def _write_user(self, cursor: sqlite3.Cursor, user: User) -> None:
        cursor.execute(
            "UPDATE users SET name = ?, email = ?, role = ?, borrowed_books = ? WHERE id = ?",
            (user.name, user.email, user.role, json.dumps(user.borrowed_books), user.id),
        )

    def _fetch_book(self, cursor: sqlite3.Cursor, book_id: str) -> Optional[Book]:
        cursor.execute("SELECT * FROM books WHERE id = ?", (book_id,))
        row = cursor.fetchone()
        return self._row_to_book(row) if row else None

    def _fetch_user(self, cursor: sqlite3.Cursor, user_id: str) -> Optional[User]:
        cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = cursor.fetchone()
        return self._row_to_user(row) if row else None

    def _query_books(self, where: str = "", params: tuple = ()) -> List[Book]:
        conn = self.get_db_connection()
        try:
            cursor = conn.execute(f"SELECT * FROM books {where} ORDER BY seq DESC", params)
            return [self._row_to_book(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    # ------------------------- Books ------------------------- #
    async def get_all(self) -> List[Book]:
        return self._query_books()

    async def add(self, fields: dict) -> Book:
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
        conn = self.get_db_connection()
        try:
            self._insert_book(conn.cursor(), book)
            conn.commit()
        finally:
            conn.close()
        return book

    async def update(self, book_id: str, fields: dict) -> Optional[Book]:
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()
            book = self._fetch_book(cursor, book_id)
            if book is None:
                return None
            book.apply(fields)
            self._write_book(cursor, book)
            conn.commit()
            return book
        finally:
            conn.close()

    async def delete(self, book_id: str) -> bool:
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    async def find(self, book_id: str) -> Optional[Book]:
        conn = self.get_db_connection()
        try:
            return self._fetch_book(conn.cursor(), book_id)
        finally:
            conn.close()

    async def borrow(self, book_id: str, user_id: str) -> bool:
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()
            book = self._fetch_book(cursor, book_id)
            user = self._fetch_user(cursor, user_id)
            if book is None or user is None or not book.is_available:
                return False

            now = next_timestamp(book.updated_at)
            book.apply({"is_available": False, "borrowed_by": user_id, "borrowed_at": now, "updated_at": now})
            user.borrowed_books.append(book_id)
            self._write_book(cursor, book)
            self._write_user(cursor, user)
            conn.commit()
            return True
        finally:
            conn.close()

    async def return_book(self, book_id: str, user_id: str) -> bool:
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()
            book = self._fetch_book(cursor, book_id)
            user = self._fetch_user(cursor, user_id)
            if book is None or user is None or book.borrowed_by != user_id:
                return False

            book.apply({"is_available": True, "borrowed_by": None, "borrowed_at": None})
            user.borrowed_books = [b for b in user.borrowed_books if b != book_id]
            self._write_book(cursor, book)
            self._write_user(cursor, user)
            conn.commit()
            return True
        finally:
            conn.close()

    async def search(self, query: str) -> List[Book]:
        pattern = f"%{query}%"
        return self._query_books(
            "WHERE title LIKE ? OR author LIKE ? OR isbn LIKE ?", (pattern, pattern, pattern)
        )

    async def books_by_category(self, category: str) -> List[Book]:
        return self._query_books("WHERE lower(category) = lower(?)", (category,))

    async def books_by_user(self, user_id: str) -> List[Book]:
        return self._query_books("WHERE borrowed_by = ?", (user_id,))

    # ------------------------- Users ------------------------- #
    async def get_all_users(self) -> List[User]:
        conn = self.get_db_connection()
        try:
            cursor = conn.execute("SELECT * FROM users ORDER BY id")
            return [self._row_to_user(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    async def find_user(self, user_id: str) -> Optional[User]:
        conn = self.get_db_connection()
        try:
            return self._fetch_user(conn.cursor(), user_id)
        finally:
            conn.close()

    async def find_user_by_email(self, email: str) -> Optional[User]:
        conn = self.get_db_connection()
        try:
            cursor = conn.execute("SELECT * FROM users WHERE email = ?", (email,))
            row = cursor.fetchone()
            return self._row_to_user(row) if row else None
        finally:
            conn.close()

    async def update_user(self, user_id: str, fields: dict) -> Optional[User]:
        conn = self.get_db_connection()
        try:
            cursor = conn.cursor()
            user = self._fetch_user(cursor, user_id)
            if user is None:
                return None
            user = User.from_dict({**user.to_dict(), **fields, "id": user_id})
            self._write_user(cursor, user)
            conn.commit()
            return user
        finally:
            conn.close()

    async def sync(self) -> None:
        # Every write above commits immediately
        conn = self.get_db_connection()
        try:
            total = conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
        finally:
            conn.close()
        logger.info(f"Syncing to store... {total} books in {self.db_file}")
