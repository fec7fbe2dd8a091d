from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from auth import AuthService, MemorySessionStore
from book import CATEGORIES, Book, User, utcnow
from config import settings
from library import Library
from store import create_store
from utils.validators import ValidationError


# --- Models ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    isbn: str
    category: str
    is_available: bool
    borrowed_by: str | None = None
    borrowed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class BookCreateModel(BaseModel):
    title: str = ""
    author: str = ""
    isbn: str = ""
    category: str = ""


class UpdateBookModel(BaseModel):
    title: str | None = None
    author: str | None = None
    isbn: str | None = None
    category: str | None = None


class UserModel(BaseModel):
    id: str
    name: str
    email: str
    role: str
    borrowed_books: List[str] = []


class LoginModel(BaseModel):
    email: str
    password: str = ""


class SessionModel(BaseModel):
    token: str
    user: UserModel


class BorrowedBookModel(BaseModel):
    book: BookModel
    borrower: UserModel | None = None


class StatsModel(BaseModel):
    total_books: int
    available_books: int
    borrowed_books: int
    categories: int
    unique_authors: int
    total_users: int


def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


def _user_model(user: User) -> UserModel:
    return UserModel(**user.to_dict())


# --- Dependencies ---
session_header = APIKeyHeader(name=settings.session_header, auto_error=False)


def get_library(request: Request) -> Library:
    return request.app.state.library


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


async def get_current_user(
    token: Optional[str] = Security(session_header),
    auth: AuthService = Depends(get_auth),
) -> User:
    """Dependency resolving the session token to a signed-in user."""
    user = await auth.current_user(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return user


async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user


def _require_book(library: Library, book_id: str) -> Book:
    book = library.find_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


def create_app(library: Optional[Library] = None, auth: Optional[AuthService] = None) -> FastAPI:
    """Build the API around an explicitly constructed library and auth service."""
    if library is None:
        library = Library(create_store(settings))
    if auth is None:
        auth = AuthService(library.store, MemorySessionStore())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await library.load_books()
        try:
            yield
        finally:
            await library.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.library = library
    app.state.auth = auth

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Health ---
    @app.get("/health")
    async def health(library: Library = Depends(get_library)):
        return {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "total_books": len(library.books),
            "store": type(library.store).__name__,
            "environment": settings.environment,
        }

    # --- Authentication ---
    @app.post("/auth/login", response_model=SessionModel)
    async def login(payload: LoginModel, auth: AuthService = Depends(get_auth)):
        """Sign in with an existing account's email."""
        session = await auth.login(payload.email, payload.password)
        if session is None:
            raise HTTPException(status_code=401, detail="User not found")
        return SessionModel(token=session.token, user=_user_model(session.user))

    @app.post("/auth/logout")
    async def logout(
        token: Optional[str] = Security(session_header),
        auth: AuthService = Depends(get_auth),
    ):
        if not token or not auth.logout(token):
            raise HTTPException(status_code=401, detail="Not signed in")
        return {"message": "Signed out."}

    @app.get("/auth/me", response_model=UserModel)
    async def me(user: User = Depends(get_current_user)):
        return _user_model(user)

    # --- Books ---
    @app.get("/books", response_model=List[BookModel])
    async def get_books(
        q: Optional[str] = Query(None, description="Search title and author"),
        category: Optional[str] = Query(None, description="Exact category, case-insensitive"),
        available: Optional[bool] = Query(None, description="Only available (true) or borrowed (false) books"),
        library: Library = Depends(get_library),
    ):
        """List books newest first, optionally searched and filtered."""
        if q:
            books = library.search_books(q)
            if category:
                books = [b for b in books if b.category.lower() == category.lower()]
        elif category:
            books = library.books_by_category(category)
        else:
            books = library.list_books()
        if available is not None:
            books = [b for b in books if b.is_available == available]
        return [_book_model(b) for b in books]

    @app.get("/books/{book_id}", response_model=BookModel)
    async def get_book(book_id: str, library: Library = Depends(get_library)):
        return _book_model(_require_book(library, book_id))

    @app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_admin_user)])
    async def add_book(payload: BookCreateModel, library: Library = Depends(get_library)):
        """Add a new book to the catalog."""
        try:
            book = await library.add_book(payload.model_dump())
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.errors)
        if book is None:
            raise HTTPException(status_code=500, detail="Could not add book")
        return _book_model(book)

    @app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_admin_user)])
    async def update_book(book_id: str, update: UpdateBookModel, library: Library = Depends(get_library)):
        """Update some catalog fields of a book; nulls count as not supplied."""
        fields = {k: v for k, v in update.model_dump(exclude_unset=True).items() if v is not None}
        if not fields:
            raise HTTPException(status_code=400, detail="Provide at least one field to update.")
        try:
            updated = await library.update_book(book_id, fields)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.errors)
        if not updated:
            raise HTTPException(status_code=404, detail="Book not found")
        return _book_model(_require_book(library, book_id))

    @app.delete("/books/{book_id}", dependencies=[Depends(get_admin_user)])
    async def delete_book(book_id: str, library: Library = Depends(get_library)):
        if not await library.delete_book(book_id):
            raise HTTPException(status_code=404, detail="Book not found")
        return {"message": "Book removed."}

    @app.post("/books/{book_id}/borrow", response_model=BookModel)
    async def borrow_book(
        book_id: str,
        user: User = Depends(get_current_user),
        library: Library = Depends(get_library),
    ):
        _require_book(library, book_id)
        if not await library.borrow_book(book_id, user.id):
            raise HTTPException(status_code=409, detail="Book is not available")
        return _book_model(_require_book(library, book_id))

    @app.post("/books/{book_id}/return", response_model=BookModel)
    async def return_book(
        book_id: str,
        user: User = Depends(get_current_user),
        library: Library = Depends(get_library),
    ):
        _require_book(library, book_id)
        if not await library.return_book(book_id, user.id):
            raise HTTPException(status_code=409, detail="Book is not borrowed by you")
        return _book_model(_require_book(library, book_id))

    @app.get("/me/books", response_model=List[BookModel])
    async def my_books(user: User = Depends(get_current_user), library: Library = Depends(get_library)):
        return [_book_model(b) for b in library.books_by_user(user.id)]

    # --- Catalog info ---
    @app.get("/categories")
    async def get_categories(library: Library = Depends(get_library)):
        """Categories in use plus every category a book may take."""
        return {"in_use": library.categories(), "all": CATEGORIES}

    @app.get("/stats", response_model=StatsModel)
    async def get_stats(library: Library = Depends(get_library)):
        return StatsModel(**await library.get_statistics())

    # --- Admin ---
    @app.get("/admin/users", response_model=List[UserModel], dependencies=[Depends(get_admin_user)])
    async def get_users(library: Library = Depends(get_library)):
        return [_user_model(u) for u in await library.store.get_all_users()]

    @app.get("/admin/borrowed", response_model=List[BorrowedBookModel], dependencies=[Depends(get_admin_user)])
    async def get_borrowed(library: Library = Depends(get_library)):
        return [
            BorrowedBookModel(book=_book_model(book), borrower=_user_model(user) if user else None)
            for book, user in await library.borrowed_books()
        ]

    return app


app = create_app()
