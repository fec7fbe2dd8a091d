import asyncio
import logging
import subprocess
import sys
import webbrowser
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from book import CATEGORIES
from config import settings
from library import Library
from store import create_store
from utils.ui_helpers import (
    print_book_detail,
    print_borrowed_result,
    print_list_result,
    print_stats_result,
    set_output_mode,
)
from utils.validators import ValidationError

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

APP_NAME = "Library CLI"

T = TypeVar("T")


def build_library() -> Library:
    """Construct the library over the configured store."""
    return Library(create_store(settings))


def run_with_library(action: Callable[[Library], Awaitable[T]]) -> T:
    """Load the catalog, run ``action`` against it and release the store."""
    async def runner() -> T:
        library = build_library()
        await library.load_books()
        try:
            return await action(library)
        finally:
            await library.close()

    return asyncio.run(runner())


async def _user_id_for(library: Library, email: str) -> Optional[str]:
    user = await library.store.find_user_by_email(email)
    if user is None:
        print(f"No user with email {email}.")
        return None
    return user.id


# --- Typer CLI ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (output mode)."""
    if output:
        set_output_mode(output)


@app.command("list")
def cli_list(available: bool = typer.Option(False, "--available", help="Only books that can be borrowed")):
    """List all books, newest first."""
    async def action(library: Library):
        return library.available_books() if available else library.list_books()

    print_list_result(run_with_library(action))


@app.command("search")
def cli_search(query: str):
    """Search books by title or author."""
    async def action(library: Library):
        return library.search_books(query)

    print_list_result(run_with_library(action), empty_message=f"No books matching '{query}'.")


@app.command("category")
def cli_category(name: str):
    """List books in a category."""
    async def action(library: Library):
        return library.books_by_category(name)

    print_list_result(run_with_library(action), empty_message=f"No books in category '{name}'.")


@app.command("categories")
def cli_categories():
    """Show the categories in use."""
    async def action(library: Library):
        return library.categories()

    for category in run_with_library(action):
        print(category)


@app.command("find")
def cli_find(book_id: str):
    """Find a book by ID and show its details."""
    async def action(library: Library):
        return library.find_book(book_id)

    book = run_with_library(action)
    if book:
        print_book_detail(book)
    else:
        print(f"Book with ID {book_id} not found.")


@app.command("add")
def cli_add(
    title: str = typer.Option(..., "--title", "-t"),
    author: str = typer.Option(..., "--author", "-a"),
    isbn: str = typer.Option(..., "--isbn", "-i"),
    category: str = typer.Option(..., "--category", "-c", help=f"One of: {', '.join(CATEGORIES)}"),
):
    """Add a book to the catalog."""
    form = {"title": title, "author": author, "isbn": isbn, "category": category}

    async def action(library: Library):
        return await library.add_book(form)

    try:
        book = run_with_library(action)
    except ValidationError as e:
        print("Could not add book:")
        for field, message in e.errors.items():
            print(f"  {field}: {message}")
        raise typer.Exit(code=1)
    if book is None:
        print("Could not add book.")
        raise typer.Exit(code=1)
    print(f"Successfully added: {book.title} by {book.author} (ID: {book.id})")


@app.command("update")
def cli_update(
    book_id: str,
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    isbn: Optional[str] = typer.Option(None, "--isbn", "-i"),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
):
    """Update a book's title, author, ISBN or category."""
    updates = {k: v for k, v in {"title": title, "author": author, "isbn": isbn, "category": category}.items()
               if v is not None}
    if not updates:
        print("Nothing to update. Provide --title, --author, --isbn or --category.")
        raise typer.Exit(code=1)

    async def action(library: Library):
        return await library.update_book(book_id, updates)

    try:
        updated = run_with_library(action)
    except ValidationError as e:
        print("Could not update book:")
        for field, message in e.errors.items():
            print(f"  {field}: {message}")
        raise typer.Exit(code=1)
    if updated:
        print(f"Book with ID {book_id} has been updated.")
    else:
        print(f"Book with ID {book_id} not found.")


@app.command("remove")
def cli_remove(book_id: str):
    """Remove a book by ID."""
    async def action(library: Library):
        return await library.delete_book(book_id)

    if run_with_library(action):
        print(f"Book with ID {book_id} has been removed.")
    else:
        print(f"Book with ID {book_id} not found.")


@app.command("borrow")
def cli_borrow(book_id: str, email: str = typer.Option(..., "--email", "-e", help="Borrower's email")):
    """Borrow an available book."""
    async def action(library: Library):
        user_id = await _user_id_for(library, email)
        if user_id is None:
            return None
        if library.find_book(book_id) is None:
            print(f"Book with ID {book_id} not found.")
            return None
        return await library.borrow_book(book_id, user_id)

    result = run_with_library(action)
    if result:
        print(f"Book {book_id} borrowed by {email}.")
    elif result is False:
        print(f"Book {book_id} is not available.")


@app.command("return")
def cli_return(book_id: str, email: str = typer.Option(..., "--email", "-e", help="Borrower's email")):
    """Return a borrowed book."""
    async def action(library: Library):
        user_id = await _user_id_for(library, email)
        if user_id is None:
            return None
        if library.find_book(book_id) is None:
            print(f"Book with ID {book_id} not found.")
            return None
        return await library.return_book(book_id, user_id)

    result = run_with_library(action)
    if result:
        print(f"Book {book_id} returned by {email}.")
    elif result is False:
        print(f"Book {book_id} is not borrowed by {email}.")


@app.command("my-books")
def cli_my_books(email: str = typer.Option(..., "--email", "-e")):
    """List the books a user currently has."""
    async def action(library: Library):
        user_id = await _user_id_for(library, email)
        return None if user_id is None else library.books_by_user(user_id)

    books = run_with_library(action)
    if books is not None:
        print_list_result(books, empty_message="No books borrowed yet.")


@app.command("borrowed")
def cli_borrowed():
    """Show every borrowed book with its borrower."""
    async def action(library: Library):
        return await library.borrowed_books()

    print_borrowed_result(run_with_library(action))


@app.command("stats")
def cli_stats():
    """Show catalog statistics."""
    async def action(library: Library):
        return await library.get_statistics()

    print_stats_result(run_with_library(action))


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    open_browser: bool = typer.Option(True, "--browser/--no-browser"),
):
    """Start the HTTP API with uvicorn."""
    url = f"http://{host}:{port}/docs"
    print(f"Starting web UI on {url}")
    if open_browser:
        webbrowser.open(url)
    subprocess.run([sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)])


if __name__ == "__main__":
    app()
