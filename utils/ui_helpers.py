import os
import json
from typing import Any, Dict, List, Optional, Tuple
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _status(book: Any) -> str:
    return "available" if book.is_available else f"borrowed by {book.borrowed_by}"


def print_list_result(books: List[Any], empty_message: str = "No books in library.") -> None:
    """Print books in the current output mode.
    - plain: 'ID - Title by Author [Category] (status)' lines, or the empty message
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Category", style="cyan")
        table.add_column("Status")
        for b in books:
            status = "[green]available[/]" if b.is_available else f"[red]borrowed[/] ({b.borrowed_by})"
            table.add_row(b.id, b.title, b.author, b.category, status)
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.category}] ({_status(b)})")


def print_book_detail(book: Any) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(book.to_dict(), ensure_ascii=False))
        return
    lines = [
        f"Title: {book.title}",
        f"Author: {book.author}",
        f"ISBN: {book.isbn}",
        f"Category: {book.category}",
        f"Status: {_status(book)}",
    ]
    if book.borrowed_at:
        lines.append(f"Borrowed: {book.borrowed_at.date().isoformat()}")
    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title=f"📖 Book {book.id}", border_style="blue"))
    else:
        print("Book Found")
        for line in lines:
            print(line)


def print_borrowed_result(rows: List[Tuple[Any, Optional[Any]]]) -> None:
    """Print (book, borrower) pairs for the admin borrowed-books view."""
    mode = get_output_mode()

    if not rows:
        print("No borrowed books.")
        return

    if mode == "json":
        payload = [
            {"book": book.to_dict(), "borrower": user.to_dict() if user else None}
            for book, user in rows
        ]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📕 Borrowed Books", header_style="bold cyan")
        table.add_column("Title", style="white")
        table.add_column("Borrower", style="yellow")
        table.add_column("Borrowed", style="dim")
        for book, user in rows:
            borrowed = book.borrowed_at.date().isoformat() if book.borrowed_at else "N/A"
            table.add_row(book.title, user.name if user else "Unknown User", borrowed)
        _console.print(table)
    else:
        for book, user in rows:
            borrowed = book.borrowed_at.date().isoformat() if book.borrowed_at else "N/A"
            print(f"{book.title} - {user.name if user else 'Unknown User'} ({borrowed})")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = [
        ("total_books", "Total Books"),
        ("available_books", "Available Books"),
        ("borrowed_books", "Borrowed Books"),
        ("categories", "Categories"),
        ("unique_authors", "Unique Authors"),
        ("total_users", "Total Users"),
    ]

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels)
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels:
            print(f"{label}: {stats.get(key, 0)}")
