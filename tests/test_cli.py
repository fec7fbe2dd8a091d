import json
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

import main
from library import Library
from main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def shared_store(store, monkeypatch):
    # Every command builds its own Library; point them all at one store
    monkeypatch.setattr(main, "build_library", lambda: Library(store))
    return store


def test_list_books(shared_store):
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    assert lines[0] == "5 - The Hobbit by J.R.R. Tolkien [Fantasy] (available)"
    assert len(lines) == 5


def test_list_no_books(empty_store, monkeypatch):
    monkeypatch.setattr(main, "build_library", lambda: Library(empty_store))
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_list_json_output():
    result = runner.invoke(app, ["--output", "json", "list", "--available"])
    assert result.exit_code == 0
    books = json.loads(result.stdout.strip().splitlines()[-1])
    assert [b["id"] for b in books] == ["5", "4", "3", "2", "1"]


def test_search_and_category():
    result = runner.invoke(app, ["search", "orwell"])
    assert "3 - 1984 by George Orwell [Science Fiction] (available)" in result.stdout

    result = runner.invoke(app, ["search", "zzz"])
    assert "No books matching 'zzz'." in result.stdout

    result = runner.invoke(app, ["category", "fantasy"])
    assert "The Hobbit" in result.stdout


def test_categories_command():
    result = runner.invoke(app, ["categories"])
    assert result.exit_code == 0
    assert result.stdout.split() == ["Fantasy", "Fiction", "Romance", "Science", "Fiction"]


def test_find_book():
    result = runner.invoke(app, ["find", "4"])
    assert result.exit_code == 0
    assert "Book Found" in result.stdout
    assert "Title: Pride and Prejudice" in result.stdout

    result = runner.invoke(app, ["find", "missing"])
    assert "Book with ID missing not found." in result.stdout


def test_add_book_success():
    result = runner.invoke(app, ["add", "-t", "Dune", "-a", "Frank Herbert", "-i", "978-0441172719",
                                 "-c", "Science Fiction"])
    assert result.exit_code == 0
    assert "Successfully added: Dune by Frank Herbert" in result.stdout

    result = runner.invoke(app, ["list"])
    assert result.stdout.splitlines()[0].endswith("Dune by Frank Herbert [Science Fiction] (available)")


def test_add_book_invalid():
    result = runner.invoke(app, ["add", "-t", "Dune", "-a", "Frank Herbert", "-i", "12", "-c", "Cats"])
    assert result.exit_code == 1
    assert "Could not add book:" in result.stdout
    assert "isbn: Please enter a valid ISBN" in result.stdout
    assert "category: Unknown category: Cats" in result.stdout


def test_update_book(shared_store):
    result = runner.invoke(app, ["update", "1", "--title", "Gatsby"])
    assert result.exit_code == 0
    assert "Book with ID 1 has been updated." in result.stdout

    result = runner.invoke(app, ["find", "1"])
    assert "Title: Gatsby" in result.stdout


def test_update_book_errors():
    result = runner.invoke(app, ["update", "1"])
    assert result.exit_code == 1
    assert "Nothing to update." in result.stdout

    result = runner.invoke(app, ["update", "1", "-c", "Cats"])
    assert result.exit_code == 1

    result = runner.invoke(app, ["update", "missing", "-t", "X"])
    assert "Book with ID missing not found." in result.stdout


def test_remove_book():
    result = runner.invoke(app, ["remove", "2"])
    assert "Book with ID 2 has been removed." in result.stdout

    result = runner.invoke(app, ["remove", "2"])
    assert "Book with ID 2 not found." in result.stdout


def test_borrow_and_return():
    result = runner.invoke(app, ["borrow", "1", "--email", "john@example.com"])
    assert "Book 1 borrowed by john@example.com." in result.stdout

    result = runner.invoke(app, ["borrow", "1", "-e", "jane@example.com"])
    assert "Book 1 is not available." in result.stdout

    result = runner.invoke(app, ["my-books", "-e", "john@example.com"])
    assert "1 - The Great Gatsby by F. Scott Fitzgerald [Fiction] (borrowed by 2)" in result.stdout

    result = runner.invoke(app, ["return", "1", "-e", "jane@example.com"])
    assert "Book 1 is not borrowed by jane@example.com." in result.stdout

    result = runner.invoke(app, ["return", "1", "-e", "john@example.com"])
    assert "Book 1 returned by john@example.com." in result.stdout

    result = runner.invoke(app, ["my-books", "-e", "john@example.com"])
    assert "No books borrowed yet." in result.stdout


def test_borrow_unknown_user_or_book():
    result = runner.invoke(app, ["borrow", "1", "-e", "nobody@example.com"])
    assert "No user with email nobody@example.com." in result.stdout

    result = runner.invoke(app, ["borrow", "missing", "-e", "john@example.com"])
    assert "Book with ID missing not found." in result.stdout


def test_borrowed_and_stats():
    result = runner.invoke(app, ["borrowed"])
    assert "No borrowed books." in result.stdout

    runner.invoke(app, ["borrow", "5", "-e", "jane@example.com"])
    result = runner.invoke(app, ["borrowed"])
    assert "The Hobbit - Jane Smith (" in result.stdout

    result = runner.invoke(app, ["stats"])
    assert "Total Books: 5" in result.stdout
    assert "Available Books: 4" in result.stdout
    assert "Borrowed Books: 1" in result.stdout


def test_serve_starts_uvicorn(monkeypatch):
    run_mock = MagicMock()
    open_mock = MagicMock()
    monkeypatch.setattr(main.subprocess, "run", run_mock)
    monkeypatch.setattr(main.webbrowser, "open", open_mock)

    result = runner.invoke(app, ["serve", "--host", "127.0.0.1", "--port", "9000"])

    assert result.exit_code == 0
    assert "Starting web UI on http://127.0.0.1:9000/docs" in result.stdout
    open_mock.assert_called_once_with("http://127.0.0.1:9000/docs")
    command = run_mock.call_args[0][0]
    assert command[1:4] == ["-m", "uvicorn", "api:app"]
    assert command[-1] == "9000"


def test_serve_without_browser(monkeypatch):
    run_mock = MagicMock()
    open_mock = MagicMock()
    monkeypatch.setattr(main.subprocess, "run", run_mock)
    monkeypatch.setattr(main.webbrowser, "open", open_mock)

    result = runner.invoke(app, ["serve", "--no-browser"])

    assert result.exit_code == 0
    open_mock.assert_not_called()
    run_mock.assert_called_once()


def test_update_book_invalid_fields():
    result = runner.invoke(app, ["update", "1", "--title", "  ", "--isbn", "not-an-isbn"])
    assert result.exit_code == 1
    assert "Could not update book:" in result.stdout
    assert "title: Title is required" in result.stdout
    assert "isbn: Please enter a valid ISBN" in result.stdout

    result = runner.invoke(app, ["find", "1"])
    assert "Title: The Great Gatsby" in result.stdout
