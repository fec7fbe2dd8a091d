import re
from typing import Dict, Optional

from book import CATEGORIES

ISBN_PATTERN = re.compile(r"^[0-9-]{10,17}$")


class ValidationError(ValueError):
    """Raised when a book form fails validation; ``errors`` maps field -> message."""

    def __init__(self, errors: Dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__("; ".join(f"{field}: {message}" for field, message in self.errors.items()))


class ISBNValidator:
    """Lenient ISBN check: 10-17 digits or hyphens once whitespace is removed."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return re.sub(r"\s", "", raw)

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        if not isbn:
            return False
        return bool(ISBN_PATTERN.match(ISBNValidator.normalize_isbn(isbn)))


class TextValidator:
    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not str(text).strip()

    @staticmethod
    def is_known_category(category: Optional[str]) -> bool:
        return category in CATEGORIES


# Catalog fields an admin fills in.
BOOK_FORM_FIELDS = ("title", "author", "isbn", "category")

# Borrower state that only borrow/return may change.
BORROW_STATE_FIELDS = ("is_available", "borrowed_by", "borrowed_at")


def _field_error(field: str, value) -> Optional[str]:
    if field == "title":
        return "Title is required" if TextValidator.is_blank(value) else None
    if field == "author":
        return "Author is required" if TextValidator.is_blank(value) else None
    if field == "isbn":
        if TextValidator.is_blank(value):
            return "ISBN is required"
        if not ISBNValidator.is_valid_isbn(value):
            return "Please enter a valid ISBN (10-17 digits with optional hyphens)"
        return None
    if field == "category":
        if TextValidator.is_blank(value):
            return "Category is required"
        if not TextValidator.is_known_category(value):
            return f"Unknown category: {value}"
    return None


def validate_book_form(data: dict) -> Dict[str, str]:
    """Return a field -> message mapping; empty when the form is valid."""
    errors: Dict[str, str] = {}
    for field in BOOK_FORM_FIELDS:
        message = _field_error(field, data.get(field))
        if message:
            errors[field] = message
    return errors


def validate_book_updates(fields: dict) -> Dict[str, str]:
    """Check only the catalog fields present in a partial update.

    A supplied field must pass the same rule as on the add form, so ``None``
    or blank text is rejected rather than cleared. Borrower state cannot be
    edited directly.
    """
    errors: Dict[str, str] = {}
    for field in BOOK_FORM_FIELDS:
        if field in fields:
            message = _field_error(field, fields[field])
            if message:
                errors[field] = message
    for field in BORROW_STATE_FIELDS:
        if field in fields:
            errors[field] = "Availability changes only through borrow and return"
    return errors
