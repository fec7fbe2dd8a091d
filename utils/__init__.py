"""Library App - shared helpers (form validation, CLI output)."""
