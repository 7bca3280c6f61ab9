"""Data portability: export and re-import of a user's personal data."""

__version__ = "1.0.0"
