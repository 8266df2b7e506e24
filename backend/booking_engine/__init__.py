"""Lesson booking engine: availability, credit ledger, booking and refund services."""

__version__ = "1.0.0"
