"""
Error types for charlimit.

Budget overruns are normal input, never errors. What remains is setup
mistakes and misuse of the transaction boundary.
"""

from __future__ import annotations


class CharLimitError(Exception):
    """Base exception for charlimit."""


class ConfigurationError(CharLimitError):
    """Raised at setup when the editor or options cannot support a limit."""

    def __init__(self, message: str, setting: str | None = None):
        super().__init__(message)
        self.setting = setting


class TransactionError(CharLimitError):
    """Raised when the tree is mutated outside an open transaction."""
