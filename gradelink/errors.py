"""
Gradelink error hierarchy.

Two failure kinds reach callers: ``ConfigurationError`` for caller misuse that
is detected before any network I/O, and ``ResultError`` for a failed exchange
with the consumer's outcome service. A signature mismatch is not an error.

Copyright (c) 2025 Gradelink Contributors
"""

import datetime
from typing import Any, Dict, Optional


class ProviderError(Exception):
    """Base exception for Tool Provider errors with structured error context."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.timestamp = datetime.datetime.now(datetime.timezone.utc)


class ConfigurationError(ProviderError):
    """Invalid or missing configuration, raised before any request is sent."""
    pass


class ResultError(ProviderError):
    """The outcome request failed, or the consumer's reply was unusable."""
    pass


__all__ = ["ProviderError", "ConfigurationError", "ResultError"]
