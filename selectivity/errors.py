"""
Exceptions and warnings raised by the selectivity pipeline.
"""

from typing import Optional


class SelectivityError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(SelectivityError, ValueError):
    """A required source, column or join key is missing."""

    def __init__(self, message: str, source: Optional[str] = None,
                 column: Optional[str] = None):
        super().__init__(message)
        self.source = source
        self.column = column


class DataQualityError(SelectivityError, ValueError):
    """Input data cannot be turned into a valid feature matrix."""

    def __init__(self, message: str, column: Optional[str] = None,
                 source: Optional[str] = None):
        super().__init__(message)
        self.column = column
        self.source = source


class InvalidParameter(SelectivityError, ValueError):
    """A requested parameter (usually the cluster count) is out of range."""


class ComputationWarning(UserWarning):
    """Non-fatal numerical event: empty cluster reseeded, degenerate reference draw."""
