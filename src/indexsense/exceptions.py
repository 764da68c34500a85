"""
Package-level exception hierarchy for IndexSense.

All exceptions inherit from IndexSenseError, enabling:
- Catching all IndexSense errors with a single except clause
- Context fields for debugging (source, config_key, key, path)
- Structured serialization via to_dict() for JSON error output

Hierarchy:
    IndexSenseError
    ├── AnalyzerError          – Errors during analysis orchestration
    │   └── ConfigurationError – Invalid configuration
    ├── ParseError             – A statement could not be decomposed
    ├── MalformedKeyError      – A suggestion key has no table/column parts
    ├── SchemaError            – A migration changelog could not be loaded
    └── AdvisoryError          – The optional advisory collaborator failed
"""

from __future__ import annotations

from typing import Any


class IndexSenseError(Exception):
    """
    Base exception for all IndexSense errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error output."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Analysis Errors ──────────────────────────────────────────────────────


class AnalyzerError(IndexSenseError):
    """Errors during analysis orchestration."""
    pass


class ConfigurationError(AnalyzerError):
    """
    Error in configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


# ── Parse Errors ─────────────────────────────────────────────────────────


class ParseError(IndexSenseError):
    """
    A SQL statement could not be parsed or decomposed.

    Never aborts a batch: the session records it against the query
    and moves on to the next one.

    Attributes:
        source: The offending SQL text (or a description of it).
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        return result


class MalformedKeyError(IndexSenseError):
    """
    A suggestion key is missing its ``|`` separator or column segment.

    Redundancy passes catch this and skip the key.
    """

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Malformed suggestion key: {key!r}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["key"] = self.key
        return result


# ── Schema Errors ────────────────────────────────────────────────────────


class SchemaError(IndexSenseError):
    """
    A schema changelog could not be read or parsed.

    Attributes:
        path: Path of the changelog file involved.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["path"] = self.path
        return result


# ── Advisory Errors ──────────────────────────────────────────────────────


class AdvisoryError(IndexSenseError):
    """
    The optional advisory recommender failed.

    Logged and ignored; deterministic recommendations stand on their own.
    """
    pass
