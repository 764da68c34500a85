"""
Base adapter interface for parser-specific statement translation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from indexsense.sql.nodes import Statement
from indexsense.sql.placeholders import NormalizedSQL


@dataclass(frozen=True)
class ParsedStatement:
    """A statement in generic AST form plus the text it came from."""

    statement: Statement
    source: str
    normalized: NormalizedSQL


class StatementAdapter(ABC):
    """
    Abstract base for parser adapters.

    Each adapter parses SQL text with a concrete parser and translates the
    result into the generic ``indexsense.sql.nodes`` tree.
    """

    dialect: str = "unknown"

    @abstractmethod
    def parse(self, sql: str) -> ParsedStatement:
        """
        Parse one SQL statement.

        Raises:
            indexsense.exceptions.ParseError: If the text cannot be parsed
                or contains no statement.
        """
        ...


def parse_statement(sql: str, adapter: StatementAdapter | None = None) -> ParsedStatement:
    """Parse ``sql`` with ``adapter`` (PostgreSQL by default)."""
    if adapter is None:
        from indexsense.sql.adapters.postgres import PostgresAdapter

        adapter = PostgresAdapter()
    return adapter.parse(sql)
