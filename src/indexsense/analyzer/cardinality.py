"""
Column cardinality classification from schema index metadata.

No live statistics are consulted. Selectivity is inferred from what the
schema declares about a column, plus naming conventions:

    1. user override (HIGH wins over LOW)
    2. part of the primary key                   -> HIGH
    3. covered by a unique constraint or index   -> HIGH
    4. boolean-style name (is_*, *_flag, ...)    -> LOW
    5. part of a plain secondary index           -> MEDIUM
    6. anything else, including unknown tables   -> MEDIUM

The boolean check outranks a plain index: an index on ``is_deleted`` does
not make ``is_deleted`` selective.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from indexsense.analyzer.models import CardinalityLevel
from indexsense.schema import IndexInfo, IndexKind, SchemaSnapshot

if TYPE_CHECKING:
    from indexsense.config import Config

logger = logging.getLogger(__name__)

BOOLEAN_PREFIXES = ("is_", "has_", "can_", "should_")
BOOLEAN_SUFFIXES = ("_flag", "_enabled")
BOOLEAN_NAMES = frozenset({"active", "enabled", "deleted", "visible"})


def is_boolean_column(column: str | None) -> bool:
    """Check whether a column name follows a boolean naming convention."""
    if not column:
        return False
    name = column.lower()
    return (
        name in BOOLEAN_NAMES
        or name.startswith(BOOLEAN_PREFIXES)
        or name.endswith(BOOLEAN_SUFFIXES)
    )


class CardinalityClassifier:
    """
    Classifies (table, column) pairs against a schema snapshot.

    Lookups are case-insensitive. Missing metadata is never an error.

    Example:
        classifier = CardinalityClassifier(snapshot)
        classifier.classify("users", "id")        # CardinalityLevel.HIGH
        classifier.classify("users", "is_admin")  # CardinalityLevel.LOW
    """

    def __init__(
        self,
        schema: SchemaSnapshot | None = None,
        config: "Config | None" = None,
    ) -> None:
        self.schema = schema if schema is not None else SchemaSnapshot()
        self.config = config

    def classify(self, table: str | None, column: str | None) -> CardinalityLevel:
        """Classify one column; see the module docstring for the rule order."""
        if not table or not column:
            return CardinalityLevel.MEDIUM

        if self.config is not None:
            if self.config.is_high_cardinality(table, column):
                return CardinalityLevel.HIGH
            if self.config.is_low_cardinality(table, column):
                return CardinalityLevel.LOW

        if self.is_primary_key(table, column):
            return CardinalityLevel.HIGH
        if self.has_unique_constraint(table, column):
            return CardinalityLevel.HIGH
        if is_boolean_column(column):
            return CardinalityLevel.LOW
        if self.is_indexed(table, column):
            return CardinalityLevel.MEDIUM
        if not self.schema.has_table(table):
            logger.debug("No index metadata for table %s", table)
        return CardinalityLevel.MEDIUM

    # ── Supporting predicates ────────────────────────────────────────

    def is_primary_key(self, table: str | None, column: str | None) -> bool:
        """Column participates in the table's primary key."""
        return self._any(
            table, column, lambda i: i.kind is IndexKind.PRIMARY_KEY and i.has_column(column)
        )

    def has_unique_constraint(self, table: str | None, column: str | None) -> bool:
        """Column is covered by a unique constraint or unique index."""
        return self._any(
            table,
            column,
            lambda i: i.kind in (IndexKind.UNIQUE_CONSTRAINT, IndexKind.UNIQUE_INDEX)
            and i.has_column(column),
        )

    def is_boolean_column(self, column: str | None) -> bool:
        return is_boolean_column(column)

    def is_indexed(self, table: str | None, column: str | None) -> bool:
        """Column appears in any index of the table, at any position."""
        return self._any(table, column, lambda i: i.has_column(column))

    def has_index_with_leading_column(self, table: str | None, column: str | None) -> bool:
        """Some existing index on ``table`` starts with ``column``."""
        return self._any(
            table,
            column,
            lambda i: bool(i.leading_column) and i.leading_column.lower() == column.lower(),
        )

    def has_index_covering_columns(self, table: str | None, columns: Sequence[str]) -> bool:
        """Some existing index starts with ``columns`` in the given order."""
        if not table or not columns:
            return False
        wanted = [c.lower() for c in columns]
        for index in self.schema.indexes_for(table):
            existing = [c.lower() for c in index.columns]
            if existing[: len(wanted)] == wanted:
                return True
        return False

    def existing_indexes(self, table: str | None) -> tuple[IndexInfo, ...]:
        return self.schema.indexes_for(table)

    def _any(self, table: str | None, column: str | None, predicate) -> bool:  # type: ignore[no-untyped-def]
        if not table or not column:
            return False
        return any(predicate(index) for index in self.schema.indexes_for(table))
