"""
Data models for condition extraction and reordering analysis.

All models are frozen: conditions and issues are created fresh per analyzed
query and never mutated. Use ``model_copy(update=...)`` to derive variants
(e.g. once a condition's cardinality or table is known).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CardinalityLevel(str, Enum):
    """
    Inferred column selectivity.

    HIGH: most selective, few rows per value (primary keys, unique columns)
    MEDIUM: unknown or moderately selective (the default)
    LOW: few distinct values (flags, booleans, status-like columns)

    Ordered HIGH < MEDIUM < LOW, so sorting ascending puts the most
    selective column first.
    """

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _CARDINALITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, CardinalityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, CardinalityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, CardinalityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, CardinalityLevel):
            return NotImplemented
        return self.rank >= other.rank


_CARDINALITY_RANK = {
    CardinalityLevel.HIGH: 0,
    CardinalityLevel.MEDIUM: 1,
    CardinalityLevel.LOW: 2,
}


class Severity(str, Enum):
    """
    Severity of a reordering issue.

    HIGH: a LOW cardinality column leads while a HIGH one is available
    MEDIUM: reordering improves selectivity without crossing LOW -> HIGH
    LOW: cosmetic reordering only
    """

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    def __lt__(self, other: object) -> bool:
        """Enable sorting by severity (HIGH first)."""
        if not isinstance(other, Severity):
            return NotImplemented
        order = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}
        return order[self] < order[other]


class WhereCondition(BaseModel):
    """
    One predicate from a WHERE clause.

    Attributes:
        table_name: Resolved table (never an alias). None only until the
            session applies its table-name fallback.
        column_name: Column as written in the query.
        operator: ``=``, ``IN``, ``BETWEEN``, ``LIKE``, ``IS NULL``, ...
        cardinality: Selectivity class; MEDIUM until classified.
        position: 0-based declaration order within its statement branch.
        parameter: Opaque reference to whatever supplies the value. The
            analysis never looks inside it.
        or_connected: True when an OR connector sits above this predicate.
        top_level_or: True when the branch's WHERE clause is itself an OR,
            so no conjunct is required for every matching row.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    table_name: str | None = Field(default=None, description="Resolved table name")
    column_name: str = Field(..., description="Column name")
    operator: str = Field(..., description="Comparison operator")
    cardinality: CardinalityLevel = Field(
        default=CardinalityLevel.MEDIUM,
        description="Inferred selectivity",
    )
    position: int = Field(..., ge=0, description="Declaration order in its branch")
    parameter: Any = Field(default=None, description="Opaque parameter reference")
    or_connected: bool = Field(default=False, description="Under an OR connector")
    top_level_or: bool = Field(default=False, description="WHERE root is an OR")

    def __str__(self) -> str:
        table = f"{self.table_name}." if self.table_name else ""
        return f"{table}{self.column_name} {self.operator} ({self.cardinality.value})"


class JoinCondition(BaseModel):
    """A column-to-column predicate from a JOIN ... ON / USING clause."""

    model_config = ConfigDict(frozen=True)

    left_table: str | None = None
    left_column: str
    right_table: str | None = None
    right_column: str
    operator: str = "="

    def __str__(self) -> str:
        left = f"{self.left_table}.{self.left_column}" if self.left_table else self.left_column
        right = f"{self.right_table}.{self.right_column}" if self.right_table else self.right_column
        return f"{left} {self.operator} {right}"


class OptimizationIssue(BaseModel):
    """
    A recommendation to reorder a query's WHERE predicates.

    Attributes:
        query_id: Reference to the source query (``Repository.method``).
        table_name: Table whose predicates were reordered.
        current_first_column: Column the query currently filters on first.
        recommended_first_column: Most selective column available.
        recommended_column_order: Full target order, most selective first.
        severity: Deterministic severity from the cardinality gap.
        description: Human-readable explanation.
        query_text: Original query text, when available.
        advisory_explanation: Free text from an optional advisory source.
    """

    model_config = ConfigDict(frozen=True)

    query_id: str | None = None
    table_name: str | None = None
    current_first_column: str
    recommended_first_column: str
    recommended_column_order: tuple[str, ...] = ()
    severity: Severity
    description: str
    query_text: str | None = None
    advisory_explanation: str | None = None

    def formatted_report(self) -> str:
        """Multi-line report used by the CLI."""
        lines = [
            f"[{self.severity.value}] {self.query_id or '<query>'}",
            f"  Issue: {self.description}",
            f"  Current first condition: {self.current_first_column}",
            f"  Recommended first condition: {self.recommended_first_column}",
        ]
        if self.recommended_column_order:
            lines.append(f"  Recommended order: {', '.join(self.recommended_column_order)}")
        if self.query_text:
            lines.append(f"  Query: {self.query_text}")
        if self.advisory_explanation:
            lines.append(f"  Advisory: {self.advisory_explanation}")
        return "\n".join(lines)
