"""
WHERE-clause predicate reordering.

Given one query's classified conditions, decide whether the most selective
column leads the WHERE clause. If not, produce an ``OptimizationIssue``
carrying the target order: conditions sorted HIGH -> MEDIUM -> LOW, ties
kept in declaration order.

A WHERE clause whose top-level connector is OR is left alone. Under OR
semantics there is no single leading column that serves every disjunct.
Predicates inside a nested OR group never compete for the lead; only the
top-level AND conjuncts are reordered.
"""

from __future__ import annotations

import logging
from typing import Sequence

from indexsense.analyzer.models import (
    CardinalityLevel,
    OptimizationIssue,
    Severity,
    WhereCondition,
)

logger = logging.getLogger(__name__)


def _column_key(condition: WhereCondition) -> tuple[str, str]:
    return ((condition.table_name or "").lower(), condition.column_name.lower())


def target_order(conditions: Sequence[WhereCondition]) -> list[WhereCondition]:
    """Conditions sorted most selective first; ties by position (stable)."""
    return sorted(conditions, key=lambda c: (c.cardinality.rank, c.position))


def classify_severity(
    current: WhereCondition,
    recommended: WhereCondition,
    conditions: Sequence[WhereCondition],
) -> Severity:
    """
    Severity of putting ``recommended`` ahead of ``current``.

    HIGH: a LOW column leads although a HIGH column is available.
    MEDIUM: the swap improves cardinality without that LOW -> HIGH gap.
    LOW: no cardinality gap, tie-break reordering only.
    """
    has_high = any(c.cardinality is CardinalityLevel.HIGH for c in conditions)
    if current.cardinality is CardinalityLevel.LOW and has_high:
        return Severity.HIGH
    if recommended.cardinality < current.cardinality:
        return Severity.MEDIUM
    return Severity.LOW


def _describe(current: WhereCondition, recommended: WhereCondition, severity: Severity) -> str:
    if severity is Severity.LOW:
        return (
            f"'{recommended.column_name}' and '{current.column_name}' have the same "
            f"cardinality; reordering is cosmetic"
        )
    return (
        f"Query filters on '{current.column_name}' ({current.cardinality.value} cardinality) "
        f"first; '{recommended.column_name}' ({recommended.cardinality.value} cardinality) "
        f"is more selective and should lead the WHERE clause"
    )


class ReorderingAnalyzer:
    """
    Decides whether a query's predicate order is optimal.

    Example:
        analyzer = ReorderingAnalyzer()
        issue = analyzer.analyze(conditions, query_id="UserRepository.findActive")
        if issue is not None:
            print(issue.formatted_report())
    """

    def analyze(
        self,
        conditions: Sequence[WhereCondition],
        query_id: str | None = None,
        query_text: str | None = None,
    ) -> OptimizationIssue | None:
        """Return an issue when the leading column is not the most selective."""
        if any(c.top_level_or for c in conditions):
            logger.debug("Skipping reordering for %s: top-level OR", query_id)
            return None
        conjuncts = [c for c in conditions if not c.or_connected]
        if len(conjuncts) < 2:
            return None

        ordered = target_order(conjuncts)
        current, recommended = conjuncts[0], ordered[0]
        if _column_key(current) == _column_key(recommended):
            return None

        severity = classify_severity(current, recommended, conjuncts)
        recommended_order: list[str] = []
        for condition in ordered:
            if condition.column_name not in recommended_order:
                recommended_order.append(condition.column_name)

        return OptimizationIssue(
            query_id=query_id,
            table_name=recommended.table_name,
            current_first_column=current.column_name,
            recommended_first_column=recommended.column_name,
            recommended_column_order=tuple(recommended_order),
            severity=severity,
            description=_describe(current, recommended, severity),
            query_text=query_text,
        )
