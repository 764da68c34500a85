"""
Index suggestion accumulation across an analysis run.

Every analyzed query can contribute index suggestions. They are kept in two
insertion-ordered sets of string keys:

    single-column:  "table|column"
    multi-column:   "table|col1,col2,...,colN"   (most selective first)

Keys compare case-insensitively but keep the casing they were first added
with. At the end of a run two redundancy passes drop suggestions that other
suggestions already serve:

- a multi-column key whose columns are an exact prefix of a longer key on
  the same table (``users|id,name`` vs ``users|id,name,email``)
- a single-column key whose column leads a multi-column key on the same
  table (``users|email`` vs ``users|email,name``). A non-leading match does
  not count: a B-tree cannot seek on a non-leading column alone.

Malformed keys are skipped by both passes.

Example:
    accumulator = RecommendationAccumulator(classifier)
    for conditions, issue in analyzed_queries:
        accumulator.collect(conditions, issue)
    result = accumulator.finalize()
    for key in result.multi_column:
        ...
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence

from indexsense.analyzer.cardinality import CardinalityClassifier
from indexsense.analyzer.models import (
    CardinalityLevel,
    OptimizationIssue,
    WhereCondition,
)
from indexsense.analyzer.reordering import target_order
from indexsense.exceptions import MalformedKeyError
from indexsense.schema import IndexInfo, IndexKind

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"
COLUMN_SEPARATOR = ","


# ── Keys ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SuggestionKey:
    """A parsed suggestion key; ``table`` and ``columns`` keep display casing."""

    table: str
    columns: tuple[str, ...]

    @classmethod
    def parse(cls, key: str) -> "SuggestionKey":
        """
        Parse ``table|col1,col2``.

        Raises:
            MalformedKeyError: No separator, empty table or empty column.
        """
        table, sep, rest = key.partition(KEY_SEPARATOR)
        table = table.strip()
        columns = tuple(c.strip() for c in rest.split(COLUMN_SEPARATOR))
        if not sep or not table or not all(columns):
            raise MalformedKeyError(key)
        return cls(table=table, columns=columns)

    @classmethod
    def build(cls, table: str, columns: Sequence[str]) -> "SuggestionKey":
        return cls(table=table, columns=tuple(columns))

    @property
    def normalized_table(self) -> str:
        return self.table.lower()

    @property
    def normalized_columns(self) -> tuple[str, ...]:
        return tuple(c.lower() for c in self.columns)

    @property
    def leading_column(self) -> str:
        return self.columns[0]

    def is_strict_prefix_of(self, other: "SuggestionKey") -> bool:
        """Same table, and our columns start ``other``'s columns but differ."""
        if self.normalized_table != other.normalized_table:
            return False
        mine, theirs = self.normalized_columns, other.normalized_columns
        return len(mine) < len(theirs) and theirs[: len(mine)] == mine

    def __str__(self) -> str:
        return f"{self.table}{KEY_SEPARATOR}{COLUMN_SEPARATOR.join(self.columns)}"


def _parse_or_none(key: str) -> SuggestionKey | None:
    try:
        return SuggestionKey.parse(key)
    except MalformedKeyError as e:
        logger.debug("Skipping key: %s", e.message)
        return None


class SuggestionSet:
    """Insertion-ordered set of key strings with case-insensitive identity."""

    def __init__(self, keys: Iterable[str] = ()) -> None:
        self._keys: dict[str, str] = {}
        for key in keys:
            self.add(key)

    def add(self, key: str | SuggestionKey) -> bool:
        """Add a key; returns False when an equal key is already present."""
        text = str(key)
        normalized = text.lower()
        if normalized in self._keys:
            return False
        self._keys[normalized] = text
        return True

    def discard(self, key: str) -> None:
        self._keys.pop(key.lower(), None)

    def clear(self) -> None:
        self._keys.clear()

    def parsed(self) -> list[tuple[str, SuggestionKey]]:
        """Well-formed keys with their display text, malformed ones dropped."""
        result = []
        for text in self._keys.values():
            key = _parse_or_none(text)
            if key is not None:
                result.append((text, key))
        return result

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (str, SuggestionKey)) and str(key).lower() in self._keys

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._keys.values()))

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"SuggestionSet({list(self._keys.values())!r})"


@dataclass(frozen=True)
class SuggestionResult:
    """Surviving suggestions after the redundancy passes."""

    single_column: tuple[str, ...]
    multi_column: tuple[str, ...]
    removed: tuple[str, ...]

    @property
    def total(self) -> int:
        return len(self.single_column) + len(self.multi_column)


# ── Accumulator ──────────────────────────────────────────────────────


class RecommendationAccumulator:
    """
    Collects index suggestions for one analysis run.

    Not shared between runs or threads: each session owns one instance and
    calls ``reset()`` before reuse.
    """

    def __init__(self, classifier: CardinalityClassifier | None = None) -> None:
        self.classifier = classifier if classifier is not None else CardinalityClassifier()
        self.single_column_suggestions = SuggestionSet()
        self.multi_column_suggestions = SuggestionSet()

    def reset(self) -> None:
        self.single_column_suggestions.clear()
        self.multi_column_suggestions.clear()

    # ── Collection ───────────────────────────────────────────────────

    def add_single_column(self, table: str, column: str) -> bool:
        return self.single_column_suggestions.add(SuggestionKey.build(table, [column]))

    def add_multi_column(self, table: str, columns: Sequence[str]) -> bool:
        return self.multi_column_suggestions.add(SuggestionKey.build(table, columns))

    def collect(
        self,
        conditions: Sequence[WhereCondition],
        issue: OptimizationIssue | None = None,
    ) -> list[str]:
        """
        Record suggestions for one query's classified conditions.

        Conditions are grouped per table and never merged across tables.
        Within a table, the AND-connected MEDIUM and LOW columns that are not
        already served (primary key, unique constraint, existing leading
        index or the lead of a suggested composite) become one suggestion:
        single-column when one column qualifies, multi-column otherwise, in
        target order. A LOW column never leads a suggestion; it can only
        trail a more selective one.

        Predicates under an OR cannot share one composite, so each
        qualifying OR-connected column is suggested on its own.

        Returns the keys that were newly added.
        """
        by_table: dict[str, list[WhereCondition]] = defaultdict(list)
        display: dict[str, str] = {}
        for condition in conditions:
            if not condition.table_name:
                continue
            table_key = condition.table_name.lower()
            by_table[table_key].append(condition)
            display.setdefault(table_key, condition.table_name)

        added: list[str] = []
        for table_key, group in by_table.items():
            table = display[table_key]
            conjuncts = [c for c in group if not c.or_connected]
            disjuncts = [c for c in group if c.or_connected]

            if conjuncts:
                candidates = self._candidates(table, self._ordered(conjuncts, issue))
                self._suggest(table, candidates, added)
            for condition in self._candidates(table, target_order(disjuncts)):
                self._suggest(table, [condition], added)
        return added

    def _suggest(self, table: str, candidates: list[WhereCondition], added: list[str]) -> None:
        if not candidates or candidates[0].cardinality is CardinalityLevel.LOW:
            return
        columns = [c.column_name for c in candidates]
        if len(columns) == 1:
            if self.classifier.has_index_with_leading_column(table, columns[0]):
                return
            key = SuggestionKey.build(table, columns)
            if self.single_column_suggestions.add(key):
                added.append(str(key))
        else:
            if self.classifier.has_index_covering_columns(table, columns):
                return
            key = SuggestionKey.build(table, columns)
            if self.multi_column_suggestions.add(key):
                added.append(str(key))

    def _ordered(
        self,
        group: list[WhereCondition],
        issue: OptimizationIssue | None,
    ) -> list[WhereCondition]:
        """The table's conditions in recommended order."""
        ordered = target_order(group)
        if issue is None or not issue.recommended_column_order:
            return ordered
        if (issue.table_name or "").lower() != (group[0].table_name or "").lower():
            return ordered
        rank = {c.lower(): i for i, c in enumerate(issue.recommended_column_order)}
        return sorted(ordered, key=lambda c: rank.get(c.column_name.lower(), len(rank)))

    def _candidates(self, table: str, ordered: list[WhereCondition]) -> list[WhereCondition]:
        candidates: list[WhereCondition] = []
        seen: set[str] = set()
        for condition in ordered:
            column = condition.column_name
            if column.lower() in seen:
                continue
            seen.add(column.lower())
            if condition.cardinality is CardinalityLevel.HIGH:
                continue
            if self.classifier.is_primary_key(table, column):
                continue
            if self.classifier.has_unique_constraint(table, column):
                continue
            if self.is_covered_by_composite(table, column):
                continue
            candidates.append(condition)
        return candidates

    def is_covered_by_composite(self, table: str, column: str) -> bool:
        """True iff a multi-column suggestion for ``table`` leads with ``column``."""
        table, column = table.lower(), column.lower()
        return any(
            key.normalized_table == table and key.normalized_columns[0] == column
            for _, key in self.multi_column_suggestions.parsed()
        )

    # ── Redundancy passes ────────────────────────────────────────────

    def remove_redundant_multi_column_indexes(self, to_remove: set[str]) -> None:
        """
        Mark multi-column keys that are a strict prefix of another key.

        The pairwise scan repeats until no new key is marked, so chains
        collapse to their longest member.
        """
        keys = self.multi_column_suggestions.parsed()
        marked = {k.lower() for k in to_remove}
        changed = True
        while changed:
            changed = False
            for text, key in keys:
                if text.lower() in marked:
                    continue
                if any(key.is_strict_prefix_of(other) for _, other in keys):
                    to_remove.add(text)
                    marked.add(text.lower())
                    changed = True

    def remove_redundant_single_column_indexes(self, to_remove: set[str]) -> None:
        """Mark single-column keys whose column leads a multi-column key."""
        leading = {
            (key.normalized_table, key.normalized_columns[0])
            for _, key in self.multi_column_suggestions.parsed()
        }
        for text, key in self.single_column_suggestions.parsed():
            if len(key.columns) != 1:
                continue
            if (key.normalized_table, key.normalized_columns[0]) in leading:
                to_remove.add(text)

    def finalize(self) -> SuggestionResult:
        """Run both redundancy passes and return the survivors in insertion order."""
        to_remove: set[str] = set()
        self.remove_redundant_multi_column_indexes(to_remove)
        self.remove_redundant_single_column_indexes(to_remove)

        removed = {k.lower() for k in to_remove}
        single = tuple(k for k in self.single_column_suggestions if k.lower() not in removed)
        multi = tuple(k for k in self.multi_column_suggestions if k.lower() not in removed)
        ordered_removed = tuple(
            k
            for k in [*self.single_column_suggestions, *self.multi_column_suggestions]
            if k.lower() in removed
        )
        if ordered_removed:
            logger.info("Dropped %d redundant index suggestion(s)", len(ordered_removed))
        return SuggestionResult(single_column=single, multi_column=multi, removed=ordered_removed)


# ── Existing indexes ─────────────────────────────────────────────────


def drop_candidates(classifier: CardinalityClassifier) -> list[tuple[str, IndexInfo]]:
    """
    Existing plain indexes whose leading column is LOW cardinality.

    Primary keys and unique structures are never proposed for dropping, and
    neither are unnamed indexes (there is nothing to drop by name).
    """
    candidates: list[tuple[str, IndexInfo]] = []
    seen: set[str] = set()
    for table, indexes in classifier.schema.items():
        for index in indexes:
            if index.kind is not IndexKind.INDEX or not index.columns:
                continue
            if not index.name or index.name.startswith("<"):
                continue
            if index.name.lower() in seen:
                continue
            if classifier.classify(table, index.leading_column) is CardinalityLevel.LOW:
                seen.add(index.name.lower())
                candidates.append((table, index))
    return candidates
