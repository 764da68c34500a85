"""
Tests for index suggestion accumulation and the redundancy passes.

Key format: ``table|col1,col2`` with case-insensitive identity.
"""

from __future__ import annotations

import pytest

from indexsense.analyzer.cardinality import CardinalityClassifier
from indexsense.analyzer.index_advisor import (
    RecommendationAccumulator,
    SuggestionKey,
    SuggestionSet,
    drop_candidates,
)
from indexsense.analyzer.models import CardinalityLevel, WhereCondition
from indexsense.analyzer.reordering import ReorderingAnalyzer
from indexsense.exceptions import MalformedKeyError
from indexsense.schema import IndexInfo, IndexKind, SchemaSnapshot

HIGH, MEDIUM, LOW = CardinalityLevel.HIGH, CardinalityLevel.MEDIUM, CardinalityLevel.LOW


def cond(column: str, cardinality: CardinalityLevel, position: int,
         table: str = "users", or_connected: bool = False) -> WhereCondition:
    return WhereCondition(
        table_name=table,
        column_name=column,
        operator="=",
        cardinality=cardinality,
        position=position,
        or_connected=or_connected,
    )


@pytest.fixture
def schema() -> SchemaSnapshot:
    return SchemaSnapshot.from_mapping({
        "users": [
            IndexInfo(IndexKind.PRIMARY_KEY, "pk_users", ("user_id",)),
            IndexInfo(IndexKind.UNIQUE_CONSTRAINT, "uq_users_email", ("email",)),
            IndexInfo(IndexKind.INDEX, "idx_users_status", ("status",)),
            IndexInfo(IndexKind.INDEX, "idx_users_is_deleted", ("is_deleted", "created_at")),
        ],
    })


@pytest.fixture
def accumulator(schema: SchemaSnapshot) -> RecommendationAccumulator:
    return RecommendationAccumulator(CardinalityClassifier(schema))


# =============================================================================
# Keys
# =============================================================================


class TestSuggestionKey:
    """Parsing and prefix relations."""

    def test_parse(self) -> None:
        """table|a,b parses into table and ordered columns."""
        key = SuggestionKey.parse("users|id,name")

        assert key.table == "users"
        assert key.columns == ("id", "name")
        assert str(key) == "users|id,name"

    @pytest.mark.parametrize("text", ["users", "|id", "users|", "users|id,,name"])
    def test_malformed(self, text: str) -> None:
        """Missing separator, table or column raises MalformedKeyError."""
        with pytest.raises(MalformedKeyError) as exc_info:
            SuggestionKey.parse(text)

        assert exc_info.value.key == text

    def test_strict_prefix(self) -> None:
        """Prefix must be shorter, same table, case-insensitive."""
        short = SuggestionKey.parse("Users|ID")
        long = SuggestionKey.parse("users|id,name")

        assert short.is_strict_prefix_of(long)
        assert not long.is_strict_prefix_of(short)
        assert not long.is_strict_prefix_of(long)
        assert not short.is_strict_prefix_of(SuggestionKey.parse("orders|id,name"))


class TestSuggestionSet:
    """Insertion order and case-insensitive dedup."""

    def test_dedup_keeps_first_casing(self) -> None:
        """Adding an equal key in other casing is a no-op."""
        keys = SuggestionSet()

        assert keys.add("users|Email")
        assert not keys.add("USERS|email")
        assert list(keys) == ["users|Email"]
        assert "users|EMAIL" in keys


# =============================================================================
# Redundancy passes
# =============================================================================


class TestRedundancy:
    """Prefix-covering removal."""

    def test_multi_prefix_removed(self, accumulator: RecommendationAccumulator) -> None:
        """users|id,name is dropped in favour of users|id,name,email."""
        accumulator.add_multi_column("users", ["id", "name"])
        accumulator.add_multi_column("users", ["id", "name", "email"])

        result = accumulator.finalize()

        assert result.multi_column == ("users|id,name,email",)
        assert result.removed == ("users|id,name",)

    def test_chain_collapses_to_longest(self, accumulator: RecommendationAccumulator) -> None:
        """a,b and a,b,c are both dropped in favour of a,b,c,d."""
        accumulator.add_multi_column("t", ["a", "b", "c", "d"])
        accumulator.add_multi_column("t", ["a", "b"])
        accumulator.add_multi_column("t", ["a", "b", "c"])

        result = accumulator.finalize()

        assert result.multi_column == ("t|a,b,c,d",)
        assert set(result.removed) == {"t|a,b", "t|a,b,c"}

    def test_different_tables_not_compared(self, accumulator: RecommendationAccumulator) -> None:
        """Prefixes only count within the same table."""
        accumulator.add_multi_column("users", ["id", "name"])
        accumulator.add_multi_column("orders", ["id", "name", "email"])

        assert accumulator.finalize().removed == ()

    def test_single_leading_column_removed(self, accumulator: RecommendationAccumulator) -> None:
        """users|email goes when users|email,name exists; users|name stays."""
        accumulator.add_single_column("users", "email")
        accumulator.add_single_column("users", "name")
        accumulator.add_multi_column("users", ["email", "name"])

        result = accumulator.finalize()

        assert result.single_column == ("users|name",)
        assert result.removed == ("users|email",)

    def test_malformed_keys_skipped(self, accumulator: RecommendationAccumulator) -> None:
        """Malformed entries never break the passes."""
        accumulator.multi_column_suggestions.add("no-separator")
        accumulator.multi_column_suggestions.add("users|")
        accumulator.single_column_suggestions.add("|email")
        accumulator.add_multi_column("users", ["id", "name"])
        accumulator.add_multi_column("users", ["id", "name", "email"])

        result = accumulator.finalize()

        assert result.removed == ("users|id,name",)
        assert "no-separator" in result.multi_column

    def test_idempotent(self, accumulator: RecommendationAccumulator) -> None:
        """Running the passes twice gives the same removal set."""
        accumulator.add_multi_column("users", ["id"])
        accumulator.add_multi_column("users", ["id", "name"])
        accumulator.add_single_column("users", "id")

        first, second = set(), set()
        accumulator.remove_redundant_multi_column_indexes(first)
        accumulator.remove_redundant_single_column_indexes(first)
        accumulator.remove_redundant_multi_column_indexes(second)
        accumulator.remove_redundant_single_column_indexes(second)
        accumulator.remove_redundant_multi_column_indexes(second)

        assert first == second == {"users|id"}
        assert accumulator.finalize() == accumulator.finalize()


# =============================================================================
# Collection
# =============================================================================


class TestCollect:
    """collect() groups per table and skips already-served columns."""

    def test_multi_column_in_target_order(self, accumulator: RecommendationAccumulator) -> None:
        """MEDIUM then LOW, HIGH columns left out."""
        added = accumulator.collect([
            cond("is_active", LOW, 0),
            cond("user_id", HIGH, 1),
            cond("region", MEDIUM, 2),
        ])

        assert added == ["users|region,is_active"]
        assert list(accumulator.multi_column_suggestions) == ["users|region,is_active"]

    def test_single_column(self, accumulator: RecommendationAccumulator) -> None:
        """One qualifying column gives a single-column key."""
        added = accumulator.collect([cond("nickname", MEDIUM, 0), cond("email", HIGH, 1)])

        assert added == ["users|nickname"]

    def test_primary_and_unique_columns_skipped(self, accumulator: RecommendationAccumulator) -> None:
        """PK and unique columns are already served even if classified lower."""
        added = accumulator.collect([cond("user_id", MEDIUM, 0), cond("email", LOW, 1)])

        assert added == []

    def test_existing_leading_index_skipped(self, accumulator: RecommendationAccumulator) -> None:
        """A column that already leads an index needs no new single index."""
        assert accumulator.collect([cond("status", MEDIUM, 0)]) == []

    def test_reversed_existing_composite_still_suggested(self, accumulator: RecommendationAccumulator) -> None:
        """An existing index with the columns in another order does not serve the query."""
        added = accumulator.collect([cond("is_deleted", LOW, 0), cond("created_at", MEDIUM, 1)])

        assert added == ["users|created_at,is_deleted"]

    def test_existing_index_covers_columns(self, schema: SchemaSnapshot) -> None:
        """Columns an existing index already starts with, in order, are skipped."""
        accumulator = RecommendationAccumulator(CardinalityClassifier(schema))

        assert accumulator.collect([
            cond("is_deleted", MEDIUM, 0), cond("created_at", MEDIUM, 1), cond("x", HIGH, 2),
        ]) == []

    def test_covered_by_suggested_composite(self, accumulator: RecommendationAccumulator) -> None:
        """A column leading a suggested composite is not suggested alone."""
        accumulator.collect([cond("region", MEDIUM, 0), cond("is_active", LOW, 1)])

        assert accumulator.is_covered_by_composite("USERS", "Region")
        assert not accumulator.is_covered_by_composite("users", "is_active")
        assert accumulator.collect([cond("region", MEDIUM, 0)]) == []

    def test_tables_never_merged(self, accumulator: RecommendationAccumulator) -> None:
        """Join queries produce one suggestion per table."""
        added = accumulator.collect([
            cond("status", MEDIUM, 0, table="orders"),
            cond("country", MEDIUM, 1, table="customers"),
        ])

        assert added == ["orders|status", "customers|country"]

    def test_issue_order_is_used(self, accumulator: RecommendationAccumulator) -> None:
        """The issue's recommended order decides the composite column order."""
        conditions = [cond("is_active", LOW, 0), cond("region", MEDIUM, 1)]
        issue = ReorderingAnalyzer().analyze(conditions)

        assert accumulator.collect(conditions, issue) == ["users|region,is_active"]

    def test_or_connected_columns_suggested_alone(self, accumulator: RecommendationAccumulator) -> None:
        """OR-connected columns never share a composite key."""
        added = accumulator.collect([
            cond("nickname", MEDIUM, 0, or_connected=True),
            cond("region", MEDIUM, 1, or_connected=True),
        ])
        result = accumulator.finalize()

        assert added == ["users|nickname", "users|region"]
        assert result.single_column == ("users|nickname", "users|region")
        assert result.multi_column == ()

    def test_or_group_kept_apart_from_and_chain(self, accumulator: RecommendationAccumulator) -> None:
        """AND conjuncts form the composite, nested OR columns stay single."""
        added = accumulator.collect([
            cond("region", MEDIUM, 0),
            cond("is_active", LOW, 1),
            cond("nickname", MEDIUM, 2, or_connected=True),
            cond("is_visible", LOW, 3, or_connected=True),
        ])

        assert added == ["users|region,is_active", "users|nickname"]

    def test_low_column_never_leads(self, accumulator: RecommendationAccumulator) -> None:
        """A LOW-only filter produces no suggestion."""
        assert accumulator.collect([cond("is_active", LOW, 0)]) == []
        assert accumulator.collect([cond("is_active", LOW, 0), cond("user_id", HIGH, 1)]) == []
        assert accumulator.collect([cond("is_active", LOW, 0), cond("is_visible", LOW, 1)]) == []
        assert accumulator.finalize().total == 0

    def test_duplicate_collect_is_noop(self, accumulator: RecommendationAccumulator) -> None:
        """The same query twice adds nothing the second time."""
        conditions = [cond("nickname", MEDIUM, 0)]
        accumulator.collect(conditions)

        assert accumulator.collect(conditions) == []
        assert len(accumulator.single_column_suggestions) == 1

    def test_reset(self, accumulator: RecommendationAccumulator) -> None:
        """reset() clears both sets."""
        accumulator.add_single_column("users", "a")
        accumulator.add_multi_column("users", ["a", "b"])
        accumulator.reset()

        assert len(accumulator.single_column_suggestions) == 0
        assert len(accumulator.multi_column_suggestions) == 0


class TestDropCandidates:
    """Existing indexes led by LOW cardinality columns."""

    def test_low_leading_index(self, schema: SchemaSnapshot) -> None:
        """Only the plain index led by a flag column is proposed."""
        candidates = drop_candidates(CardinalityClassifier(schema))

        assert [(t, i.name) for t, i in candidates] == [("users", "idx_users_is_deleted")]

    def test_unique_and_unnamed_never_dropped(self) -> None:
        """Unique structures and unnamed indexes are left alone."""
        schema = SchemaSnapshot.from_mapping({
            "t": [
                IndexInfo(IndexKind.UNIQUE_INDEX, "ux_flag", ("is_flag",)),
                IndexInfo(IndexKind.INDEX, "<unnamed>", ("is_visible",)),
            ],
        })

        assert drop_candidates(CardinalityClassifier(schema)) == []
