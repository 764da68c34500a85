"""
Tests for AnalysisSession orchestration.

End-to-end over the real parser: SQL text in, classified conditions,
issues, suggestions and changesets out.
"""

from __future__ import annotations

import logging

import pytest

from indexsense.advisory import Advice, Advisor, StaticAdvisor, advisory_priority
from indexsense.analyzer.models import CardinalityLevel, Severity
from indexsense.config import Config
from indexsense.engine import (
    AnalysisSession,
    QueryParameter,
    RepositoryQuery,
    bind_parameter,
    camel_to_snake,
    decompose_method_name,
    table_name_from_repository,
)
from indexsense.exceptions import AdvisoryError
from indexsense.schema import IndexInfo, IndexKind, SchemaSnapshot
from indexsense.sql.nodes import Parameter


@pytest.fixture
def schema() -> SchemaSnapshot:
    return SchemaSnapshot.from_mapping({
        "users": [
            IndexInfo(IndexKind.PRIMARY_KEY, "pk_users", ("user_id",)),
            IndexInfo(IndexKind.UNIQUE_CONSTRAINT, "uq_users_email", ("email",)),
            IndexInfo(IndexKind.INDEX, "idx_users_is_deleted", ("is_deleted",)),
        ],
    })


@pytest.fixture
def session(schema: SchemaSnapshot) -> AnalysisSession:
    return AnalysisSession(schema=schema)


def query(sql: str | None, method: str = "find", repository: str = "com.acme.UserRepository",
          **kwargs) -> RepositoryQuery:
    return RepositoryQuery(repository_class=repository, method_name=method, sql=sql, **kwargs)


# =============================================================================
# Per-query analysis
# =============================================================================


class TestAnalyzeQuery:
    """One query through extraction, classification and reordering."""

    def test_already_optimal(self, session: AnalysisSession) -> None:
        """PK first, MEDIUM second: no issue, status still suggested."""
        result = session.analyze_query(
            query("SELECT * FROM users WHERE user_id = ? AND status = ?")
        )

        assert result.ok
        assert [c.cardinality for c in result.conditions] == [
            CardinalityLevel.HIGH, CardinalityLevel.MEDIUM,
        ]
        assert result.issue is None
        assert result.added_suggestions == ("users|status",)
        assert result.where_clause_text == "user_id = ? AND status = ?"

    def test_flag_before_primary_key(self, session: AnalysisSession) -> None:
        """is_active then user_id is a HIGH severity issue."""
        result = session.analyze_query(query(
            "SELECT * FROM users WHERE is_active = ? AND user_id = ?", method="findActive"
        ))

        assert result.issue is not None
        assert result.issue.severity is Severity.HIGH
        assert result.issue.current_first_column == "is_active"
        assert result.issue.recommended_first_column == "user_id"
        assert result.issue.query_id == "UserRepository.findActive"
        assert session.summary.high_issues == 1

    def test_nested_or_keeps_top_level_issue(self, session: AnalysisSession) -> None:
        """A nested OR group does not hide a LOW-before-PK top-level chain."""
        result = session.analyze_query(query(
            "SELECT * FROM users WHERE is_active = ? AND user_id = ? AND (region = ? OR nickname = ?)"
        ))

        assert result.issue is not None
        assert result.issue.severity is Severity.HIGH
        assert result.issue.recommended_first_column == "user_id"
        assert result.issue.recommended_column_order == ("user_id", "is_active")
        assert result.added_suggestions == ("users|region", "users|nickname")

    def test_top_level_or_has_no_issue(self, session: AnalysisSession) -> None:
        """An OR at the WHERE root is never reordered."""
        result = session.analyze_query(query(
            "SELECT * FROM users WHERE is_active = ? OR user_id = ?"
        ))

        assert result.issue is None

    def test_low_only_query_suggests_nothing(self, schema: SchemaSnapshot) -> None:
        """A flag-only filter never proposes an index the drop policy would remove."""
        session = AnalysisSession(schema=schema)
        result = session.analyze_query(query("SELECT * FROM users WHERE is_deleted = ?"))
        rendered = session.render_changesets()

        assert result.added_suggestions == ()
        assert rendered.creates == ()
        assert [index.name for _, index in rendered.drop_targets] == ["idx_users_is_deleted"]

    def test_parse_error_is_recorded(self, session: AnalysisSession) -> None:
        """Unparseable SQL never raises out of the session."""
        result = session.analyze_query(query("SELEC * FRM users"))

        assert not result.ok
        assert result.conditions == ()
        assert session.summary.queries_failed == 1
        assert session.summary.queries_analyzed == 0

    def test_batch_continues_after_failure(self, session: AnalysisSession) -> None:
        """A bad query does not stop the following ones."""
        results = session.analyze_all([
            query("not sql at all"),
            query("SELECT * FROM users WHERE nickname = ?"),
        ])

        assert [r.ok for r in results] == [False, True]
        assert session.summary.queries_analyzed == 1

    def test_skipped_class(self, schema: SchemaSnapshot) -> None:
        """Excluded repository classes are not analyzed."""
        session = AnalysisSession(Config(skip_classes=("UserRepository",)), schema)
        result = session.analyze_query(query("SELECT * FROM users WHERE nickname = ?"))

        assert result.skipped
        assert session.summary.queries_skipped == 1
        assert len(session.accumulator.single_column_suggestions) == 0

    def test_join_conditions_reported(self, session: AnalysisSession) -> None:
        """JOIN predicates are returned separately from WHERE conditions."""
        result = session.analyze_query(query(
            "SELECT * FROM orders o JOIN users u ON o.user_id = u.user_id WHERE o.status = ?"
        ))

        assert [str(j) for j in result.join_conditions] == ["orders.user_id = users.user_id"]
        assert [(c.table_name, c.column_name) for c in result.conditions] == [("orders", "status")]

    def test_table_fallback_from_repository(self, session: AnalysisSession) -> None:
        """Conditions without a resolvable table use the repository's table."""
        result = session.analyze_query(query(
            "SELECT 1 WHERE nickname = ?", repository="com.acme.UserAccountRepository"
        ))

        assert result.conditions[0].table_name == "user_account"

    def test_explicit_table_wins(self, session: AnalysisSession) -> None:
        """RepositoryQuery.table overrides the class-name heuristic."""
        result = session.analyze_query(query("SELECT 1 WHERE a = ?", table="legacy_users"))

        assert result.conditions[0].table_name == "legacy_users"


class TestDerivedQueries:
    """Queries without SQL text."""

    def test_parameters_mapped_to_columns(self, session: AnalysisSession) -> None:
        """Mapped parameters become = conditions in parameter order."""
        result = session.analyze_query(query(
            None,
            method="findByStatusAndEmail",
            parameters=(
                QueryParameter(name="status", column="status"),
                QueryParameter(name="email", column="email"),
            ),
        ))

        assert [(c.table_name, c.column_name, c.operator) for c in result.conditions] == [
            ("user", "status", "="),
            ("user", "email", "="),
        ]
        assert result.conditions[0].parameter.name == "status"

    def test_method_name_decomposition(self, schema: SchemaSnapshot) -> None:
        """Without parameter metadata the method name is decomposed."""
        session = AnalysisSession(schema=schema)
        result = session.analyze_query(query(
            None, method="findByIsDeletedAndUserId", repository="UsersRepository"
        ))

        assert [c.column_name for c in result.conditions] == ["is_deleted", "user_id"]
        assert result.issue is not None
        assert result.issue.severity is Severity.HIGH

    def test_decompose_method_name(self) -> None:
        """Operators come from Spring Data keywords; Or marks every part."""
        assert decompose_method_name("findByEmailAndStatusOrderByNameDesc") == [
            ("email", "=", False), ("status", "=", False),
        ]
        assert decompose_method_name("findAllByAgeGreaterThanEqualAndCreatedAtBetween") == [
            ("age", ">=", False), ("created_at", "BETWEEN", False),
        ]
        assert decompose_method_name("findByIsActiveTrueOrLastName") == [
            ("is_active", "=", True), ("last_name", "=", True),
        ]
        assert decompose_method_name("countByStatusIn") == [("status", "IN", False)]
        assert decompose_method_name("findAll") == []

    def test_or_method_has_no_issue(self, session: AnalysisSession) -> None:
        """OR-connected derived conditions are never reordered."""
        result = session.analyze_query(query(
            None, method="findByIsDeletedOrUserId", repository="UsersRepository"
        ))

        assert result.issue is None


class TestNaming:
    """Helpers for names."""

    def test_table_name_from_repository(self) -> None:
        """Package and Repository/Repo/Dao suffix are stripped."""
        assert table_name_from_repository("com.acme.UserAccountRepository") == "user_account"
        assert table_name_from_repository("OrderDao") == "order"
        assert table_name_from_repository("InvoiceRepo") == "invoice"
        assert table_name_from_repository("Repository") == ""
        assert table_name_from_repository(None) == ""

    def test_camel_to_snake(self) -> None:
        """Acronyms stay together."""
        assert camel_to_snake("userEmail") == "user_email"
        assert camel_to_snake("HTTPStatus") == "http_status"
        assert camel_to_snake("id") == "id"

    def test_missing_table_placeholder(self, session: AnalysisSession) -> None:
        """No table and no usable class name gives <TABLE_NAME>."""
        result = session.analyze_query(query("SELECT 1 WHERE a = ?", repository="Repository"))

        assert result.conditions[0].table_name == "<TABLE_NAME>"


class TestParameterBinding:
    """Conditions are linked back to method parameters."""

    def test_by_position(self, session: AnalysisSession) -> None:
        """JDBC ? ordinals match QueryParameter.position."""
        result = session.analyze_query(query(
            "SELECT * FROM users WHERE nickname = ? AND region = ?",
            parameters=(QueryParameter(name="r", position=2), QueryParameter(name="n", position=1)),
        ))

        assert [c.parameter.name for c in result.conditions] == ["n", "r"]

    def test_by_named_placeholder(self, session: AnalysisSession) -> None:
        """:name placeholders match parameter names."""
        result = session.analyze_query(query(
            "SELECT * FROM users WHERE nickname = :nick",
            parameters=(QueryParameter(name="nick"),),
        ))

        assert result.conditions[0].parameter == QueryParameter(name="nick")

    def test_by_snake_case_name(self) -> None:
        """A camelCase parameter name matches its snake_case column."""
        bound = bind_parameter(
            "last_name", Parameter(token="?", index=1), [QueryParameter(name="lastName")]
        )

        assert bound == QueryParameter(name="lastName")

    def test_explicit_column_first(self) -> None:
        """An explicit column mapping beats the position."""
        params = [
            QueryParameter(name="a", position=1),
            QueryParameter(name="b", column="region"),
        ]

        assert bind_parameter("region", Parameter(token="?", index=1), params).name == "b"

    def test_unmatched_keeps_placeholder(self, session: AnalysisSession) -> None:
        """Without a match the raw placeholder stays attached."""
        result = session.analyze_query(query("SELECT * FROM users WHERE nickname = ?"))

        assert result.conditions[0].parameter == Parameter(token="?", index=1)


# =============================================================================
# Advisory
# =============================================================================


class _BrokenAdvisor(Advisor):
    def advise(self, issue, query):
        raise RuntimeError("service unavailable")


class _UnavailableAdvisor(Advisor):
    def advise(self, issue, query):
        raise AdvisoryError("endpoint unreachable")


class _ErrorAdvisor(Advisor):
    def advise(self, issue, query):
        return Advice(query_id=issue.query_id, explanation=None, error="quota exceeded")


class TestAdvisory:
    """Advisors add text but never change the deterministic result."""

    SQL = "SELECT * FROM users WHERE is_active = ? AND user_id = ?"

    def test_explanation_attached(self, schema: SchemaSnapshot) -> None:
        """Advice text lands on the issue."""
        session = AnalysisSession(schema=schema, advisor=StaticAdvisor("high priority: swap"))
        result = session.analyze_query(query(self.SQL))

        assert result.issue.advisory_explanation == "high priority: swap"
        assert result.issue.severity is Severity.HIGH

    @pytest.mark.parametrize("advisor", [_BrokenAdvisor(), _UnavailableAdvisor(), _ErrorAdvisor()])
    def test_failures_ignored(self, schema: SchemaSnapshot, advisor: Advisor) -> None:
        """A failing advisor leaves the issue as it was."""
        session = AnalysisSession(schema=schema, advisor=advisor)
        result = session.analyze_query(query(self.SQL))

        assert result.ok
        assert result.issue is not None
        assert result.issue.advisory_explanation is None

    def test_advisory_error_logged_as_warning(
        self, schema: SchemaSnapshot, caplog: pytest.LogCaptureFixture
    ) -> None:
        """AdvisoryError is an expected failure: one warning, no traceback."""
        session = AnalysisSession(schema=schema, advisor=_UnavailableAdvisor())
        with caplog.at_level(logging.WARNING, logger="indexsense.engine"):
            session.analyze_query(query(self.SQL))

        records = [r for r in caplog.records if "Advisor unavailable" in r.getMessage()]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].exc_info is None
        assert "endpoint unreachable" in records[0].getMessage()

    def test_priority_keywords(self) -> None:
        """Keywords map to tie-break ranks."""
        assert advisory_priority("This is HIGH PRIORITY") == 0
        assert advisory_priority("medium priority change") == 1
        assert advisory_priority("whatever") == 2
        assert advisory_priority(None) == 2

    def test_issues_sorted_by_severity_then_advice(self, schema: SchemaSnapshot) -> None:
        """Advice only breaks ties between equal severities."""

        class KeywordAdvisor(Advisor):
            def advise(self, issue, query):
                text = "high priority" if query.method_name == "urgent" else None
                return Advice(query_id=issue.query_id, explanation=text)

        session = AnalysisSession(schema=schema, advisor=KeywordAdvisor())
        session.analyze_query(query("SELECT * FROM users WHERE region = ? AND user_id = ?",
                                    method="medium"))
        session.analyze_query(query(self.SQL, method="plain"))
        session.analyze_query(query(self.SQL, method="urgent"))

        assert [i.query_id for i in session.issues()] == [
            "UserRepository.urgent", "UserRepository.plain", "UserRepository.medium",
        ]


# =============================================================================
# End of run
# =============================================================================


class TestEndOfRun:
    """Finalization, changesets, summary and exit status."""

    def test_render_changesets(self, session: AnalysisSession) -> None:
        """Surviving suggestions become creates; low-cardinality indexes drops."""
        session.analyze_query(query("SELECT * FROM users WHERE region = ?"))
        session.analyze_query(query("SELECT * FROM users WHERE region = ? AND nickname = ?"))

        rendered = session.render_changesets()

        assert rendered.suggestions.single_column == ()
        assert rendered.suggestions.multi_column == ("users|region,nickname",)
        assert len(rendered.creates) == 1
        assert "idx_users_region_nickname" in rendered.creates[0]
        assert [index.name for _, index in rendered.drop_targets] == ["idx_users_is_deleted"]
        assert "DROP INDEX CONCURRENTLY IF EXISTS idx_users_is_deleted;" in rendered.drops[0]
        assert session.summary.create_count == 1
        assert session.summary.drop_count == 1

    def test_should_fail_needs_both_thresholds(self, schema: SchemaSnapshot) -> None:
        """Default thresholds need 1 HIGH and 10 MEDIUM issues."""
        sql = "SELECT * FROM users WHERE is_active = ? AND user_id = ?"
        default = AnalysisSession(schema=schema)
        default.analyze_query(query(sql))
        strict = AnalysisSession(Config(fail_on_medium=0), schema)
        strict.analyze_query(query(sql))

        assert not default.should_fail()
        assert strict.should_fail()

    def test_reset(self, session: AnalysisSession) -> None:
        """reset() forgets suggestions, results and counters."""
        session.analyze_query(query("SELECT * FROM users WHERE region = ?"))
        session.reset()

        assert session.results == []
        assert session.summary.queries_analyzed == 0
        assert session.finalize().total == 0

    def test_sessions_are_independent(self, schema: SchemaSnapshot) -> None:
        """Nothing leaks between two sessions."""
        first = AnalysisSession(schema=schema)
        first.analyze_query(query("SELECT * FROM users WHERE region = ?"))
        second = AnalysisSession(schema=schema)

        assert second.finalize().total == 0
