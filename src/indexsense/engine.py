"""
AnalysisSession - per-run orchestration for IndexSense.

One session owns every piece of mutable state of an analysis run: the
suggestion sets, the changeset id registry and the summary counters. Build
one per CLI invocation or batch and discard it afterwards (or call
``reset()``); nothing is shared between sessions.

Usage:
    from indexsense.engine import AnalysisSession, RepositoryQuery
    from indexsense.migrations import load_changelog

    session = AnalysisSession(schema=load_changelog("db.changelog-master.xml"))
    session.analyze_query(RepositoryQuery(
        repository_class="com.acme.UserRepository",
        method_name="findActive",
        sql="SELECT * FROM users WHERE is_active = ? AND user_id = ?",
    ))
    rendered = session.render_changesets()
    print(session.summary)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from pydantic import BaseModel, ConfigDict, Field

from indexsense.advisory import Advisor, advisory_priority
from indexsense.analyzer.cardinality import CardinalityClassifier
from indexsense.analyzer.extractor import (
    extract_join_conditions,
    extract_where_clause_text,
    extract_where_conditions,
)
from indexsense.analyzer.index_advisor import (
    RecommendationAccumulator,
    SuggestionResult,
    drop_candidates,
)
from indexsense.analyzer.models import (
    JoinCondition,
    OptimizationIssue,
    Severity,
    WhereCondition,
)
from indexsense.analyzer.reordering import ReorderingAnalyzer
from indexsense.config import Config
from indexsense.exceptions import AdvisoryError, ParseError
from indexsense.output.changesets import TABLE_NAME_TAG, ChangesetRenderer
from indexsense.schema import IndexInfo, SchemaSnapshot
from indexsense.sql import parse_statement
from indexsense.sql.nodes import Parameter

logger = logging.getLogger(__name__)


# ── Input models ─────────────────────────────────────────────────────


class QueryParameter(BaseModel):
    """
    A repository method parameter.

    Attributes:
        name: Parameter name in the method signature (``userEmail``).
        column: Column the parameter is bound to, when known.
        position: 1-based JDBC position (``?`` ordinal or ``?N``).
    """

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    column: str | None = None
    position: int | None = Field(default=None, ge=1)


class RepositoryQuery(BaseModel):
    """One data-access query declared in a repository class."""

    model_config = ConfigDict(frozen=True)

    repository_class: str = Field(..., description="Fully qualified class name")
    method_name: str = Field(..., description="Repository method name")
    sql: str | None = Field(default=None, description="Annotated or native SQL")
    table: str | None = Field(default=None, description="Explicit table override")
    parameters: tuple[QueryParameter, ...] = ()

    @property
    def query_id(self) -> str:
        simple = self.repository_class.rsplit(".", 1)[-1]
        return f"{simple}.{self.method_name}"


@dataclass(frozen=True)
class QueryAnalysis:
    """Result of analyzing one repository query."""

    query: RepositoryQuery
    conditions: tuple[WhereCondition, ...] = ()
    join_conditions: tuple[JoinCondition, ...] = ()
    where_clause_text: str | None = None
    issue: OptimizationIssue | None = None
    added_suggestions: tuple[str, ...] = ()
    error: str | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SessionSummary:
    """Counters for one analysis run."""

    queries_analyzed: int = 0
    queries_failed: int = 0
    queries_skipped: int = 0
    high_issues: int = 0
    medium_issues: int = 0
    low_issues: int = 0
    create_count: int = 0
    drop_count: int = 0

    @property
    def total_issues(self) -> int:
        return self.high_issues + self.medium_issues + self.low_issues

    def to_dict(self) -> dict[str, int]:
        return {
            "queries_analyzed": self.queries_analyzed,
            "queries_failed": self.queries_failed,
            "queries_skipped": self.queries_skipped,
            "high_issues": self.high_issues,
            "medium_issues": self.medium_issues,
            "low_issues": self.low_issues,
            "create_count": self.create_count,
            "drop_count": self.drop_count,
        }


@dataclass(frozen=True)
class RenderedChangesets:
    """Create and drop changesets produced at the end of a run."""

    creates: tuple[str, ...] = ()
    drops: tuple[str, ...] = ()
    suggestions: SuggestionResult | None = None
    drop_targets: tuple[tuple[str, IndexInfo], ...] = field(default=())

    @property
    def all(self) -> tuple[str, ...]:
        return self.creates + self.drops


# ── Naming helpers ───────────────────────────────────────────────────

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_REPOSITORY_SUFFIXES = ("Repository", "Repo", "Dao")


def camel_to_snake(name: str | None) -> str:
    """``userEmail`` -> ``user_email``, ``HTTPStatus`` -> ``http_status``."""
    if not name:
        return ""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def table_name_from_repository(repository_class: str | None) -> str:
    """
    Derive a table name from a repository class name.

    ``com.acme.UserAccountRepository`` -> ``user_account``. Returns an empty
    string when nothing is left after stripping.
    """
    if not repository_class:
        return ""
    simple = repository_class.rsplit(".", 1)[-1]
    for suffix in _REPOSITORY_SUFFIXES:
        if simple.endswith(suffix) and len(simple) > len(suffix):
            simple = simple[: -len(suffix)]
            break
        if simple == suffix:
            return ""
    return camel_to_snake(simple)


# ── Derived-method decomposition ─────────────────────────────────────

_METHOD_SUBJECT = re.compile(
    r"^(?:find|read|get|query|search|stream|count|exists|delete|remove)\w*?By(?P<criteria>[A-Z]\w*)$"
)
_ORDER_BY = re.compile(r"OrderBy[A-Z]\w*$")
_CONNECTOR = re.compile(r"(?<=[a-z0-9])(And|Or)(?=[A-Z])")

# Longest suffixes first so ``GreaterThanEqual`` wins over ``GreaterThan``.
_PROPERTY_OPERATORS: tuple[tuple[str, str], ...] = (
    ("GreaterThanEqual", ">="),
    ("LessThanEqual", "<="),
    ("IsNotNull", "IS NOT NULL"),
    ("NotNull", "IS NOT NULL"),
    ("StartingWith", "LIKE"),
    ("EndingWith", "LIKE"),
    ("GreaterThan", ">"),
    ("Containing", "LIKE"),
    ("IgnoreCase", "="),
    ("LessThan", "<"),
    ("IsNull", "IS NULL"),
    ("Between", "BETWEEN"),
    ("NotLike", "NOT LIKE"),
    ("NotIn", "NOT IN"),
    ("Before", "<"),
    ("After", ">"),
    ("False", "="),
    ("True", "="),
    ("Null", "IS NULL"),
    ("Like", "LIKE"),
    ("Not", "<>"),
    ("In", "IN"),
    ("Is", "="),
    ("Equals", "="),
)


def _split_property(part: str) -> tuple[str, str]:
    for suffix, operator in _PROPERTY_OPERATORS:
        if part.endswith(suffix) and len(part) > len(suffix):
            return part[: -len(suffix)], operator
    return part, "="


def decompose_method_name(method_name: str) -> list[tuple[str, str, bool]]:
    """
    Split a derived query method into ``(column, operator, or_connected)``.

    ``findByEmailAndStatusOrderByNameDesc`` -> ``[("email", "=", False),
    ("status", "=", False)]``. Any ``Or`` connector marks every part as
    OR-connected. Returns an empty list for non-derived names.
    """
    match = _METHOD_SUBJECT.match(method_name or "")
    if not match:
        return []
    criteria = _ORDER_BY.sub("", match.group("criteria"))
    if not criteria:
        return []

    pieces = _CONNECTOR.split(criteria)
    properties = pieces[0::2]
    connectors = pieces[1::2]
    has_or = "Or" in connectors

    result = []
    for prop in properties:
        name, operator = _split_property(prop)
        column = camel_to_snake(name)
        if column:
            result.append((column, operator, has_or))
    return result


# ── Session ──────────────────────────────────────────────────────────


class AnalysisSession:
    """
    Orchestrates extraction, classification, reordering and accumulation.

    ``analyze_query`` never raises: parse failures and unexpected errors are
    recorded on the returned ``QueryAnalysis`` and the run continues.
    """

    def __init__(
        self,
        config: Config | None = None,
        schema: SchemaSnapshot | None = None,
        advisor: Advisor | None = None,
        renderer: ChangesetRenderer | None = None,
    ) -> None:
        self.config = config if config is not None else Config()
        self.schema = schema if schema is not None else SchemaSnapshot()
        self.advisor = advisor
        self.classifier = CardinalityClassifier(self.schema, self.config)
        self.analyzer = ReorderingAnalyzer()
        self.accumulator = RecommendationAccumulator(self.classifier)
        self.renderer = renderer if renderer is not None else ChangesetRenderer.from_config(self.config)
        self.summary = SessionSummary()
        self.results: list[QueryAnalysis] = []

    def reset(self) -> None:
        """Forget everything collected so far."""
        self.accumulator.reset()
        self.summary = SessionSummary()
        self.results = []

    # ── Per query ────────────────────────────────────────────────────

    def analyze_all(self, queries: Sequence[RepositoryQuery]) -> list[QueryAnalysis]:
        return [self.analyze_query(q) for q in queries]

    def analyze_query(self, query: RepositoryQuery) -> QueryAnalysis:
        """Analyze one query and feed its conditions to the accumulator."""
        if self.config.should_skip_class(query.repository_class):
            logger.debug("Skipping %s: class excluded", query.query_id)
            self.summary.queries_skipped += 1
            return self._record(QueryAnalysis(query=query, skipped=True))

        try:
            analysis = self._analyze(query)
        except ParseError as e:
            logger.warning("Cannot parse %s: %s", query.query_id, e.message)
            self.summary.queries_failed += 1
            return self._record(QueryAnalysis(query=query, error=e.message))
        except Exception as e:
            logger.exception("Analysis of %s failed", query.query_id)
            self.summary.queries_failed += 1
            return self._record(QueryAnalysis(query=query, error=str(e)))

        self.summary.queries_analyzed += 1
        if analysis.issue is not None:
            if analysis.issue.severity is Severity.HIGH:
                self.summary.high_issues += 1
            elif analysis.issue.severity is Severity.MEDIUM:
                self.summary.medium_issues += 1
            else:
                self.summary.low_issues += 1
        return self._record(analysis)

    def _record(self, analysis: QueryAnalysis) -> QueryAnalysis:
        self.results.append(analysis)
        return analysis

    def _analyze(self, query: RepositoryQuery) -> QueryAnalysis:
        joins: list[JoinCondition] = []
        where_text: str | None = None

        if query.sql and query.sql.strip():
            parsed = parse_statement(query.sql)
            conditions = extract_where_conditions(parsed)
            joins = extract_join_conditions(parsed)
            where_text = extract_where_clause_text(parsed)
        else:
            conditions = self.derived_conditions(query)

        conditions = [self._finish_condition(query, c) for c in conditions]
        issue = self.analyzer.analyze(
            conditions, query_id=query.query_id, query_text=query.sql or query.method_name
        )
        if issue is not None:
            issue = self._advise(issue, query)
        added = self.accumulator.collect(conditions, issue)

        return QueryAnalysis(
            query=query,
            conditions=tuple(conditions),
            join_conditions=tuple(joins),
            where_clause_text=where_text,
            issue=issue,
            added_suggestions=tuple(added),
        )

    def fallback_table(self, query: RepositoryQuery) -> str:
        return query.table or table_name_from_repository(query.repository_class) or TABLE_NAME_TAG

    def derived_conditions(self, query: RepositoryQuery) -> list[WhereCondition]:
        """Conditions of a query that has no SQL text."""
        table = self.fallback_table(query)
        mapped = [p for p in query.parameters if p.column]
        if mapped:
            return [
                WhereCondition(
                    table_name=table,
                    column_name=p.column,
                    operator="=",
                    position=i,
                    parameter=p,
                )
                for i, p in enumerate(mapped)
            ]
        return [
            WhereCondition(
                table_name=table,
                column_name=column,
                operator=operator,
                position=i,
                or_connected=or_connected,
                top_level_or=or_connected,
            )
            for i, (column, operator, or_connected) in enumerate(
                decompose_method_name(query.method_name)
            )
        ]

    def _finish_condition(self, query: RepositoryQuery, condition: WhereCondition) -> WhereCondition:
        """Fill the table fallback, bind the parameter and classify."""
        table = condition.table_name or self.fallback_table(query)
        parameter = condition.parameter
        if not isinstance(parameter, QueryParameter):
            parameter = bind_parameter(condition.column_name, parameter, query.parameters) or parameter
        return condition.model_copy(update={
            "table_name": table,
            "parameter": parameter,
            "cardinality": self.classifier.classify(table, condition.column_name),
        })

    def _advise(self, issue: OptimizationIssue, query: RepositoryQuery) -> OptimizationIssue:
        if self.advisor is None:
            return issue
        try:
            advice = self.advisor.advise(issue, query)
        except AdvisoryError as e:
            logger.warning("Advisor unavailable for %s: %s", query.query_id, e.message)
            return issue
        except Exception:
            logger.exception("Advisor failed for %s", query.query_id)
            return issue
        if advice is None or not advice.explanation:
            if advice is not None and advice.error:
                logger.warning("Advisor error for %s: %s", query.query_id, advice.error)
            return issue
        return issue.model_copy(update={"advisory_explanation": advice.explanation})

    # ── End of run ───────────────────────────────────────────────────

    def issues(self) -> list[OptimizationIssue]:
        """Issues by severity, advisory priority breaking ties."""
        found = [r.issue for r in self.results if r.issue is not None]
        return sorted(found, key=lambda i: (i.severity, advisory_priority(i.advisory_explanation)))

    def drop_candidates(self) -> list[tuple[str, IndexInfo]]:
        return drop_candidates(self.classifier)

    def finalize(self) -> SuggestionResult:
        return self.accumulator.finalize()

    def render_changesets(self) -> RenderedChangesets:
        """Render surviving suggestions and drop candidates; updates the summary."""
        result = self.finalize()
        creates = tuple(
            self.renderer.render_key(key) for key in (*result.single_column, *result.multi_column)
        )
        targets = tuple(self.drop_candidates())
        drops = tuple(
            self.renderer.render_drop(index.name, table, index.columns) for table, index in targets
        )
        self.summary.create_count = len(creates)
        self.summary.drop_count = len(drops)
        logger.info(
            "Analyzed %d queries: %d issue(s), %d create, %d drop",
            self.summary.queries_analyzed,
            self.summary.total_issues,
            len(creates),
            len(drops),
        )
        return RenderedChangesets(
            creates=creates, drops=drops, suggestions=result, drop_targets=targets
        )

    def should_fail(self) -> bool:
        """HIGH issues reach ``fail_on_high`` and MEDIUM issues reach ``fail_on_medium``."""
        return (
            self.summary.high_issues >= self.config.fail_on_high
            and self.summary.medium_issues >= self.config.fail_on_medium
        )


# ── Parameter binding ────────────────────────────────────────────────


def bind_parameter(
    column: str,
    placeholder: Any,
    parameters: Sequence[QueryParameter],
) -> QueryParameter | None:
    """
    Find the method parameter supplying a condition's value.

    Tried in order: explicit column mapping, JDBC position, named
    placeholder, placeholder name equal to the column, and the camelCase
    parameter name converted to snake_case.
    """
    if not parameters:
        return None
    column_lower = column.lower()

    for p in parameters:
        if p.column and p.column.lower() == column_lower:
            return p

    if isinstance(placeholder, Parameter):
        if placeholder.name is None and placeholder.index is not None:
            for p in parameters:
                if p.position == placeholder.index:
                    return p
        if placeholder.name:
            for p in parameters:
                if p.name and p.name == placeholder.name:
                    return p

    for p in parameters:
        if p.name and p.name.lower() == column_lower:
            return p

    for p in parameters:
        if p.name and camel_to_snake(p.name) == column_lower:
            return p
    return None
