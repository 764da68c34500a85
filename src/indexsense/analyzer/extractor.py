"""
Condition extraction from generic SQL statements.

Walks a statement produced by ``indexsense.sql`` and returns:

- ``extract_where_conditions``: WHERE-clause predicates, in declaration
  order, with every column resolved to its real table (never an alias)
- ``extract_join_conditions``: column-to-column JOIN predicates
- ``extract_where_clause_text``: the left-most branch's WHERE text, for display

WHERE and JOIN results are disjoint by construction: ON / USING clauses are
only ever visited by the join walk.

Rules:
- AND and OR are both decomposed into leaf predicates; predicates under an
  OR are flagged ``or_connected`` so the reordering step can skip them.
- Only a column on the left of a predicate yields a condition.
- ``col IN (SELECT ...)`` yields one IN condition for ``col``; the
  subquery's own WHERE is not visited. EXISTS and NOT are skipped.
- Set operations are processed branch by branch, each with its own table
  context, and positions restart at 0 in each branch. Derived tables in
  FROM are processed the same way.

Usage:
    from indexsense.sql import parse_statement
    from indexsense.analyzer.extractor import extract_where_conditions

    parsed = parse_statement("SELECT * FROM users WHERE email = ?")
    conditions = extract_where_conditions(parsed)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import singledispatchmethod
from typing import Union

from indexsense.analyzer.models import JoinCondition, WhereCondition
from indexsense.sql.adapters.base import ParsedStatement
from indexsense.sql.nodes import (
    Between,
    BoolOp,
    Column,
    Comparison,
    Delete,
    Exists,
    Expression,
    FromItem,
    InList,
    InSubquery,
    IsNull,
    Join,
    Like,
    Literal,
    Not,
    Parameter,
    Select,
    SetOperation,
    Statement,
    SubqueryRef,
    TableRef,
    Unsupported,
    UnsupportedStatement,
    Update,
)

logger = logging.getLogger(__name__)

StatementLike = Union[Statement, ParsedStatement]


# ── Table context ────────────────────────────────────────────────────


@dataclass
class TableScope:
    """Table names and aliases visible to one statement branch."""

    tables: list[str] = field(default_factory=list)
    aliases: dict[str, str | None] = field(default_factory=dict)

    @property
    def primary(self) -> str | None:
        return self.tables[0] if self.tables else None

    def add_table(self, table: TableRef) -> None:
        self.tables.append(table.name)
        self.aliases.setdefault(table.name.lower(), table.name)
        if table.alias:
            self.aliases[table.alias.lower()] = table.name

    def resolve(self, column: Column) -> str | None:
        """
        Resolve the table a column belongs to.

        Qualified columns go through the alias map; a qualifier that is
        neither an alias nor a known table is taken to be a table name.
        Unqualified columns belong to the primary table.
        """
        if column.qualifier:
            key = column.qualifier.lower()
            if key in self.aliases:
                return self.aliases[key]
            return column.qualifier
        return self.primary


def _unwrap(statement: StatementLike) -> Statement:
    if isinstance(statement, ParsedStatement):
        return statement.statement
    return statement


def primary_table(statement: StatementLike) -> str | None:
    """The table a statement primarily reads or writes, if any."""
    statement = _unwrap(statement)
    if isinstance(statement, (Update, Delete)):
        return statement.table.name
    if isinstance(statement, SetOperation):
        return primary_table(statement.left)
    if isinstance(statement, Select):
        return scope_for(statement.from_items).primary
    return None


def scope_for(from_items: tuple[FromItem, ...], target: TableRef | None = None) -> TableScope:
    """Build the table scope for a target table plus FROM items."""
    scope = TableScope()
    if target is not None:
        scope.add_table(target)

    def visit(item: FromItem) -> None:
        if isinstance(item, TableRef):
            scope.add_table(item)
        elif isinstance(item, Join):
            visit(item.left)
            visit(item.right)
        elif isinstance(item, SubqueryRef) and item.alias:
            scope.aliases[item.alias.lower()] = primary_table(item.query)

    for item in from_items:
        visit(item)
    return scope


def _derived_tables(from_items: tuple[FromItem, ...]) -> list[Statement]:
    """Subqueries used as FROM / JOIN items, outermost first."""
    found: list[Statement] = []

    def visit(item: FromItem) -> None:
        if isinstance(item, SubqueryRef):
            found.append(item.query)
        elif isinstance(item, Join):
            visit(item.left)
            visit(item.right)

    for item in from_items:
        visit(item)
    return found


def _value_reference(*operands: Expression) -> object | None:
    """First bind parameter among the value-side operands."""
    for operand in operands:
        if isinstance(operand, Parameter):
            return operand
    return None


# ── WHERE extraction ─────────────────────────────────────────────────


class _WhereCollector:
    """Collects the leaf predicates of one statement branch."""

    def __init__(self, scope: TableScope, top_level_or: bool = False) -> None:
        self.scope = scope
        self.top_level_or = top_level_or
        self.conditions: list[WhereCondition] = []

    def add(
        self,
        operand: Expression,
        operator: str,
        in_or: bool,
        parameter: object | None = None,
    ) -> None:
        if not isinstance(operand, Column):
            return
        self.conditions.append(WhereCondition(
            table_name=self.scope.resolve(operand),
            column_name=operand.name,
            operator=operator,
            position=len(self.conditions),
            parameter=parameter,
            or_connected=in_or,
            top_level_or=self.top_level_or,
        ))

    @singledispatchmethod
    def visit(self, node: Expression, in_or: bool = False) -> None:
        logger.debug("Skipping unsupported expression %s", type(node).__name__)

    @visit.register(BoolOp)
    def _(self, node: BoolOp, in_or: bool = False) -> None:
        nested_or = in_or or node.op == "OR"
        for arg in node.args:
            self.visit(arg, nested_or)

    @visit.register(Comparison)
    def _(self, node: Comparison, in_or: bool = False) -> None:
        self.add(node.left, node.operator, in_or, _value_reference(node.right))

    @visit.register(Between)
    def _(self, node: Between, in_or: bool = False) -> None:
        operator = "NOT BETWEEN" if node.negated else "BETWEEN"
        self.add(node.operand, operator, in_or, _value_reference(node.low, node.high))

    @visit.register(InList)
    def _(self, node: InList, in_or: bool = False) -> None:
        operator = "NOT IN" if node.negated else "IN"
        self.add(node.operand, operator, in_or, _value_reference(*node.items))

    @visit.register(InSubquery)
    def _(self, node: InSubquery, in_or: bool = False) -> None:
        self.add(node.operand, "NOT IN" if node.negated else "IN", in_or)

    @visit.register(IsNull)
    def _(self, node: IsNull, in_or: bool = False) -> None:
        self.add(node.operand, "IS NOT NULL" if node.negated else "IS NULL", in_or)

    @visit.register(Like)
    def _(self, node: Like, in_or: bool = False) -> None:
        self.add(node.operand, node.operator, in_or, _value_reference(node.pattern))

    @visit.register(Not)
    @visit.register(Exists)
    @visit.register(Column)
    @visit.register(Parameter)
    @visit.register(Literal)
    @visit.register(Unsupported)
    def _(self, node: Expression, in_or: bool = False) -> None:
        pass


def _branch_where(where: Expression | None, scope: TableScope) -> list[WhereCondition]:
    if where is None:
        return []
    collector = _WhereCollector(scope, top_level_or=isinstance(where, BoolOp) and where.op == "OR")
    collector.visit(where)
    return collector.conditions


def extract_where_conditions(statement: StatementLike) -> list[WhereCondition]:
    """
    WHERE-clause conditions of every branch, concatenated.

    A branch that cannot be processed contributes nothing; the remaining
    branches are still returned.
    """
    statement = _unwrap(statement)
    conditions: list[WhereCondition] = []

    if isinstance(statement, SetOperation):
        conditions.extend(extract_where_conditions(statement.left))
        conditions.extend(extract_where_conditions(statement.right))
        return conditions

    try:
        if isinstance(statement, Select):
            conditions.extend(_branch_where(statement.where, scope_for(statement.from_items)))
            derived = _derived_tables(statement.from_items)
        elif isinstance(statement, Update):
            scope = scope_for(statement.from_items, target=statement.table)
            conditions.extend(_branch_where(statement.where, scope))
            derived = _derived_tables(statement.from_items)
        elif isinstance(statement, Delete):
            scope = scope_for(statement.using, target=statement.table)
            conditions.extend(_branch_where(statement.where, scope))
            derived = _derived_tables(statement.using)
        else:
            if isinstance(statement, UnsupportedStatement):
                logger.debug("No WHERE conditions for %s", statement.kind)
            return conditions
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning("Skipping malformed statement branch: %s", e)
        return conditions

    for query in derived:
        conditions.extend(extract_where_conditions(query))
    return conditions


# ── JOIN extraction ──────────────────────────────────────────────────


def _join_predicates(
    expression: Expression | None,
    scope: TableScope,
    out: list[JoinCondition],
) -> None:
    if isinstance(expression, BoolOp):
        for arg in expression.args:
            _join_predicates(arg, scope, out)
    elif isinstance(expression, Comparison):
        left, right = expression.left, expression.right
        if isinstance(left, Column) and isinstance(right, Column):
            out.append(JoinCondition(
                left_table=scope.resolve(left),
                left_column=left.name,
                right_table=scope.resolve(right),
                right_column=right.name,
                operator=expression.operator,
            ))


def _item_table(item: FromItem) -> str | None:
    if isinstance(item, TableRef):
        return item.name
    if isinstance(item, Join):
        return _item_table(item.right)
    return primary_table(item.query)


def _joins(from_items: tuple[FromItem, ...], scope: TableScope) -> list[JoinCondition]:
    found: list[JoinCondition] = []

    def visit(item: FromItem) -> None:
        if not isinstance(item, Join):
            return
        visit(item.left)
        visit(item.right)
        _join_predicates(item.on, scope, found)
        left_table, right_table = _item_table(item.left), _item_table(item.right)
        for column in item.using:
            found.append(JoinCondition(
                left_table=left_table,
                left_column=column,
                right_table=right_table,
                right_column=column,
            ))

    for item in from_items:
        visit(item)
    return found


def extract_join_conditions(statement: StatementLike) -> list[JoinCondition]:
    """JOIN ... ON / USING predicates of every branch, concatenated."""
    statement = _unwrap(statement)

    if isinstance(statement, SetOperation):
        return extract_join_conditions(statement.left) + extract_join_conditions(statement.right)

    if isinstance(statement, Select):
        from_items, target = statement.from_items, None
    elif isinstance(statement, Update):
        from_items, target = statement.from_items, statement.table
    elif isinstance(statement, Delete):
        from_items, target = statement.using, statement.table
    else:
        return []

    conditions = _joins(from_items, scope_for(from_items, target=target))
    for query in _derived_tables(from_items):
        conditions.extend(extract_join_conditions(query))
    return conditions


# ── Display ──────────────────────────────────────────────────────────


def extract_where_clause_text(statement: StatementLike) -> str | None:
    """
    WHERE text of the left-most branch, placeholders as written.

    ``SELECT * FROM t WHERE id = 1 UNION SELECT ...`` gives ``id = 1``.
    """
    statement = _unwrap(statement)
    if isinstance(statement, SetOperation):
        return extract_where_clause_text(statement.left)
    if isinstance(statement, (Select, Update, Delete)):
        return statement.where_sql
    return None
