"""
PostgreSQL adapter: pglast parse tree -> generic AST.

Uses pglast (libpg_query, PostgreSQL's actual parser). Repository-style
placeholders are rewritten to ``$n`` first, see
``indexsense.sql.placeholders``.

pglast folds unquoted identifiers to lowercase; column and table names are
recovered from the source text via node locations so that display casing
survives.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pglast import ast, parse_sql
from pglast.parser import ParseError as PgParseError
from pglast.stream import RawStream

from indexsense.exceptions import ParseError
from indexsense.sql.adapters.base import ParsedStatement, StatementAdapter
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
    Select,
    SetOperation,
    Statement,
    SubqueryRef,
    TableRef,
    Unsupported,
    UnsupportedStatement,
    Update,
)
from indexsense.sql.placeholders import NormalizedSQL, normalize_placeholders

logger = logging.getLogger(__name__)

_COMPARISON_OPS = frozenset({"=", "<>", "<", "<=", ">", ">="})

_SET_OPS = {
    "SETOP_UNION": "UNION",
    "SETOP_INTERSECT": "INTERSECT",
    "SETOP_EXCEPT": "EXCEPT",
}

_JOIN_KINDS = {
    "JOIN_INNER": "INNER",
    "JOIN_LEFT": "LEFT",
    "JOIN_RIGHT": "RIGHT",
    "JOIN_FULL": "FULL",
}

_BETWEEN_KINDS = frozenset({
    "AEXPR_BETWEEN",
    "AEXPR_NOT_BETWEEN",
    "AEXPR_BETWEEN_SYM",
    "AEXPR_NOT_BETWEEN_SYM",
})

_IDENT = r'(?:"(?:[^"]|"")+"|[A-Za-z_][\w$]*)'
_IDENT_RE = re.compile(_IDENT)
_IDENT_CHAIN_RE = re.compile(rf"{_IDENT}(?:\s*\.\s*{_IDENT})*")


def _enum_name(value: Any) -> str:
    """Name of a pglast enum member (tolerates plain ints/strings)."""
    return getattr(value, "name", str(value))


def _operator_name(name: Any) -> str:
    """Join an A_Expr ``name`` list (``(String(sval='='),)``) into text."""
    if not name:
        return ""
    return ".".join(getattr(part, "sval", str(part)) for part in name)


def _unquote(identifier: str) -> str:
    if identifier.startswith('"') and identifier.endswith('"'):
        return identifier[1:-1].replace('""', '"')
    return identifier


def _fold_not(inner: Expression) -> Expression:
    """Push a NOT into predicates that carry their own negation."""
    if isinstance(inner, InSubquery):
        return InSubquery(inner.operand, inner.query, negated=not inner.negated)
    if isinstance(inner, InList):
        return InList(inner.operand, inner.items, negated=not inner.negated)
    if isinstance(inner, Between):
        return Between(inner.operand, inner.low, inner.high, negated=not inner.negated)
    if isinstance(inner, IsNull):
        return IsNull(inner.operand, negated=not inner.negated)
    if isinstance(inner, Exists):
        return Exists(inner.query, negated=not inner.negated)
    return Not(inner)


class _Converter:
    """Translates one parsed statement; holds the source for location lookups."""

    def __init__(self, normalized: NormalizedSQL) -> None:
        self.normalized = normalized
        self._source = normalized.sql.encode("utf-8")

    # ── Statements ───────────────────────────────────────────────────

    def statement(self, node: Any) -> Statement:
        try:
            if isinstance(node, ast.SelectStmt):
                return self._select(node)
            if isinstance(node, ast.UpdateStmt):
                return Update(
                    table=self._table(node.relation),
                    from_items=self._from_items(node.fromClause),
                    where=self._where(node.whereClause),
                    where_sql=self._render_where(node.whereClause),
                )
            if isinstance(node, ast.DeleteStmt):
                return Delete(
                    table=self._table(node.relation),
                    using=self._from_items(node.usingClause),
                    where=self._where(node.whereClause),
                    where_sql=self._render_where(node.whereClause),
                )
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("Could not convert %s: %s", type(node).__name__, e)
            return UnsupportedStatement(f"malformed {type(node).__name__}")
        return UnsupportedStatement(type(node).__name__)

    def _select(self, node: Any) -> Statement:
        if node.larg is not None and node.rarg is not None:
            return SetOperation(
                op=_SET_OPS.get(_enum_name(node.op), "UNION"),
                left=self.statement(node.larg),
                right=self.statement(node.rarg),
                all=bool(node.all),
            )
        if node.valuesLists:
            return UnsupportedStatement("VALUES")
        return Select(
            from_items=self._from_items(node.fromClause),
            where=self._where(node.whereClause),
            where_sql=self._render_where(node.whereClause),
        )

    # ── FROM items ───────────────────────────────────────────────────

    def _from_items(self, nodes: Any) -> tuple[FromItem, ...]:
        items = []
        for node in nodes or ():
            item = self._from_item(node)
            if item is not None:
                items.append(item)
        return tuple(items)

    def _from_item(self, node: Any) -> FromItem | None:
        if isinstance(node, ast.RangeVar):
            return self._table(node)
        if isinstance(node, ast.JoinExpr):
            left = self._from_item(node.larg)
            right = self._from_item(node.rarg)
            if left is None or right is None:
                return left or right
            using = tuple(
                part.sval for part in node.usingClause or () if isinstance(part, ast.String)
            )
            return Join(
                left=left,
                right=right,
                kind=_JOIN_KINDS.get(_enum_name(node.jointype), "INNER"),
                on=self.expression(node.quals) if node.quals is not None else None,
                using=using,
            )
        if isinstance(node, ast.RangeSubselect):
            alias = node.alias.aliasname if node.alias is not None else None
            return SubqueryRef(query=self.statement(node.subquery), alias=alias)
        return None

    def _table(self, node: Any) -> TableRef:
        parts = [p for p in (node.schemaname, node.relname) if p]
        parts = self._source_case(parts, getattr(node, "location", None))
        alias = node.alias.aliasname if node.alias is not None else None
        return TableRef(
            name=parts[-1],
            alias=alias,
            schema=parts[-2] if len(parts) > 1 else None,
        )

    # ── Expressions ──────────────────────────────────────────────────

    def _where(self, node: Any) -> Expression | None:
        return self.expression(node) if node is not None else None

    def expression(self, node: Any) -> Expression:
        if isinstance(node, ast.BoolExpr):
            kind = _enum_name(node.boolop)
            args = tuple(self.expression(arg) for arg in node.args or ())
            if kind == "NOT_EXPR":
                return _fold_not(args[0]) if args else Unsupported("NOT")
            return BoolOp(op="AND" if kind == "AND_EXPR" else "OR", args=args)
        if isinstance(node, ast.A_Expr):
            return self._a_expr(node)
        if isinstance(node, ast.NullTest):
            return IsNull(
                self.expression(node.arg),
                negated=_enum_name(node.nulltesttype) == "IS_NOT_NULL",
            )
        if isinstance(node, ast.SubLink):
            return self._sublink(node)
        if isinstance(node, ast.ColumnRef):
            return self._column(node)
        if isinstance(node, ast.ParamRef):
            return self.normalized.parameter(node.number)
        if isinstance(node, ast.TypeCast):
            return self.expression(node.arg)
        if isinstance(node, ast.A_Const):
            return Literal(self._render(node) or "NULL")
        return Unsupported(type(node).__name__)

    def _a_expr(self, node: Any) -> Expression:
        kind = _enum_name(node.kind)
        op = _operator_name(node.name)
        left = self.expression(node.lexpr) if node.lexpr is not None else Unsupported("prefix")

        if kind == "AEXPR_OP":
            if op == "!=":
                op = "<>"
            if op in _COMPARISON_OPS:
                return Comparison(op, left, self.expression(node.rexpr))
            return Unsupported(f"operator {op}")

        if kind == "AEXPR_IN":
            items = node.rexpr if isinstance(node.rexpr, (list, tuple)) else (node.rexpr,)
            return InList(
                left,
                tuple(self.expression(item) for item in items),
                negated=op == "<>",
            )

        if kind in _BETWEEN_KINDS:
            low, high = node.rexpr
            return Between(
                left,
                self.expression(low),
                self.expression(high),
                negated="NOT" in kind,
            )

        if kind in ("AEXPR_LIKE", "AEXPR_ILIKE"):
            base = "ILIKE" if kind == "AEXPR_ILIKE" else "LIKE"
            operator = f"NOT {base}" if op.startswith("!") else base
            return Like(left, self.expression(node.rexpr), operator=operator)

        return Unsupported(kind)

    def _sublink(self, node: Any) -> Expression:
        kind = _enum_name(node.subLinkType)
        if kind == "EXISTS_SUBLINK":
            return Exists(self.statement(node.subselect))
        if kind == "ANY_SUBLINK" and node.testexpr is not None:
            op = _operator_name(node.operName) or "="
            if op == "=":
                return InSubquery(self.expression(node.testexpr), self.statement(node.subselect))
        return Unsupported(f"subquery {kind}")

    def _column(self, node: Any) -> Expression:
        fields = node.fields or ()
        if not fields or not isinstance(fields[-1], ast.String):
            return Unsupported("star")
        parts = [f.sval for f in fields if isinstance(f, ast.String)]
        parts = self._source_case(parts, getattr(node, "location", None))
        return Column(name=parts[-1], qualifier=parts[-2] if len(parts) > 1 else None)

    # ── Source text helpers ──────────────────────────────────────────

    def _source_case(self, parts: list[str], location: int | None) -> list[str]:
        """Return ``parts`` with the casing used in the source text."""
        if location is None or location < 0:
            return parts
        text = self._source[location:location + 512].decode("utf-8", "replace")
        match = _IDENT_CHAIN_RE.match(text)
        if match is None:
            return parts
        found = [_unquote(p) for p in _IDENT_RE.findall(match.group(0))]
        if len(found) != len(parts):
            return parts
        if any(f.lower() != p.lower() for f, p in zip(found, parts)):
            return parts
        return found

    def _render(self, node: Any) -> str | None:
        try:
            return RawStream()(node)
        except Exception as e:
            logger.debug("Could not render %s: %s", type(node).__name__, e)
            return None

    def _render_where(self, node: Any) -> str | None:
        if node is None:
            return None
        text = self._render(node)
        return self.normalized.restore(text) if text is not None else None


class PostgresAdapter(StatementAdapter):
    """Parses PostgreSQL (and most ANSI) SQL with pglast."""

    dialect = "postgresql"

    def parse(self, sql: str) -> ParsedStatement:
        if not sql or not sql.strip():
            raise ParseError("Empty SQL statement", source=sql)

        normalized = normalize_placeholders(sql)
        try:
            tree = parse_sql(normalized.sql)
        except PgParseError as e:
            logger.warning("pglast parse failed: %s", e)
            raise ParseError(f"Cannot parse SQL: {e}", source=sql) from e

        if not tree:
            raise ParseError("No statement found", source=sql)
        if len(tree) > 1:
            logger.debug("Ignoring %d trailing statement(s)", len(tree) - 1)

        converter = _Converter(normalized)
        return ParsedStatement(
            statement=converter.statement(tree[0].stmt),
            source=sql,
            normalized=normalized,
        )
