"""
Generic SQL AST: a tagged union of frozen dataclasses.

Adapters translate a concrete parser's tree into these nodes, and the
condition extractor dispatches on the node type. Anything an adapter cannot
map becomes ``Unsupported`` / ``UnsupportedStatement`` instead of raising,
so one odd expression never hides the rest of a WHERE clause.

Only the shapes the analysis needs are modelled: predicates, boolean
connectors, column and parameter operands, FROM items and the
SELECT / set-operation / UPDATE / DELETE statement kinds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

# ── Operands ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Column:
    """A column reference, optionally qualified by a table name or alias."""

    name: str
    qualifier: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.qualifier}.{self.name}" if self.qualifier else self.name


@dataclass(frozen=True)
class Parameter:
    """
    A bind parameter.

    ``token`` is the placeholder as written in the source query
    (``?``, ``?1``, ``:email``). ``index`` is its 1-based ordinal
    position and ``name`` the named-placeholder name, when any.
    """

    token: str
    index: int | None = None
    name: str | None = None


@dataclass(frozen=True)
class Literal:
    """A constant, kept as SQL text."""

    text: str


# ── Predicates ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Comparison:
    """Binary comparison: ``=``, ``<>``, ``<``, ``<=``, ``>``, ``>=``."""

    operator: str
    left: "Expression"
    right: "Expression"


@dataclass(frozen=True)
class Between:
    operand: "Expression"
    low: "Expression"
    high: "Expression"
    negated: bool = False


@dataclass(frozen=True)
class InList:
    operand: "Expression"
    items: tuple["Expression", ...]
    negated: bool = False


@dataclass(frozen=True)
class InSubquery:
    """``operand IN (SELECT ...)``. The subquery is opaque to extraction."""

    operand: "Expression"
    query: "Statement"
    negated: bool = False


@dataclass(frozen=True)
class IsNull:
    operand: "Expression"
    negated: bool = False


@dataclass(frozen=True)
class Like:
    """Pattern match; ``operator`` is LIKE, NOT LIKE, ILIKE or NOT ILIKE."""

    operand: "Expression"
    pattern: "Expression"
    operator: str = "LIKE"


@dataclass(frozen=True)
class Exists:
    query: "Statement"
    negated: bool = False


# ── Connectors ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class BoolOp:
    """N-ary AND / OR."""

    op: str
    args: tuple["Expression", ...]


@dataclass(frozen=True)
class Not:
    arg: "Expression"


@dataclass(frozen=True)
class Unsupported:
    """An expression the adapter could not map (function call, CASE, ...)."""

    description: str


Expression = Union[
    Column,
    Parameter,
    Literal,
    Comparison,
    Between,
    InList,
    InSubquery,
    IsNull,
    Like,
    Exists,
    BoolOp,
    Not,
    Unsupported,
]


# ── FROM items ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class TableRef:
    name: str
    alias: str | None = None
    schema: str | None = None


@dataclass(frozen=True)
class SubqueryRef:
    query: "Statement"
    alias: str | None = None


@dataclass(frozen=True)
class Join:
    """
    A join between two FROM items.

    ``on`` holds the ON predicate; ``using`` the column list of a
    ``JOIN ... USING (...)`` clause.
    """

    left: "FromItem"
    right: "FromItem"
    kind: str = "INNER"
    on: Expression | None = None
    using: tuple[str, ...] = ()


FromItem = Union[TableRef, SubqueryRef, Join]


# ── Statements ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Select:
    from_items: tuple[FromItem, ...] = ()
    where: Expression | None = None
    where_sql: str | None = None


@dataclass(frozen=True)
class SetOperation:
    """UNION / INTERSECT / EXCEPT between two query branches."""

    op: str
    left: "Statement"
    right: "Statement"
    all: bool = False


@dataclass(frozen=True)
class Update:
    table: TableRef
    from_items: tuple[FromItem, ...] = ()
    where: Expression | None = None
    where_sql: str | None = None


@dataclass(frozen=True)
class Delete:
    table: TableRef
    using: tuple[FromItem, ...] = ()
    where: Expression | None = None
    where_sql: str | None = None


@dataclass(frozen=True)
class UnsupportedStatement:
    """INSERT, DDL and anything else with no WHERE clause to optimize."""

    kind: str


Statement = Union[Select, SetOperation, Update, Delete, UnsupportedStatement]
