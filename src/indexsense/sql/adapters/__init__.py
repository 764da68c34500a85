"""Parser adapters: concrete SQL parse trees -> generic AST."""

from indexsense.sql.adapters.base import ParsedStatement, StatementAdapter, parse_statement
from indexsense.sql.adapters.postgres import PostgresAdapter

__all__ = [
    "ParsedStatement",
    "PostgresAdapter",
    "StatementAdapter",
    "parse_statement",
]
