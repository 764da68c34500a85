"""
Generic SQL layer: AST nodes, placeholder handling and parser adapters.
"""

from indexsense.sql.adapters import ParsedStatement, PostgresAdapter, parse_statement
from indexsense.sql.placeholders import NormalizedSQL, normalize_placeholders

__all__ = [
    "NormalizedSQL",
    "ParsedStatement",
    "PostgresAdapter",
    "normalize_placeholders",
    "parse_statement",
]
