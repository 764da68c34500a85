"""
Liquibase changeset rendering for index suggestions.

Each create/drop action becomes one ``<changeSet>`` with:

- an idempotency guard (``<preConditions onFail="MARK_RAN">``)
- one ``<sql dbms="...">`` statement per target dialect, using the
  non-locking variant where the dialect has one (PostgreSQL
  ``CONCURRENTLY``, Oracle ``ONLINE``)
- a ``<rollback>`` block holding the inverse action

Blank table, column or index names render as ``<TABLE_NAME>``,
``<COLUMN_NAME>`` and ``<INDEX_NAME>`` so incomplete suggestions still show
up in the output for manual completion.

Example:
    renderer = ChangesetRenderer(author="dba")
    print(renderer.render_create("users", ["email"]))
"""

from __future__ import annotations

import logging
import re
import time
from enum import Enum
from pathlib import Path
from textwrap import indent
from typing import TYPE_CHECKING, Callable, Iterable, Sequence
from xml.sax.saxutils import escape

from indexsense.exceptions import MalformedKeyError, SchemaError

if TYPE_CHECKING:
    from indexsense.config import Config

logger = logging.getLogger(__name__)

TABLE_NAME_TAG = "<TABLE_NAME>"
COLUMN_NAME_TAG = "<COLUMN_NAME>"
INDEX_NAME_TAG = "<INDEX_NAME>"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_]")
_REPEATED_UNDERSCORES = re.compile(r"_+")
_PLACEHOLDER_TAGS = re.compile(r"(<TABLE_NAME>|<COLUMN_NAME>|<INDEX_NAME>)")


class Dialect(str, Enum):
    """Target databases, named as Liquibase ``dbms`` values."""

    POSTGRESQL = "postgresql"
    ORACLE = "oracle"
    MYSQL = "mysql"
    H2 = "h2"


DEFAULT_DIALECTS = (Dialect.POSTGRESQL, Dialect.ORACLE)


def sanitize(name: str | None) -> str:
    """Lowercase and reduce to ``[a-z0-9_]`` with single, inner underscores."""
    if not name:
        return ""
    cleaned = _UNSAFE_CHARS.sub("_", name.lower())
    return _REPEATED_UNDERSCORES.sub("_", cleaned).strip("_")


def xml_escape(value: str, attribute: bool = False) -> str:
    """Escape XML text or an attribute value; placeholder tokens stay literal."""
    entities = {'"': "&quot;"} if attribute else {}
    return "".join(
        part if _PLACEHOLDER_TAGS.fullmatch(part) else escape(part, entities)
        for part in _PLACEHOLDER_TAGS.split(value)
    )


def generate_index_name(table: str | None, columns: Sequence[str | None]) -> str:
    """``idx_<table>_<col1>_<col2>...``; ``<INDEX_NAME>`` when inputs are blank."""
    table_part = sanitize(table)
    column_parts = [sanitize(c) for c in columns]
    if not table_part or not column_parts or not all(column_parts):
        return INDEX_NAME_TAG
    return "_".join(["idx", table_part, *column_parts])


def _create_sql(dialect: Dialect, index: str, table: str, columns: str) -> str:
    if dialect is Dialect.POSTGRESQL:
        return f"CREATE INDEX CONCURRENTLY {index} ON {table} ({columns});"
    if dialect is Dialect.ORACLE:
        return f"CREATE INDEX {index} ON {table} ({columns}) ONLINE"
    if dialect is Dialect.MYSQL:
        return f"CREATE INDEX {index} ON {table} ({columns}) ALGORITHM=INPLACE LOCK=NONE;"
    return f"CREATE INDEX IF NOT EXISTS {index} ON {table} ({columns});"


def _drop_sql(dialect: Dialect, index: str, table: str | None) -> str:
    if dialect is Dialect.POSTGRESQL:
        return f"DROP INDEX CONCURRENTLY IF EXISTS {index};"
    if dialect is Dialect.ORACLE:
        return f"DROP INDEX {index}"
    if dialect is Dialect.MYSQL:
        return f"DROP INDEX {index} ON {table or TABLE_NAME_TAG};"
    return f"DROP INDEX IF EXISTS {index};"


class ChangesetRenderer:
    """
    Renders create/drop changesets.

    Changeset ids combine the index name with a nanosecond timestamp and
    are never repeated by one renderer, so reruns do not collide.
    """

    def __init__(
        self,
        author: str = "indexsense",
        dialects: Sequence[Dialect] = DEFAULT_DIALECTS,
        include_preconditions: bool = True,
        include_rollback: bool = True,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self.author = author
        self.dialects = tuple(dialects)
        self.include_preconditions = include_preconditions
        self.include_rollback = include_rollback
        self._clock = clock
        self._issued_ids: set[str] = set()

    @classmethod
    def from_config(cls, config: "Config") -> "ChangesetRenderer":
        return cls(
            author=config.author,
            dialects=config.dialects,
            include_preconditions=config.include_preconditions,
            include_rollback=config.include_rollback,
        )

    # ── Public API ───────────────────────────────────────────────────

    def render_create(self, table: str | None, columns: str | Sequence[str] | None) -> str:
        """Changeset creating an index on ``table (columns)``."""
        if isinstance(columns, str) or columns is None:
            columns = [columns] if columns else []
        column_list = [c.strip() for c in columns if c and c.strip()]
        table_text = table.strip() if table and table.strip() else TABLE_NAME_TAG
        index = generate_index_name(table, column_list)
        columns_text = ", ".join(column_list) or COLUMN_NAME_TAG

        lines = [self._open(index)]
        if self.include_preconditions:
            lines += [
                '  <preConditions onFail="MARK_RAN">',
                "    <not>",
                f'      <indexExists tableName="{xml_escape(table_text, True)}" '
                f'indexName="{xml_escape(index, True)}"/>',
                "    </not>",
                "  </preConditions>",
            ]
        lines += [self._sql(d, _create_sql(d, index, table_text, columns_text)) for d in self.dialects]
        if self.include_rollback:
            lines.append("  <rollback>")
            lines += [
                "  " + self._sql(d, _drop_sql(d, index, table_text)) for d in self.dialects
            ]
            lines.append("  </rollback>")
        lines.append("</changeSet>")
        return "\n".join(lines)

    def render_drop(
        self,
        index_name: str | None,
        table: str | None = None,
        columns: Sequence[str] | None = None,
    ) -> str:
        """
        Changeset dropping ``index_name``.

        The rollback re-creates the index when its table and columns are
        known; otherwise it is left as a note for manual recreation.
        """
        index = index_name.strip() if index_name and index_name.strip() else INDEX_NAME_TAG
        known = bool(table) and bool(columns)

        lines = [self._open(index, prefix="drop_")]
        if self.include_preconditions:
            lines += [
                '  <preConditions onFail="MARK_RAN">',
                f'    <indexExists indexName="{xml_escape(index, True)}"/>',
                "  </preConditions>",
            ]
        lines += [self._sql(d, _drop_sql(d, index, table)) for d in self.dialects]
        if self.include_rollback:
            lines.append("  <rollback>")
            if known:
                columns_text = ", ".join(columns or ())
                lines += [
                    "  " + self._sql(d, _create_sql(d, index, table or TABLE_NAME_TAG, columns_text))
                    for d in self.dialects
                ]
            else:
                lines.append(f"    <!-- definition of {index} unknown: recreate manually -->")
            lines.append("  </rollback>")
        lines.append("</changeSet>")
        return "\n".join(lines)

    def render_key(self, key: str) -> str:
        """Render a ``table|col1,col2`` suggestion key as a create changeset."""
        from indexsense.analyzer.index_advisor import SuggestionKey

        try:
            parsed = SuggestionKey.parse(key)
        except MalformedKeyError:
            table, _, rest = key.partition("|")
            return self.render_create(table, [c for c in rest.split(",") if c.strip()])
        return self.render_create(parsed.table, parsed.columns)

    # ── Helpers ──────────────────────────────────────────────────────

    def _open(self, index: str, prefix: str = "") -> str:
        changeset_id = self._changeset_id(prefix + (sanitize(index) or "index"))
        attributes = f'id="{changeset_id}" author="{xml_escape(self.author, True)}"'
        if Dialect.POSTGRESQL in self.dialects:
            attributes += ' runInTransaction="false"'
        return f"<changeSet {attributes}>"

    def _changeset_id(self, base: str) -> str:
        candidate = f"{base}_{self._clock()}"
        suffix = 1
        unique = candidate
        while unique in self._issued_ids:
            suffix += 1
            unique = f"{candidate}_{suffix}"
        self._issued_ids.add(unique)
        return unique

    @staticmethod
    def _sql(dialect: Dialect, statement: str) -> str:
        return f'  <sql dbms="{dialect.value}">{xml_escape(statement)}</sql>'


# ── Changelog documents ──────────────────────────────────────────────

_CHANGELOG_HEADER = """<?xml version="1.0" encoding="UTF-8"?>
<databaseChangeLog
    xmlns="http://www.liquibase.org/xml/ns/dbchangelog"
    xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
    xsi:schemaLocation="http://www.liquibase.org/xml/ns/dbchangelog http://www.liquibase.org/xml/ns/dbchangelog/dbchangelog-latest.xsd">
"""

_CHANGELOG_FOOTER = "</databaseChangeLog>\n"


def build_changelog_document(changesets: Iterable[str]) -> str:
    """Wrap rendered changesets in a ``<databaseChangeLog>`` document."""
    body = "\n\n".join(indent(c, "    ") for c in changesets)
    if body:
        body += "\n"
    return _CHANGELOG_HEADER + body + _CHANGELOG_FOOTER


def add_master_include(master_path: Path, include_file: str) -> bool:
    """
    Add ``<include file="..."/>`` to a master changelog.

    Returns False when the include is already present.

    Raises:
        SchemaError: The master file is missing or has no closing tag.
    """
    try:
        text = master_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SchemaError(f"Cannot read master changelog: {e}", path=str(master_path)) from e

    attribute = xml_escape(include_file, True)
    if f'file="{attribute}"' in text:
        logger.debug("%s already includes %s", master_path, include_file)
        return False

    closing = text.rfind("</databaseChangeLog>")
    if closing < 0:
        raise SchemaError("Master changelog has no </databaseChangeLog>", path=str(master_path))

    entry = f'    <include file="{attribute}"/>\n'
    master_path.write_text(text[:closing] + entry + text[closing:], encoding="utf-8")
    logger.info("Added %s to %s", include_file, master_path)
    return True
