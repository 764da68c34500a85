"""
Liquibase changelog loading.

Reads an XML changelog (following ``<include>`` and ``<includeAll>``) and
replays its index-related changes into a ``SchemaSnapshot``:

- createIndex, addPrimaryKey, addUniqueConstraint
- createTable / addColumn column constraints (primaryKey, unique)
- dropIndex, dropPrimaryKey, dropUniqueConstraint
- raw ``<sql>`` / ``<sqlFile>`` bodies containing CREATE [UNIQUE] INDEX or
  DROP INDEX statements

Usage:
    from indexsense.migrations import load_changelog

    snapshot = load_changelog("src/main/resources/db/changelog/db.changelog-master.xml")
    for table, indexes in snapshot.items():
        print(table, [str(i) for i in indexes])
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path

import sqlparse

from indexsense.exceptions import SchemaError
from indexsense.schema import UNNAMED_INDEX, IndexInfo, IndexKind, SchemaSnapshot

logger = logging.getLogger(__name__)


# ── SQL patterns ───────────────────────────────────────────────────────

_NAME = r"[\w\"`\[\].]+"

CREATE_INDEX_PATTERN = re.compile(
    r"^\s*CREATE\s+(UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+|ONLINE\s+|IF\s+NOT\s+EXISTS\s+)*"
    rf"({_NAME})\s+ON\s+(?:ONLY\s+)?({_NAME})",
    re.IGNORECASE | re.DOTALL,
)

DROP_INDEX_PATTERN = re.compile(
    r"^\s*DROP\s+INDEX\s+(?:CONCURRENTLY\s+|ONLINE\s+|IF\s+EXISTS\s+)*"
    rf"({_NAME})(?:\s+ON\s+({_NAME}))?",
    re.IGNORECASE | re.DOTALL,
)

_LEADING_COMMENTS = re.compile(r"^(?:\s*(?:--[^\n]*(?:\n|$)|/\*.*?\*/))+", re.DOTALL)

_IDENTIFIER = r'"[^"]+"|`[^`]+`|\[[^\]]+\]|[A-Za-z0-9_]+'

SIMPLE_COLUMN_PATTERN = re.compile(
    rf"^\s*((?:{_IDENTIFIER})(?:\s*\.\s*(?:{_IDENTIFIER}))*)\s*"
    r"(?:\bASC\b|\bDESC\b)?"
    r"(?:\s+\bNULLS\b\s+\w+)?"
    r"(?:\s+\bCOLLATE\b\s+\S+)?\s*$",
    re.IGNORECASE | re.DOTALL,
)


def normalize_identifier(name: str | None) -> str:
    """Strip quoting and any schema/table qualifier: ``"public"."Users"`` -> ``Users``."""
    if not name:
        return ""
    last = re.split(r"\s*\.\s*(?=(?:[^\"]*\"[^\"]*\")*[^\"]*$)", name.strip())[-1]
    if len(last) >= 2 and last[0] in "\"`[" and last[-1] in "\"`]":
        last = last[1:-1]
    return last.strip()


def _split_top_level(text: str) -> list[str]:
    """Split on commas outside parentheses and quotes."""
    parts: list[str] = []
    depth = 0
    quote = ""
    current: list[str] = []
    for ch in text:
        if quote:
            if ch == quote:
                quote = ""
        elif ch in "'\"`":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _column_list_after(statement: str, start: int) -> list[str] | None:
    """Columns of the first parenthesized list at or after ``start``."""
    open_at = statement.find("(", start)
    if open_at < 0:
        return None
    depth = 0
    for pos in range(open_at, len(statement)):
        if statement[pos] == "(":
            depth += 1
        elif statement[pos] == ")":
            depth -= 1
            if depth == 0:
                inner = statement[open_at + 1:pos]
                columns = []
                for item in _split_top_level(inner):
                    match = SIMPLE_COLUMN_PATTERN.match(item)
                    if match:
                        columns.append(normalize_identifier(match.group(1)))
                    else:
                        logger.debug("Ignoring expression index element %r", item)
                return columns
    return None


def split_sql_statements(sql: str) -> list[str]:
    """Comment-free statements of a SQL body."""
    cleaned = sqlparse.format(sql, strip_comments=True)
    statements = []
    for statement in sqlparse.split(cleaned):
        statement = _LEADING_COMMENTS.sub("", statement).strip().rstrip(";").strip()
        if statement:
            statements.append(statement)
    return statements


def _split_columns(csv: str | None) -> tuple[str, ...]:
    if not csv:
        return ()
    return tuple(c.strip() for c in csv.split(",") if c.strip())


def _is_true(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def _local(tag: str) -> str:
    """Element tag without its XML namespace."""
    return tag.rsplit("}", 1)[-1]


# ── Reader ─────────────────────────────────────────────────────────────


class ChangelogReader:
    """
    Replays Liquibase changes into a snapshot.

    Includes are resolved relative to the including file first, then
    relative to each parent directory (Spring projects resolve includes
    against ``src/main/resources``). A file is read at most once.
    """

    def __init__(self, snapshot: SchemaSnapshot | None = None) -> None:
        self.snapshot = snapshot if snapshot is not None else SchemaSnapshot()
        self._visited: set[Path] = set()

    def read(self, path: Path) -> SchemaSnapshot:
        path = path.resolve()
        if path in self._visited:
            logger.debug("Changelog %s already read", path)
            return self.snapshot
        self._visited.add(path)

        try:
            root = ET.parse(path).getroot()
        except FileNotFoundError as e:
            raise SchemaError(f"Changelog not found: {path}", path=str(path)) from e
        except ET.ParseError as e:
            raise SchemaError(f"Invalid changelog XML: {e}", path=str(path)) from e
        except OSError as e:
            raise SchemaError(f"Cannot read changelog: {e}", path=str(path)) from e

        for element in root:
            tag = _local(element.tag)
            if tag == "include":
                self._include(element, path)
            elif tag == "includeAll":
                self._include_all(element, path)
            elif tag == "changeSet":
                for change in element:
                    self.apply(change, path)
        return self.snapshot

    # ── Includes ─────────────────────────────────────────────────────

    def _resolve(self, name: str, current: Path, relative: bool) -> Path | None:
        candidates = [current.parent / name]
        if not relative:
            candidates += [ancestor / name for ancestor in current.parents]
        for candidate in candidates:
            if candidate.exists():
                return candidate
        return None

    def _include(self, element: ET.Element, current: Path) -> None:
        name = element.get("file")
        if not name:
            return
        target = self._resolve(name, current, _is_true(element.get("relativeToChangelogFile")))
        if target is None:
            logger.warning("Included changelog %s not found (from %s)", name, current)
            return
        self.read(target)

    def _include_all(self, element: ET.Element, current: Path) -> None:
        name = element.get("path")
        if not name:
            return
        directory = self._resolve(name, current, _is_true(element.get("relativeToChangelogFile")))
        if directory is None or not directory.is_dir():
            logger.warning("includeAll path %s not found (from %s)", name, current)
            return
        for child in sorted(directory.glob("*.xml")):
            self.read(child)

    # ── Changes ──────────────────────────────────────────────────────

    def apply(self, change: ET.Element, current: Path) -> None:
        """Apply one change element; unknown change types are ignored."""
        tag = _local(change.tag)
        table = change.get("tableName")

        if tag == "createIndex":
            self._create_index(change, table)
        elif tag == "addPrimaryKey":
            self._add_constraint(table, change.get("columnNames"),
                                 IndexKind.PRIMARY_KEY, change.get("constraintName"))
        elif tag == "addUniqueConstraint":
            self._add_constraint(table, change.get("columnNames"),
                                 IndexKind.UNIQUE_CONSTRAINT, change.get("constraintName"))
        elif tag == "createTable":
            self._create_table(change, table)
        elif tag == "addColumn":
            self._add_columns(change, table)
        elif tag == "dropIndex":
            self._drop_index(change.get("indexName"), table)
        elif tag == "dropPrimaryKey":
            if table:
                self.snapshot.remove_primary_key(table, change.get("constraintName"))
        elif tag == "dropUniqueConstraint":
            if table:
                self.snapshot.remove_unique_constraint(table, change.get("constraintName"))
        elif tag == "sql":
            self.apply_sql(change.text or "")
        elif tag == "sqlFile":
            self._sql_file(change, current)

    def _create_index(self, change: ET.Element, table: str | None) -> None:
        columns = tuple(
            c.get("name", "").strip()
            for c in change
            if _local(c.tag) == "column" and c.get("name", "").strip()
        )
        if not table or not columns:
            return
        kind = IndexKind.UNIQUE_INDEX if _is_true(change.get("unique")) else IndexKind.INDEX
        self.snapshot.add(table, IndexInfo(kind, change.get("indexName") or UNNAMED_INDEX, columns))

    def _add_constraint(
        self,
        table: str | None,
        column_names: str | None,
        kind: IndexKind,
        name: str | None,
    ) -> None:
        columns = _split_columns(column_names)
        if not table or not columns:
            return
        self.snapshot.add(table, IndexInfo(kind, name or UNNAMED_INDEX, columns))

    def _create_table(self, change: ET.Element, table: str | None) -> None:
        if not table:
            return
        pk_columns: list[str] = []
        pk_name: str | None = None
        for column in change:
            if _local(column.tag) != "column":
                continue
            name = column.get("name")
            constraints = self._constraints(column)
            if not name or constraints is None:
                continue
            if _is_true(constraints.get("primaryKey")):
                pk_columns.append(name)
                pk_name = constraints.get("primaryKeyName") or pk_name
            if _is_true(constraints.get("unique")):
                self.snapshot.add(table, IndexInfo(
                    IndexKind.UNIQUE_CONSTRAINT,
                    constraints.get("uniqueConstraintName") or UNNAMED_INDEX,
                    (name,),
                ))
        if pk_columns:
            self.snapshot.add(table, IndexInfo(
                IndexKind.PRIMARY_KEY, pk_name or UNNAMED_INDEX, tuple(pk_columns)
            ))

    def _add_columns(self, change: ET.Element, table: str | None) -> None:
        if not table:
            return
        for column in change:
            if _local(column.tag) != "column":
                continue
            name = column.get("name")
            constraints = self._constraints(column)
            if not name or constraints is None:
                continue
            if _is_true(constraints.get("primaryKey")):
                self.snapshot.add(table, IndexInfo(
                    IndexKind.PRIMARY_KEY,
                    constraints.get("primaryKeyName") or UNNAMED_INDEX,
                    (name,),
                ))
            if _is_true(constraints.get("unique")):
                self.snapshot.add(table, IndexInfo(
                    IndexKind.UNIQUE_CONSTRAINT,
                    constraints.get("uniqueConstraintName") or UNNAMED_INDEX,
                    (name,),
                ))

    @staticmethod
    def _constraints(column: ET.Element) -> ET.Element | None:
        for child in column:
            if _local(child.tag) == "constraints":
                return child
        return None

    def _drop_index(self, name: str | None, table: str | None) -> None:
        if not name:
            return
        if table:
            self.snapshot.remove_index(table, name)
        else:
            self.snapshot.remove_index_any_table(name)

    def _sql_file(self, change: ET.Element, current: Path) -> None:
        name = change.get("path")
        if not name:
            return
        target = self._resolve(name, current, _is_true(change.get("relativeToChangelogFile")))
        if target is None:
            logger.warning("sqlFile %s not found (from %s)", name, current)
            return
        try:
            self.apply_sql(target.read_text(encoding=change.get("encoding") or "utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read sqlFile %s: %s", target, e)

    def apply_sql(self, sql: str) -> None:
        """Apply CREATE INDEX / DROP INDEX statements found in raw SQL."""
        if not sql.strip():
            return
        for statement in split_sql_statements(sql):
            match = CREATE_INDEX_PATTERN.match(statement)
            if match:
                table = normalize_identifier(match.group(3))
                columns = _column_list_after(statement, match.end())
                if table and columns:
                    kind = IndexKind.UNIQUE_INDEX if match.group(1) else IndexKind.INDEX
                    name = normalize_identifier(match.group(2)) or UNNAMED_INDEX
                    self.snapshot.add(table, IndexInfo(kind, name, tuple(columns)))
                continue
            match = DROP_INDEX_PATTERN.match(statement)
            if match:
                self._drop_index(
                    normalize_identifier(match.group(1)),
                    normalize_identifier(match.group(2)) or None,
                )


def load_changelog(path: Path | str) -> SchemaSnapshot:
    """
    Load index metadata from a Liquibase XML changelog.

    Raises:
        SchemaError: The file is missing or is not valid XML.
    """
    return ChangelogReader().read(Path(path))
