"""
Schema index metadata consumed by the cardinality classifier.

A ``SchemaSnapshot`` maps table names (case-insensitively) to the ordered
index definitions that exist for that table: primary keys, unique
constraints, unique indexes and plain secondary indexes. It is produced by a
changelog loader (see ``indexsense.migrations``) or built directly in code:

    snapshot = SchemaSnapshot.from_mapping({
        "users": [
            IndexInfo(IndexKind.PRIMARY_KEY, "pk_users", ("id",)),
            IndexInfo(IndexKind.INDEX, "idx_users_status", ("status",)),
        ],
    })
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Mapping

UNNAMED_INDEX = "<unnamed>"


class IndexKind(str, Enum):
    """Kinds of index-like structures a table can carry."""

    PRIMARY_KEY = "PRIMARY_KEY"
    UNIQUE_CONSTRAINT = "UNIQUE_CONSTRAINT"
    UNIQUE_INDEX = "UNIQUE_INDEX"
    INDEX = "INDEX"

    @property
    def is_unique(self) -> bool:
        return self is not IndexKind.INDEX


@dataclass(frozen=True)
class IndexInfo:
    """A single index definition with its ordered column list."""

    kind: IndexKind
    name: str
    columns: tuple[str, ...]

    @property
    def leading_column(self) -> str | None:
        return self.columns[0] if self.columns else None

    def has_column(self, column: str) -> bool:
        """Case-insensitive membership test on the column list."""
        column = column.lower()
        return any(c.lower() == column for c in self.columns)

    def __str__(self) -> str:
        return f"{self.kind.value};{self.name};{','.join(self.columns)}"


@dataclass
class _TableEntry:
    name: str
    indexes: list[IndexInfo] = field(default_factory=list)


class SchemaSnapshot:
    """
    Table -> indexes map with case-insensitive table lookup.

    Tables and indexes keep declaration order. Duplicate index definitions
    for the same table are collapsed.
    """

    def __init__(self) -> None:
        self._tables: dict[str, _TableEntry] = {}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[IndexInfo]]) -> "SchemaSnapshot":
        snapshot = cls()
        for table, indexes in mapping.items():
            for index in indexes:
                snapshot.add(table, index)
        return snapshot

    # ── Queries ──────────────────────────────────────────────────────

    def indexes_for(self, table: str | None) -> tuple[IndexInfo, ...]:
        """Indexes declared for ``table``; empty when unknown."""
        if not table:
            return ()
        entry = self._tables.get(table.lower())
        return tuple(entry.indexes) if entry else ()

    def has_table(self, table: str | None) -> bool:
        return bool(table) and table.lower() in self._tables

    def tables(self) -> list[str]:
        """Table names with their original casing, in declaration order."""
        return [entry.name for entry in self._tables.values()]

    def items(self) -> Iterator[tuple[str, tuple[IndexInfo, ...]]]:
        for entry in self._tables.values():
            yield entry.name, tuple(entry.indexes)

    def __len__(self) -> int:
        return len(self._tables)

    def __contains__(self, table: object) -> bool:
        return isinstance(table, str) and self.has_table(table)

    # ── Mutation (used by loaders) ───────────────────────────────────

    def add(self, table: str, index: IndexInfo) -> None:
        entry = self._tables.get(table.lower())
        if entry is None:
            entry = self._tables[table.lower()] = _TableEntry(name=table)
        if index not in entry.indexes:
            entry.indexes.append(index)

    def remove_index(self, table: str, name: str) -> None:
        """Drop a named (unique) index from one table."""
        entry = self._tables.get(table.lower())
        if entry is None:
            return
        self._remove_where(
            entry,
            lambda i: i.kind in (IndexKind.INDEX, IndexKind.UNIQUE_INDEX)
            and i.name.lower() == name.lower(),
        )

    def remove_index_any_table(self, name: str) -> None:
        """Drop a named index from whichever tables declare it."""
        for table in list(self._tables):
            self.remove_index(table, name)

    def remove_primary_key(self, table: str, name: str | None = None) -> None:
        """Drop the primary key; by name when given, otherwise any."""
        entry = self._tables.get(table.lower())
        if entry is None:
            return
        self._remove_where(
            entry,
            lambda i: i.kind is IndexKind.PRIMARY_KEY
            and (not name or i.name.lower() == name.lower()),
        )

    def remove_unique_constraint(self, table: str, name: str | None) -> None:
        entry = self._tables.get(table.lower())
        if entry is None or not name:
            return
        self._remove_where(
            entry,
            lambda i: i.kind is IndexKind.UNIQUE_CONSTRAINT
            and i.name.lower() == name.lower(),
        )

    def _remove_where(self, entry: _TableEntry, predicate) -> None:  # type: ignore[no-untyped-def]
        entry.indexes = [i for i in entry.indexes if not predicate(i)]
        if not entry.indexes:
            del self._tables[entry.name.lower()]
