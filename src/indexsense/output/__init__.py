"""
Output rendering: Liquibase changesets and changelog documents.
"""

from indexsense.output.changesets import (
    COLUMN_NAME_TAG,
    INDEX_NAME_TAG,
    TABLE_NAME_TAG,
    ChangesetRenderer,
    Dialect,
    add_master_include,
    build_changelog_document,
    generate_index_name,
    sanitize,
)

__all__ = [
    "COLUMN_NAME_TAG",
    "INDEX_NAME_TAG",
    "TABLE_NAME_TAG",
    "ChangesetRenderer",
    "Dialect",
    "add_master_include",
    "build_changelog_document",
    "generate_index_name",
    "sanitize",
]
