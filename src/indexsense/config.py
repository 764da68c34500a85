"""
Configuration system for IndexSense.

Environment variables are the primary config source, with an optional
JSON/YAML config file for local development. CLI flags are layered on top
by the driver via ``Config.model_copy(update=...)``.

Usage:
    from indexsense.config import get_config

    config = get_config()
    if config.is_low_cardinality("users", "status"):
        ...
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from indexsense.exceptions import ConfigurationError
from indexsense.output.changesets import Dialect

logger = logging.getLogger(__name__)

ENV_PREFIX = "INDEXSENSE_"


def parse_column_list(value: str | None) -> frozenset[str]:
    """
    Parse a comma separated column list into a lowercase set.

    Entries may be bare column names or ``table.column``. Blank entries
    are dropped.
    """
    if not value:
        return frozenset()
    return frozenset(
        part.strip().lower() for part in value.split(",") if part.strip()
    )


class Config(BaseModel):
    """
    IndexSense configuration.

    One instance drives one analysis run. Frozen so a session can hold on
    to it without worrying about mutation between queries.
    """

    model_config = ConfigDict(frozen=True)

    # Cardinality overrides (``column`` or ``table.column``, lowercase)
    low_cardinality_columns: frozenset[str] = Field(
        default_factory=frozenset,
        description="Columns forced to LOW cardinality",
    )
    high_cardinality_columns: frozenset[str] = Field(
        default_factory=frozenset,
        description="Columns forced to HIGH cardinality (wins over LOW)",
    )

    # Driver behavior
    quiet: bool = Field(
        default=False,
        description="Only print queries that need attention and the summary",
    )
    skip_classes: tuple[str, ...] = Field(
        default=(),
        description="Repository classes (simple or qualified name) to skip",
    )

    # Changeset rendering
    author: str = Field(
        default="indexsense",
        description="Author attribute written on generated changesets",
    )
    dialects: tuple[Dialect, ...] = Field(
        default=(Dialect.POSTGRESQL, Dialect.ORACLE),
        description="Target dialects rendered for every changeset",
    )
    include_preconditions: bool = Field(
        default=True,
        description="Emit idempotency preconditions",
    )
    include_rollback: bool = Field(
        default=True,
        description="Emit rollback blocks",
    )

    # Exit status: fail when both thresholds are reached
    fail_on_high: int = Field(
        default=1,
        description="Minimum HIGH severity issues for a failing exit code",
    )
    fail_on_medium: int = Field(
        default=10,
        description="Minimum MEDIUM severity issues for a failing exit code",
    )

    def is_low_cardinality(self, table: str | None, column: str) -> bool:
        """Check whether the user forced ``column`` to LOW."""
        return _matches(self.low_cardinality_columns, table, column)

    def is_high_cardinality(self, table: str | None, column: str) -> bool:
        """Check whether the user forced ``column`` to HIGH."""
        return _matches(self.high_cardinality_columns, table, column)

    def should_skip_class(self, repository_class: str | None) -> bool:
        """Check if a repository class was excluded from analysis."""
        if not repository_class or not self.skip_classes:
            return False
        simple = repository_class.rsplit(".", 1)[-1]
        return any(
            name == repository_class or name == simple
            for name in self.skip_classes
        )


def _matches(entries: frozenset[str], table: str | None, column: str) -> bool:
    if not entries or not column:
        return False
    column = column.lower()
    if column in entries:
        return True
    return bool(table) and f"{table.lower()}.{column}" in entries


def _parse_env_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_env_int(value: str | None, default: int) -> int:
    """Parse integer from environment variable."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_dialects(value: str, config_key: str = "dialects") -> tuple[Dialect, ...]:
    """Parse a comma separated dialect list such as ``postgresql,oracle``."""
    dialects: list[Dialect] = []
    for part in value.split(","):
        name = part.strip().lower()
        if not name:
            continue
        try:
            dialect = Dialect(name)
        except ValueError:
            valid = ", ".join(d.value for d in Dialect)
            raise ConfigurationError(
                f"Unknown dialect '{name}' (expected one of: {valid})",
                config_key=config_key,
            ) from None
        if dialect not in dialects:
            dialects.append(dialect)
    if not dialects:
        raise ConfigurationError("At least one dialect is required", config_key=config_key)
    return tuple(dialects)


def load_config_from_env() -> Config:
    """
    Load configuration from environment variables.

    Examples:
    - INDEXSENSE_LOW_CARDINALITY=status,orders.region
    - INDEXSENSE_HIGH_CARDINALITY=email
    - INDEXSENSE_QUIET=true
    - INDEXSENSE_SKIP_CLASSES=LegacyRepository,AuditRepository
    - INDEXSENSE_DIALECTS=postgresql,oracle
    - INDEXSENSE_FAIL_ON_MEDIUM=5
    """
    env = os.environ

    config_kwargs: dict[str, Any] = {
        "low_cardinality_columns": parse_column_list(env.get(f"{ENV_PREFIX}LOW_CARDINALITY")),
        "high_cardinality_columns": parse_column_list(env.get(f"{ENV_PREFIX}HIGH_CARDINALITY")),
        "quiet": _parse_env_bool(env.get(f"{ENV_PREFIX}QUIET"), False),
        "include_preconditions": _parse_env_bool(env.get(f"{ENV_PREFIX}PRECONDITIONS"), True),
        "include_rollback": _parse_env_bool(env.get(f"{ENV_PREFIX}ROLLBACK"), True),
        "fail_on_high": _parse_env_int(env.get(f"{ENV_PREFIX}FAIL_ON_HIGH"), 1),
        "fail_on_medium": _parse_env_int(env.get(f"{ENV_PREFIX}FAIL_ON_MEDIUM"), 10),
    }

    skip = env.get(f"{ENV_PREFIX}SKIP_CLASSES")
    if skip:
        config_kwargs["skip_classes"] = tuple(
            name.strip() for name in skip.split(",") if name.strip()
        )

    author = env.get(f"{ENV_PREFIX}AUTHOR")
    if author:
        config_kwargs["author"] = author

    dialects = env.get(f"{ENV_PREFIX}DIALECTS")
    if dialects:
        config_kwargs["dialects"] = parse_dialects(dialects, f"{ENV_PREFIX}DIALECTS")

    return Config(**config_kwargs)


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON or YAML file.

    Falls back to environment variables when the file is missing or
    unreadable.
    """
    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        return Config(**(data or {}))
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Failed to load config from %s: %s", path, e)
        return load_config_from_env()


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the process configuration.

    Loads from:
    1. INDEXSENSE_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Sessions receive their Config explicitly; this accessor is only a
    convenience for drivers.
    """
    config_file = os.environ.get(f"{ENV_PREFIX}CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
