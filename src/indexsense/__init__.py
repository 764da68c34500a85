"""IndexSense - WHERE-predicate ordering and index recommendations for repository queries."""

__version__ = "0.1.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from indexsense.exceptions import (
    IndexSenseError,
    AnalyzerError,
    ConfigurationError,
    ParseError,
    MalformedKeyError,
    SchemaError,
    AdvisoryError,
)

from indexsense.schema import IndexInfo, IndexKind, SchemaSnapshot
from indexsense.analyzer import (
    CardinalityClassifier,
    CardinalityLevel,
    JoinCondition,
    OptimizationIssue,
    RecommendationAccumulator,
    ReorderingAnalyzer,
    Severity,
    WhereCondition,
    extract_join_conditions,
    extract_where_clause_text,
    extract_where_conditions,
)
from indexsense.config import Config, get_config, reset_config
from indexsense.engine import AnalysisSession, QueryAnalysis, QueryParameter, RepositoryQuery
from indexsense.migrations import load_changelog
from indexsense.output import ChangesetRenderer, Dialect
from indexsense.sql import parse_statement

__all__ = [
    "__version__",
    # Exceptions
    "IndexSenseError",
    "AnalyzerError",
    "ConfigurationError",
    "ParseError",
    "MalformedKeyError",
    "SchemaError",
    "AdvisoryError",
    # Schema
    "IndexInfo",
    "IndexKind",
    "SchemaSnapshot",
    "load_changelog",
    # Analysis
    "CardinalityClassifier",
    "CardinalityLevel",
    "JoinCondition",
    "OptimizationIssue",
    "RecommendationAccumulator",
    "ReorderingAnalyzer",
    "Severity",
    "WhereCondition",
    "extract_join_conditions",
    "extract_where_clause_text",
    "extract_where_conditions",
    "parse_statement",
    # Orchestration
    "AnalysisSession",
    "QueryAnalysis",
    "QueryParameter",
    "RepositoryQuery",
    "Config",
    "get_config",
    "reset_config",
    # Output
    "ChangesetRenderer",
    "Dialect",
]
