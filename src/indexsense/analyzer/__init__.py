"""
Core analysis: condition extraction, cardinality, reordering, index suggestions.
"""

from indexsense.analyzer.cardinality import CardinalityClassifier, is_boolean_column
from indexsense.analyzer.extractor import (
    extract_join_conditions,
    extract_where_clause_text,
    extract_where_conditions,
)
from indexsense.analyzer.index_advisor import (
    RecommendationAccumulator,
    SuggestionKey,
    SuggestionResult,
    drop_candidates,
)
from indexsense.analyzer.models import (
    CardinalityLevel,
    JoinCondition,
    OptimizationIssue,
    Severity,
    WhereCondition,
)
from indexsense.analyzer.reordering import ReorderingAnalyzer, classify_severity, target_order

__all__ = [
    "CardinalityClassifier",
    "CardinalityLevel",
    "JoinCondition",
    "OptimizationIssue",
    "RecommendationAccumulator",
    "ReorderingAnalyzer",
    "Severity",
    "SuggestionKey",
    "SuggestionResult",
    "WhereCondition",
    "classify_severity",
    "drop_candidates",
    "extract_join_conditions",
    "extract_where_clause_text",
    "extract_where_conditions",
    "is_boolean_column",
    "target_order",
]
