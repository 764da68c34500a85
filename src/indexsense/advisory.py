"""
Advisory protocol (optional explanation hook).

The engine works without any advisor. An advisor receives a detected
reordering issue plus the query it came from and may return free text
that is attached to the issue as ``advisory_explanation``. Advisors never
affect which indexes are recommended; their text is only used to break
ties when issues are sorted for a report.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from indexsense.analyzer.models import OptimizationIssue
    from indexsense.engine import RepositoryQuery


@dataclass(frozen=True)
class Advice:
    """Text returned by an advisor for one issue."""

    query_id: str
    explanation: str | None
    error: str | None = None


class Advisor(ABC):
    """
    Abstract base for issue advisors.

    Expected failures (service unavailable, unusable response) are
    reported either as an ``Advice`` with ``error`` set or by raising
    ``AdvisoryError``. The engine guards every call and logs anything else
    that escapes.
    """

    @abstractmethod
    def advise(self, issue: "OptimizationIssue", query: "RepositoryQuery") -> Advice | None:
        """Explain a single issue."""
        ...


class StaticAdvisor(Advisor):
    """Advisor returning a fixed text; handy for offline runs and tests."""

    def __init__(self, text: str) -> None:
        self.text = text

    def advise(self, issue: "OptimizationIssue", query: "RepositoryQuery") -> Advice | None:
        return Advice(query_id=issue.query_id, explanation=self.text)


def advisory_priority(text: str | None) -> int:
    """
    Tie-break rank derived from advisory text.

    0 for text mentioning "high priority", 1 for "medium priority",
    2 otherwise (including no text at all).
    """
    if not text:
        return 2
    lowered = text.lower()
    if "high priority" in lowered:
        return 0
    if "medium priority" in lowered:
        return 1
    return 2
