"""Repository-wide aggregation of per-file scan results."""

from __future__ import annotations

from collections import Counter
from typing import Iterator, Optional

from .models import CATEGORIES, SEVERITY_ORDER, FileScanResult


class IssueIndex:
    """Per-path results plus running severity totals.

    Recording a path that is already present replaces the old entry and
    adjusts the totals, so re-scanning a file never double counts.
    """

    def __init__(self) -> None:
        self._results: dict[str, FileScanResult] = {}
        self._severity: Counter = Counter()
        self._category: Counter = Counter()

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, path: str) -> bool:
        return path in self._results

    def __iter__(self) -> Iterator[FileScanResult]:
        return iter(self._results.values())

    def get(self, path: str) -> Optional[FileScanResult]:
        return self._results.get(path)

    def record(self, result: FileScanResult) -> None:
        previous = self._results.get(result.path)
        if previous is not None:
            self._severity.subtract(issue.severity for issue in previous.issues)
            self._category.subtract(issue.category for issue in previous.issues)
        self._results[result.path] = result
        self._severity.update(issue.severity for issue in result.issues)
        self._category.update(issue.category for issue in result.issues)

    @property
    def totals(self) -> dict[str, int]:
        return {sev: self._severity[sev] for sev in SEVERITY_ORDER}

    @property
    def category_totals(self) -> dict[str, int]:
        return {cat: self._category[cat] for cat in CATEGORIES}

    @property
    def issue_count(self) -> int:
        return sum(self.totals.values())

    def paths_with_outcome(self, outcome: str) -> list[str]:
        return [r.path for r in self._results.values() if r.outcome == outcome]

    def snapshot(self) -> dict:
        """Plain-data copy of the index; callers may keep or mutate it freely."""
        return {
            "by_path": {
                path: [issue.model_dump() for issue in result.issues]
                for path, result in self._results.items()
            },
            "outcomes": {path: result.outcome for path, result in self._results.items()},
            "totals": self.totals,
        }
