"""Per-line rule matching for a single file's text."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from .models import SEVERITY_RANK, Issue
from .rules import DEFAULT_RULESET, RuleSet

MAX_MATCH_CHARS = 80
MAX_SNIPPET_CHARS = 120


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def scan_text(path: str, text: str, rules: RuleSet = DEFAULT_RULESET) -> list[Issue]:
    """Run every rule active for *path* over each line of *text*.

    Issues come back ordered by line; within a line by rule order, then match
    position. Pure: the same (path, text, rules) always gives the same list.
    """
    active = rules.active_rules(path)
    issues: list[Issue] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        snippet = None
        for rule, match in rules.iter_matches(line, active):
            if snippet is None:
                snippet = truncate(line.strip(), MAX_SNIPPET_CHARS)
            issues.append(Issue(
                rule_id=rule.id,
                line=lineno,
                severity=rule.severity,
                category=rule.category,
                message=rule.message,
                recommendation=rule.recommendation,
                matched_text=truncate(match.group(0), MAX_MATCH_CHARS),
                context_snippet=snippet,
            ))
    return issues


def worst_issue(issues: Iterable[Issue]) -> Optional[Issue]:
    """Highest-severity issue; the first one wins among equals."""
    worst = None
    for issue in issues:
        if worst is None or SEVERITY_RANK[issue.severity] < SEVERITY_RANK[worst.severity]:
            worst = issue
    return worst


def worst_severity(issues: Iterable[Issue]) -> Optional[str]:
    worst = worst_issue(issues)
    return worst.severity if worst else None


def line_severities(issues: Iterable[Issue]) -> dict[int, str]:
    """Map each flagged line to the worst severity found on it."""
    by_line: dict[int, list[Issue]] = {}
    for issue in issues:
        by_line.setdefault(issue.line, []).append(issue)
    return {line: worst_severity(found) for line, found in by_line.items()}


def rank_issues(issues: Sequence[Issue]) -> list[Issue]:
    """Display order: severity first, then line; stable for ties."""
    return sorted(issues, key=lambda issue: (SEVERITY_RANK[issue.severity], issue.line))
