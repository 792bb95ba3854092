"""Scan reports: verdict, coverage, risk score, JSON and plain-text rendering."""

from __future__ import annotations

from typing import Mapping, Optional

from .matcher import line_severities, rank_issues, worst_severity
from .models import SEVERITY_ORDER, ScanStatus
from .session import ScanSession
from .tree import detect_frameworks, detect_manifests, language_breakdown

# Per-issue weights; the sum is capped at 100.
DEFAULT_WEIGHTS: Mapping[str, int] = {"high": 25, "medium": 10, "low": 2}


def risk_score(totals: Mapping[str, int], weights: Mapping[str, int] = DEFAULT_WEIGHTS) -> int:
    return min(sum(weights.get(sev, 0) * count for sev, count in totals.items()), 100)


def verdict(session: ScanSession) -> str:
    """FAIL on any high finding; otherwise PASS only for a finished scan with full coverage."""
    if session.status is not ScanStatus.COMPLETE:
        return "INCOMPLETE"
    totals = session.index.totals
    if totals["high"]:
        return "FAIL"
    if not coverage(session)["complete"]:
        return "INCOMPLETE"
    if totals["medium"]:
        return "CONDITIONAL"
    return "PASS"


def coverage(session: ScanSession) -> dict:
    binary = session.index.paths_with_outcome("binary")
    failed = session.index.paths_with_outcome("fetch_failed")
    return {
        "files_total": session.files_total,
        "files_scanned": session.files_scanned,
        "binary": len(binary),
        "failed": len(failed),
        "truncated": session.truncated,
        "complete": (session.status is ScanStatus.COMPLETE and not failed and not session.truncated),
    }


def build_report(session: ScanSession, weights: Mapping[str, int] = DEFAULT_WEIGHTS) -> dict:
    findings = []
    files = []
    for result in session.index:
        for issue in rank_issues(result.issues):
            findings.append({"file": result.path, **issue.model_dump()})
        files.append({
            "path": result.path,
            "outcome": result.outcome,
            "issues": len(result.issues),
            "worst": worst_severity(result.issues),
            "lines": {str(line): sev for line, sev in sorted(line_severities(result.issues).items())},
            "error": result.error,
        })
    rank = {sev: idx for idx, sev in enumerate(SEVERITY_ORDER)}
    findings.sort(key=lambda f: (rank[f["severity"]], f["file"], f["line"]))
    dependencies = sorted({dep for deps in session.dependencies.values() for dep in deps})
    duration_ms = None
    if session.finished_at is not None:
        duration_ms = int((session.finished_at - session.created_at).total_seconds() * 1000)

    return {
        "scan_id": session.id,
        "target": session.repository.full_name,
        "branch": session.branch,
        "status": session.status.value,
        "verdict": verdict(session),
        "counts": session.index.totals,
        "categories": session.index.category_totals,
        "risk_score": risk_score(session.index.totals, weights),
        "coverage": coverage(session),
        "languages": language_breakdown(session.candidates),
        "manifests": detect_manifests(session.candidates),
        "dependencies": dependencies,
        "frameworks": detect_frameworks(dependencies),
        "findings": findings,
        "files": files,
        "warnings": list(session.warnings),
        "error": session.error.to_dict() if session.error else None,
        "duration_ms": duration_ms,
    }


def format_text_report(report: dict, max_findings: Optional[int] = None) -> str:
    cov = report["coverage"]
    lines = [
        "REPOGUARD SCAN REPORT",
        f"Scan ID:  {report['scan_id']}",
        f"Target:   {report['target']}" + (f" @ {report['branch']}" if report["branch"] else ""),
        f"Status:   {report['status']}",
        f"Verdict:  {report['verdict']}",
        f"Risk:     {report['risk_score']}/100",
        f"Stack:    {', '.join(report['frameworks']) or '-'}",
        f"Coverage: {cov['files_scanned']}/{cov['files_total']} files"
        f" ({cov['binary']} binary, {cov['failed']} failed)"
        + ("" if cov["complete"] else "  [INCOMPLETE]"),
        "",
        "SUMMARY",
        "─" * 40,
    ]
    for sev, count in report["counts"].items():
        lines.append(f"  {sev.upper():<12} {count}")
    if report["error"]:
        lines += ["", "ERROR", "─" * 40, f"  {report['error']['code']}: {report['error']['message']}"]
    if report["warnings"]:
        lines += ["", "WARNINGS", "─" * 40]
        lines += [f"  {w['code']} {w.get('path', '')}: {w['message']}" for w in report["warnings"]]
    lines += ["", "FINDINGS", "─" * 40]
    findings = report["findings"] if max_findings is None else report["findings"][:max_findings]
    if not findings:
        lines.append("  none")
    for f in findings:
        lines += [
            f"[{f['severity'].upper()}] {f['rule_id']} ({f['category']})",
            f"  {f['file']}:{f['line']}",
            f"  {f['message']}",
            f"  > {f['context_snippet']}",
            f"  Fix: {f['recommendation']}",
            "",
        ]
    return "\n".join(lines)
