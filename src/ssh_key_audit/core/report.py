"""Audit aggregation — summary counts and the JSON document."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from ssh_key_audit.core.base import (
    AUTH_KEYS_MISSING,
    AUTH_KEYS_PERMS,
    DUPLICATE,
    SSH_DIR_PERMS,
    STALE,
    UNSAFE_OPTIONS,
    WEAK_TYPE,
    FailOnRule,
    RiskLevel,
    TargetResult,
    issue_kind,
)

Severity = Literal["warning", "critical"]

# Which fail-on rule escalates each issue category
_RULE_FOR_KIND: dict[str, FailOnRule] = {
    WEAK_TYPE: FailOnRule.WEAK_TYPE,
    UNSAFE_OPTIONS: FailOnRule.UNSAFE_OPTIONS,
    STALE: FailOnRule.STALE,
    DUPLICATE: FailOnRule.DUPLICATE,
    SSH_DIR_PERMS: FailOnRule.PERMS,
    AUTH_KEYS_PERMS: FailOnRule.PERMS,
}

DEFAULT_TOP_N = 5


def classify_severity(tag: str, fail_on: Collection[FailOnRule]) -> Severity | None:
    """Severity of one issue occurrence; None for informational tags."""
    kind = issue_kind(tag)
    if kind == AUTH_KEYS_MISSING:
        return None
    rule = _RULE_FOR_KIND.get(kind)
    if rule is not None and rule in fail_on:
        return "critical"
    return "warning"


def count_severity(
    result: TargetResult, fail_on: Collection[FailOnRule] = ()
) -> tuple[int, int]:
    """Return (warnings, critical) for every issue occurrence on a target."""
    warnings = critical = 0
    tags = list(result.target_issues)
    for key in result.keys:
        tags.extend(key.issues)
    for tag in tags:
        severity = classify_severity(tag, fail_on)
        if severity == "critical":
            critical += 1
        elif severity == "warning":
            warnings += 1
    # Unrecognized lines and read errors are never escalated
    warnings += len(result.unrecognized_lines) + len(result.errors)
    return warnings, critical


class RankedTarget(BaseModel):
    user: str
    path: str
    risk_score: int
    risk_level: RiskLevel
    top_factors: list[str] = Field(default_factory=list)


class AuditSummary(BaseModel):
    """Aggregate counts over a set of target results."""

    users_scanned: int = 0
    system_targets_scanned: int = 0
    total_targets: int = 0
    targets_with_issues: int = 0
    targets_missing_keys: int = 0
    total_keys: int = 0
    warnings: int = 0
    critical: int = 0
    risk_distribution: dict[RiskLevel, int] | None = None
    top_risky: list[RankedTarget] | None = None


def rank_targets(results: Sequence[TargetResult], top_n: int = DEFAULT_TOP_N) -> list[TargetResult]:
    """Scored targets with a non-zero score, highest first; ties keep discovery order."""
    scored = [r for r in results if r.risk_score]
    return sorted(scored, key=lambda r: r.risk_score or 0, reverse=True)[:top_n]


def risk_distribution(results: Sequence[TargetResult]) -> dict[RiskLevel, int]:
    """Count scored targets per risk level (every level present, CRITICAL first)."""
    counts = dict.fromkeys(RiskLevel, 0)
    for result in results:
        if result.risk_level is not None:
            counts[result.risk_level] += 1
    return counts


def summarize(
    results: Sequence[TargetResult],
    *,
    fail_on: Collection[FailOnRule] = (),
    risk_enabled: bool = False,
    top_n: int = DEFAULT_TOP_N,
) -> AuditSummary:
    """Build the summary for an ordered list of target results.

    Pure over its inputs: results produced in parallel can be concatenated
    in discovery order and summarized once.
    """
    summary = AuditSummary()
    for result in results:
        if result.is_system:
            summary.system_targets_scanned += 1
        else:
            summary.users_scanned += 1
        if result.has_issues:
            summary.targets_with_issues += 1
        if result.keys_missing:
            summary.targets_missing_keys += 1
        summary.total_keys += len(result.keys)
        warnings, critical = count_severity(result, fail_on)
        summary.warnings += warnings
        summary.critical += critical
    summary.total_targets = summary.users_scanned + summary.system_targets_scanned

    if risk_enabled:
        summary.risk_distribution = risk_distribution(results)
        summary.top_risky = [
            RankedTarget(
                user=r.user,
                path=r.path,
                risk_score=r.risk_score or 0,
                risk_level=r.risk_level or RiskLevel.CLEAN,
                top_factors=[f.factor for f in (r.risk_factors or [])[:2]],
            )
            for r in rank_targets(results, top_n)
        ]
    return summary


def exit_code(summary: AuditSummary) -> int:
    """Conventional exit status: 2 on critical findings, 1 on warnings, else 0."""
    if summary.critical > 0:
        return 2
    if summary.warnings > 0:
        return 1
    return 0


def build_json_report(
    results: Sequence[TargetResult],
    summary: AuditSummary,
    *,
    home_root: str | None = None,
    risk_error: str | None = None,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    """Assemble the machine-readable report; serialize with json.dumps."""
    ts = timestamp or datetime.now(tz=UTC)
    risk_enabled = summary.risk_distribution is not None
    report: dict[str, Any] = {
        "timestamp": ts.isoformat(timespec="seconds"),
        "home_root": home_root,
        "users_scanned": summary.users_scanned,
        "targets_scanned": summary.users_scanned,
        "system_targets_scanned": summary.system_targets_scanned,
        "total_targets": summary.total_targets,
        "targets_with_issues": summary.targets_with_issues,
        "targets_missing_keys": summary.targets_missing_keys,
        "total_keys": summary.total_keys,
        "warnings": summary.warnings,
        "critical": summary.critical,
        "risk_enabled": risk_enabled,
    }
    if risk_error is not None:
        report["risk_error"] = risk_error
    if risk_enabled:
        report["risk_distribution"] = {
            level.value: count for level, count in (summary.risk_distribution or {}).items()
        }
        report["top_risky"] = [t.model_dump(mode="json") for t in summary.top_risky or []]
    report["targets"] = [r.to_json_dict() for r in results]
    return report
