"""Risk scoring engine — turn issue tags into a bounded 0-100 score and a level.

The score of a target is its (capped) target-level points plus the points of
its single worst key, so one bad key weighs the same however many good keys
sit beside it. System targets are scaled by the configured multiplier.
"""

from __future__ import annotations

from collections.abc import Sequence

from ssh_key_audit.core.base import (
    AUTH_KEYS_MISSING,
    AUTH_KEYS_PERMS,
    DUPLICATE,
    SSH_DIR_PERMS,
    STALE,
    UNSAFE_OPTIONS,
    WEAK_TYPE,
    RiskAssessment,
    RiskFactor,
    RiskLevel,
    issue_detail,
    issue_kind,
)
from ssh_key_audit.core.config import RiskWeights

MAX_SCORE = 100
_CERT_SUFFIX = "-cert-v01@openssh.com"

_DESCRIPTIONS: dict[str, str] = {
    SSH_DIR_PERMS: "World-readable ~/.ssh directory exposes key material",
    AUTH_KEYS_PERMS: "authorized_keys permissions allow unauthorized modification",
    AUTH_KEYS_MISSING: "No authorized_keys file present (informational)",
    "weak-type:ssh-rsa": (
        "SHA-1 collision vulnerability in ssh-rsa signatures (deprecated OpenSSH 8.8+)"
    ),
    "weak-type:ssh-dss": "Weak DSA signatures (removed OpenSSH 7.0+)",
    "weak-type:ecdsa-sha2-nistp256": "NIST P-256 curve (potential backdoor concerns)",
    "weak-type:ecdsa-sha2-nistp384": "NIST P-384 curve (potential backdoor concerns)",
    "weak-type:ecdsa-sha2-nistp521": "NIST P-521 curve (potential backdoor concerns)",
    UNSAFE_OPTIONS: "Unsafe key options enable command injection or lateral movement",
    DUPLICATE: "Duplicate key entry in authorized_keys increases blast radius on compromise",
    STALE: "Key age exceeds policy threshold (rotation recommended)",
}

# Stale buckets, oldest first; a key only ever scores the first one it reaches
_STALE_BUCKETS: tuple[tuple[int, str], ...] = (
    (365, "stale_365"),
    (180, "stale_180"),
    (90, "stale_90"),
)


def describe(tag: str) -> str:
    """Human description of an issue tag; certificate types share their key type's text."""
    base = tag.removesuffix(_CERT_SUFFIX)
    return _DESCRIPTIONS.get(base) or _DESCRIPTIONS.get(issue_kind(tag), tag)


def _weak_type_weight(key_type: str, weights: RiskWeights) -> int:
    if key_type == "ssh-rsa":
        return weights.weak_ssh_rsa
    if key_type == "ssh-dss":
        return weights.weak_ssh_dss
    if key_type.startswith("ecdsa-sha2-nistp"):
        return weights.weak_ecdsa_nist
    return 0


def _stale_weight(age_days: int, weights: RiskWeights) -> tuple[int, int]:
    """Return (weight, bucket_days) for the highest bucket reached, or (0, 0)."""
    for days, field in _STALE_BUCKETS:
        if age_days >= days:
            return getattr(weights, field), days
    return 0, 0


def _parse_age(tag: str) -> int:
    detail = issue_detail(tag).removesuffix("d")
    try:
        return int(detail)
    except ValueError:
        return 0


def target_factors(target_issues: Sequence[str], weights: RiskWeights) -> list[RiskFactor]:
    """Weighted factors for the distinct target-level tags."""
    factors: list[RiskFactor] = []
    seen: set[str] = set()
    for tag in target_issues:
        kind = issue_kind(tag)
        if kind in seen:
            continue
        seen.add(kind)

        if kind == SSH_DIR_PERMS:
            weight = weights.ssh_dir_perms
            description = f"{describe(kind)} (perms: {issue_detail(tag)})"
        elif kind == AUTH_KEYS_PERMS:
            weight = weights.auth_keys_perms
            description = f"{describe(kind)} (perms: {issue_detail(tag)})"
        elif kind == AUTH_KEYS_MISSING:
            weight = weights.auth_keys_missing
            description = describe(kind)
        else:
            continue

        if weight > 0:
            factors.append(
                RiskFactor(type="target", factor=kind, weight=weight, description=description)
            )
    return factors


def key_factors(
    issues: Sequence[str],
    weights: RiskWeights,
    *,
    key_index: int,
    options: str = "",
) -> list[RiskFactor]:
    """Weighted factors for one key's tags."""
    factors: list[RiskFactor] = []
    for tag in dict.fromkeys(issues):
        kind = issue_kind(tag)
        factor = kind
        if kind == WEAK_TYPE:
            weight = _weak_type_weight(issue_detail(tag), weights)
            factor = tag
            description = describe(tag)
        elif kind == UNSAFE_OPTIONS:
            weight = weights.unsafe_options
            description = describe(kind) + (f" ({options})" if options else "")
        elif kind == DUPLICATE:
            weight = weights.duplicate
            description = describe(kind)
        elif kind == STALE:
            age = _parse_age(tag)
            weight, bucket = _stale_weight(age, weights)
            description = f"Key age exceeds threshold ({age} days >= {bucket})"
        else:
            continue

        if weight > 0:
            factors.append(
                RiskFactor(
                    type="key",
                    key_index=key_index,
                    factor=factor,
                    weight=weight,
                    description=description,
                )
            )
    return factors


def risk_level_for(score: int, weights: RiskWeights) -> RiskLevel:
    """Map a score to the highest level whose threshold it reaches."""
    if score >= weights.threshold_critical:
        return RiskLevel.CRITICAL
    if score >= weights.threshold_high:
        return RiskLevel.HIGH
    if score >= weights.threshold_medium:
        return RiskLevel.MEDIUM
    if score >= weights.threshold_low:
        return RiskLevel.LOW
    return RiskLevel.CLEAN


def score_target(
    target_issues: Sequence[str],
    key_issues: Sequence[Sequence[str]],
    weights: RiskWeights,
    *,
    is_system: bool = False,
    key_options: Sequence[str] | None = None,
) -> RiskAssessment:
    """Compute the composite risk of one target.

    `key_issues` holds one tag list per key, in file order; the position is
    reported as `key_index` on key-scoped factors. Pure: same inputs, same result.
    """
    factors = target_factors(target_issues, weights)
    target_score = min(sum(f.weight for f in factors), weights.target_max)

    max_key_score = 0
    for index, issues in enumerate(key_issues):
        options = key_options[index] if key_options is not None else ""
        per_key = key_factors(issues, weights, key_index=index, options=options)
        factors.extend(per_key)
        key_score = min(sum(f.weight for f in per_key), weights.key_max)
        max_key_score = max(max_key_score, key_score)

    raw_score = min(target_score + max_key_score, MAX_SCORE)
    final_score = raw_score
    if is_system:
        final_score = min(round(raw_score * weights.system_multiplier), MAX_SCORE)

    return RiskAssessment(
        risk_score=final_score,
        risk_level=risk_level_for(final_score, weights),
        risk_factors=factors,
    )
