"""authorized_keys hygiene audit — per-target filesystem inspection and discovery."""

from __future__ import annotations

import logging
import stat
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ssh_key_audit.core.base import (
    AUTH_KEYS_PERMS,
    SSH_DIR_PERMS,
    KeyResult,
    Target,
    TargetResult,
    issue_kind,
)
from ssh_key_audit.core.checks import age_in_days, classify_key, classify_target
from ssh_key_audit.core.config import AuditPolicy, RiskWeights
from ssh_key_audit.core.keys import is_key_line, parse_key_line
from ssh_key_audit.core.scoring import score_target

logger = logging.getLogger(__name__)

DEFAULT_HOME_ROOT = Path("/home")
DEFAULT_SYSTEM_PATHS = (
    Path("/etc/ssh/authorized_keys"),
    Path("/etc/ssh/authorized_keys.d"),
)
SYSTEM_TARGET = "system"


def format_mode(mode: int) -> str:
    """Octal permission string as printed by `stat -c %a`, e.g. "700"."""
    return format(stat.S_IMODE(mode), "o")


def _ssh_dir_mode(ssh_dir: Path, errors: list[str]) -> str | None:
    try:
        st = ssh_dir.stat()
    except FileNotFoundError:
        return None
    except (PermissionError, OSError) as e:
        errors.append(f"cannot inspect {ssh_dir}: {e.strerror or e}")
        logger.warning("Cannot inspect %s: %s", ssh_dir, e)
        return None
    if not stat.S_ISDIR(st.st_mode):
        return None
    return format_mode(st.st_mode)


def _read_keys_file(
    path: Path, errors: list[str]
) -> tuple[str | None, str | None, float | None]:
    """Return (content, mode, mtime); content is None when the file is absent or unreadable."""
    try:
        st = path.stat()
        if not stat.S_ISREG(st.st_mode):
            return None, None, None
        content = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None, None, None
    except (PermissionError, OSError) as e:
        errors.append(f"cannot read {path}: {e.strerror or e}")
        logger.warning("Cannot read %s: %s", path, e)
        return None, None, None
    return content, format_mode(st.st_mode), st.st_mtime


def audit_target(
    target: Target,
    policy: AuditPolicy | None = None,
    weights: RiskWeights | None = None,
    *,
    now: datetime | None = None,
) -> TargetResult:
    """Audit one target's .ssh directory and keys file.

    Risk fields are filled in only when `weights` is given. Nothing on disk
    is modified; unreadable items are treated as absent and reported in
    `errors`.
    """
    policy = policy or AuditPolicy()
    now = now or datetime.now(tz=UTC)
    errors: list[str] = []
    label = target.user

    ssh_dir_mode = _ssh_dir_mode(target.ssh_dir_path, errors)
    content, keys_mode, mtime = _read_keys_file(target.keys_path, errors)

    target_issues = classify_target(
        ssh_dir_mode=ssh_dir_mode,
        keys_mode=keys_mode,
        keys_exists=content is not None,
    )
    for tag in target_issues:
        kind = issue_kind(tag)
        if kind == SSH_DIR_PERMS:
            logger.warning("%s: ~/.ssh permissions %s (expected 700)", label, ssh_dir_mode)
        elif kind == AUTH_KEYS_PERMS:
            logger.warning("%s: authorized_keys permissions %s (expected 600)", label, keys_mode)
        else:
            logger.info("%s: no authorized_keys at %s", label, target.keys_path)

    keys: list[KeyResult] = []
    unrecognized: list[int] = []

    if content is not None:
        file_age_days = 0
        if mtime is not None:
            file_age_days = age_in_days(datetime.fromtimestamp(mtime, tz=UTC), now)

        seen: set[str] = set()
        for lineno, line in enumerate(content.splitlines(), 1):
            if not is_key_line(line):
                continue
            record = parse_key_line(line)
            if record is None:
                logger.warning(
                    "%s: unrecognized key line %d in %s", label, lineno, target.keys_path
                )
                unrecognized.append(lineno)
                continue

            issues = classify_key(
                record,
                forbid_types=policy.forbid_types,
                seen=seen,
                max_age_days=policy.max_age_days,
                file_age_days=file_age_days,
                now=now,
            )
            for tag in issues:
                logger.warning("%s: %s key (%s) %s", label, record.type, tag, record.comment)
            keys.append(
                KeyResult(
                    type=record.type,
                    comment=record.comment,
                    options=record.options,
                    line=lineno,
                    issues=issues,
                )
            )

    assessment = None
    if weights is not None:
        assessment = score_target(
            target_issues,
            [key.issues for key in keys],
            weights,
            is_system=target.is_system,
            key_options=[key.options for key in keys],
        )

    return TargetResult(
        user=target.user,
        path=str(target.keys_path),
        is_system=target.is_system,
        target_issues=target_issues,
        keys=keys,
        unrecognized_lines=unrecognized,
        errors=errors,
        risk_score=assessment.risk_score if assessment else None,
        risk_level=assessment.risk_level if assessment else None,
        risk_factors=list(assessment.risk_factors) if assessment else None,
    )


def audit_targets(
    targets: Iterable[Target],
    policy: AuditPolicy | None = None,
    weights: RiskWeights | None = None,
    *,
    now: datetime | None = None,
) -> list[TargetResult]:
    """Audit targets one at a time, in discovery order."""
    now = now or datetime.now(tz=UTC)
    return [audit_target(t, policy, weights, now=now) for t in targets]


def discover_user_targets(
    home_root: Path = DEFAULT_HOME_ROOT,
    users: Iterable[str] | None = None,
) -> list[Target]:
    """Map users to their ~/.ssh/authorized_keys under `home_root`.

    With no explicit user list, every directory directly under `home_root`
    is treated as a user home, in name order.
    """
    if users is not None:
        names = [u.strip() for u in users if u.strip()]
    else:
        try:
            names = sorted(p.name for p in home_root.iterdir() if p.is_dir())
        except (PermissionError, OSError) as e:
            logger.warning("Cannot list %s: %s", home_root, e)
            names = []

    return [
        Target(user=name, keys_path=home_root / name / ".ssh" / "authorized_keys")
        for name in names
    ]


def discover_system_targets(paths: Iterable[Path] = DEFAULT_SYSTEM_PATHS) -> list[Target]:
    """Expand system key locations into targets.

    A directory contributes every authorized_keys* file below it; a file
    contributes itself; missing paths contribute nothing.
    """
    targets: list[Target] = []
    for path in paths:
        if path.is_dir():
            try:
                found = sorted(
                    p for p in path.rglob("authorized_keys*") if p.is_file()
                )
            except (PermissionError, OSError) as e:
                logger.warning("Cannot search %s: %s", path, e)
                continue
            targets.extend(
                Target(user=SYSTEM_TARGET, keys_path=p, is_system=True) for p in found
            )
        elif path.is_file():
            targets.append(Target(user=SYSTEM_TARGET, keys_path=path, is_system=True))
    return targets
