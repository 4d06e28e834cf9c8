"""Per-key and per-target issue classification."""

from __future__ import annotations

import logging
import re
from collections.abc import Collection
from datetime import UTC, date, datetime

from ssh_key_audit.core.base import (
    AUTH_KEYS_MISSING,
    AUTH_KEYS_PERMS,
    DUPLICATE,
    SSH_DIR_PERMS,
    STALE,
    UNSAFE_OPTIONS,
    WEAK_TYPE,
    KeyRecord,
)

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400

# Expected modes for the .ssh directory and the keys file
EXPECTED_SSH_DIR_MODE = "700"
EXPECTED_AUTH_KEYS_MODE = "600"

# First YYYY-MM-DD or YYYY/MM/DD date in a key comment
_COMMENT_DATE_RE = re.compile(r"(\d{4})[-/](\d{2})[-/](\d{2})")


def comment_date(comment: str) -> date | None:
    """Extract the first date embedded in a key comment, if it is a real date."""
    match = _COMMENT_DATE_RE.search(comment)
    if match is None:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def age_in_days(since: datetime, now: datetime) -> int:
    """Whole days elapsed between two instants; 0 if `since` is not in the past."""
    seconds = (now - since).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // _SECONDS_PER_DAY)


def key_age_days(record: KeyRecord, *, file_age_days: int, now: datetime) -> int:
    """Age of a key: comment date when present and in the past, else the file's age."""
    found = comment_date(record.comment)
    if found is None:
        return file_age_days
    created = datetime(found.year, found.month, found.day, tzinfo=UTC)
    if created >= now:
        return file_age_days
    return age_in_days(created, now)


def classify_key(
    record: KeyRecord,
    *,
    forbid_types: Collection[str],
    seen: set[str],
    max_age_days: int = 0,
    file_age_days: int = 0,
    now: datetime | None = None,
) -> list[str]:
    """Return the issue tags for one key and record its identity in `seen`.

    `seen` is scoped to a single target; keys must be fed in file order so
    that only later copies of a key are tagged as duplicates.
    """
    issues: list[str] = []

    if record.type in forbid_types:
        issues.append(f"{WEAK_TYPE}:{record.type}")

    if record.options:
        issues.append(UNSAFE_OPTIONS)

    if max_age_days > 0:
        age = key_age_days(
            record,
            file_age_days=file_age_days,
            now=now if now is not None else datetime.now(tz=UTC),
        )
        if age >= max_age_days:
            issues.append(f"{STALE}:{age}d")

    if record.identity in seen:
        issues.append(DUPLICATE)
    else:
        seen.add(record.identity)

    return issues


def classify_target(
    *,
    ssh_dir_mode: str | None,
    keys_mode: str | None,
    keys_exists: bool,
) -> list[str]:
    """Return target-level issue tags.

    A mode of None means the item does not exist (or could not be inspected).
    """
    issues: list[str] = []

    if ssh_dir_mode is not None and ssh_dir_mode != EXPECTED_SSH_DIR_MODE:
        issues.append(f"{SSH_DIR_PERMS}:{ssh_dir_mode}")

    if not keys_exists:
        issues.append(AUTH_KEYS_MISSING)
    elif keys_mode is not None and keys_mode != EXPECTED_AUTH_KEYS_MODE:
        issues.append(f"{AUTH_KEYS_PERMS}:{keys_mode}")

    return issues
