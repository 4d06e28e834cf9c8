"""Tests for per-key and per-target issue classification."""

from datetime import UTC, date, datetime

from ssh_key_audit.core.base import KeyRecord
from ssh_key_audit.core.checks import (
    classify_key,
    classify_target,
    comment_date,
    key_age_days,
)

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)


def _key(key_type="ssh-ed25519", blob="AAAAC3blob", comment="", options=""):
    return KeyRecord(type=key_type, blob=blob, comment=comment, options=options)


def test_clean_key_has_no_issues():
    seen: set[str] = set()
    assert classify_key(_key(), forbid_types={"ssh-rsa"}, seen=seen) == []
    assert seen == {"ssh-ed25519:AAAAC3blob"}


def test_forbidden_type_is_weak():
    issues = classify_key(_key("ssh-rsa"), forbid_types={"ssh-rsa"}, seen=set())
    assert issues == ["weak-type:ssh-rsa"]


def test_type_not_in_forbidden_set_is_accepted():
    issues = classify_key(_key("ssh-dss"), forbid_types={"ssh-rsa"}, seen=set())
    assert issues == []


def test_any_option_is_unsafe():
    issues = classify_key(_key(options="no-pty"), forbid_types=set(), seen=set())
    assert issues == ["unsafe-options"]


def test_duplicate_only_tags_later_copies():
    seen: set[str] = set()
    first = classify_key(_key(), forbid_types=set(), seen=seen)
    second = classify_key(_key(), forbid_types=set(), seen=seen)
    assert "duplicate" not in first
    assert second == ["duplicate"]


def test_duplicate_requires_exact_type_and_blob():
    seen: set[str] = set()
    classify_key(
        _key(blob="AAAAC3blob", comment="a", options="no-pty"), forbid_types=set(), seen=seen
    )
    # Same comment and options, different blob
    other = classify_key(
        _key(blob="AAAAC3blob2", comment="a", options="no-pty"), forbid_types=set(), seen=seen
    )
    # Prefix of an earlier blob
    prefix = classify_key(_key(blob="AAAAC3"), forbid_types=set(), seen=seen)
    # Same blob under another type
    retyped = classify_key(_key("ssh-ed448", blob="AAAAC3blob"), forbid_types=set(), seen=seen)
    assert "duplicate" not in other
    assert "duplicate" not in prefix
    assert "duplicate" not in retyped


def test_comment_date_formats():
    assert comment_date("alice 2024-03-15") == date(2024, 3, 15)
    assert comment_date("created 2023/12/01 by ops") == date(2023, 12, 1)
    assert comment_date("no date here") is None
    assert comment_date("bad 2024-13-45") is None


def test_age_prefers_comment_date():
    record = _key(comment="added 2025-10-18")
    assert key_age_days(record, file_age_days=3, now=NOW) == 365


def test_age_falls_back_to_file_age():
    assert key_age_days(_key(comment="no date"), file_age_days=42, now=NOW) == 42
    # Unparsable and future dates fall back as well
    assert key_age_days(_key(comment="2024-02-30"), file_age_days=7, now=NOW) == 7
    assert key_age_days(_key(comment="2030-01-01"), file_age_days=7, now=NOW) == 7


def test_stale_when_age_reaches_max():
    issues = classify_key(
        _key(comment="2025-10-18"),
        forbid_types=set(),
        seen=set(),
        max_age_days=365,
        now=NOW,
    )
    assert issues == ["stale:365d"]


def test_stale_disabled_when_max_age_zero():
    issues = classify_key(
        _key(comment="2001-01-01"), forbid_types=set(), seen=set(), max_age_days=0, now=NOW
    )
    assert issues == []


def test_stale_uses_file_age_without_comment_date():
    issues = classify_key(
        _key(), forbid_types=set(), seen=set(), max_age_days=90, file_age_days=120, now=NOW
    )
    assert issues == ["stale:120d"]


def test_multiple_tags_on_one_key():
    seen = {"ssh-rsa:AAAAC3blob"}
    issues = classify_key(
        _key("ssh-rsa", options='command="/bin/true"', comment="2020-01-01"),
        forbid_types={"ssh-rsa"},
        seen=seen,
        max_age_days=30,
        now=NOW,
    )
    assert set(issues) == {"weak-type:ssh-rsa", "unsafe-options", "stale:2482d", "duplicate"}


def test_target_with_correct_permissions_is_clean():
    assert classify_target(ssh_dir_mode="700", keys_mode="600", keys_exists=True) == []


def test_target_permission_problems():
    issues = classify_target(ssh_dir_mode="755", keys_mode="644", keys_exists=True)
    assert issues == ["ssh-dir-perms:755", "auth-keys-perms:644"]


def test_missing_keys_file():
    assert classify_target(ssh_dir_mode="700", keys_mode=None, keys_exists=False) == [
        "auth-keys-missing"
    ]


def test_missing_ssh_dir_is_not_a_permission_issue():
    assert classify_target(ssh_dir_mode=None, keys_mode=None, keys_exists=False) == [
        "auth-keys-missing"
    ]
