"""Tests for the per-target filesystem audit and target discovery."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from ssh_key_audit.core.auditor import (
    audit_target,
    audit_targets,
    discover_system_targets,
    discover_user_targets,
)
from ssh_key_audit.core.base import RiskLevel, Target
from ssh_key_audit.core.config import AuditPolicy, RiskWeights
from ssh_key_audit.core.report import count_severity

ED25519_BLOB = "AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl"
NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)


def _target(keys_path: Path, user: str = "alice", is_system: bool = False) -> Target:
    return Target(user=user, keys_path=keys_path, is_system=is_system)


def test_insecure_permissions_and_rsa_key_is_critical(make_home):
    path = make_home(
        lines=["ssh-rsa ssh-rsa-keys-go-here user@host"], dir_mode=0o755, file_mode=0o644
    )
    result = audit_target(_target(path), AuditPolicy(), RiskWeights(), now=NOW)

    assert result.target_issues == ["ssh-dir-perms:755", "auth-keys-perms:644"]
    assert len(result.keys) == 1
    assert result.keys[0].issues == ["weak-type:ssh-rsa"]
    assert result.keys[0].comment == "user@host"
    assert result.risk_score == 100
    assert result.risk_level == RiskLevel.CRITICAL
    assert result.has_issues


def test_clean_target(make_home):
    path = make_home(lines=[f"ssh-ed25519 {ED25519_BLOB} alice@laptop"])
    result = audit_target(_target(path), AuditPolicy(max_age_days=90), RiskWeights(), now=NOW)

    assert result.target_issues == []
    assert [k.issues for k in result.keys] == [[]]
    assert result.risk_score == 0
    assert result.risk_level == RiskLevel.CLEAN
    assert not result.has_issues


def test_duplicate_second_key_only(make_home):
    line = f"ssh-ed25519 {ED25519_BLOB} alice@laptop"
    path = make_home(lines=[line, line])
    result = audit_target(_target(path), now=NOW)

    assert result.keys[0].issues == []
    assert result.keys[1].issues == ["duplicate"]


def test_options_boundary_with_repeated_comment(make_home):
    path = make_home(lines=[f'command="/bin/sync" ssh-ed25519 {ED25519_BLOB} command="/bin/sync"'])
    result = audit_target(_target(path), now=NOW)

    key = result.keys[0]
    assert key.type == "ssh-ed25519"
    assert key.options == 'command="/bin/sync"'
    assert key.comment == 'command="/bin/sync"'
    assert key.issues == ["unsafe-options"]


def test_missing_keys_file_is_informational(make_home):
    path = make_home(lines=None)
    result = audit_target(_target(path), now=NOW)

    assert result.target_issues == ["auth-keys-missing"]
    assert result.keys == []
    assert result.keys_missing
    assert not result.has_issues


def test_missing_keys_with_bad_dir_perms_has_issues(make_home):
    path = make_home(lines=None, dir_mode=0o755)
    result = audit_target(_target(path), now=NOW)

    assert result.target_issues == ["ssh-dir-perms:755", "auth-keys-missing"]
    assert result.has_issues


def test_missing_home_entirely(tmp_path: Path):
    path = tmp_path / "home" / "ghost" / ".ssh" / "authorized_keys"
    result = audit_target(_target(path, user="ghost"), now=NOW)
    assert result.target_issues == ["auth-keys-missing"]
    assert result.errors == []


def test_unrecognized_lines_are_recorded(make_home, caplog: pytest.LogCaptureFixture):
    path = make_home(
        lines=[
            "# comment",
            "",
            "garbage line here",
            f"ssh-ed25519 {ED25519_BLOB} ok",
        ]
    )
    with caplog.at_level(logging.WARNING):
        result = audit_target(_target(path), now=NOW)

    assert result.unrecognized_lines == [3]
    assert len(result.keys) == 1
    assert result.keys[0].line == 4
    assert result.has_issues
    assert "unrecognized key line 3" in caplog.text


def test_stale_from_file_mtime(make_home):
    path = make_home(lines=[f"ssh-ed25519 {ED25519_BLOB} no-date"], age_days=200)
    result = audit_target(_target(path), AuditPolicy(max_age_days=180), RiskWeights(), now=NOW)

    assert result.keys[0].issues == ["stale:200d"]
    assert result.risk_score == 15


def test_stale_from_comment_date(make_home):
    path = make_home(lines=[f"ssh-ed25519 {ED25519_BLOB} added 2025/10/18"], age_days=1)
    result = audit_target(_target(path), AuditPolicy(max_age_days=90), now=NOW)
    assert result.keys[0].issues == ["stale:365d"]


def test_unreadable_keys_file_treated_as_missing(make_home):
    path = make_home(lines=[f"ssh-ed25519 {ED25519_BLOB} ok"])
    with patch.object(Path, "read_text", side_effect=PermissionError(13, "Permission denied")):
        result = audit_target(_target(path), now=NOW)

    assert result.target_issues == ["auth-keys-missing"]
    assert result.keys == []
    assert result.errors and "Permission denied" in result.errors[0]


def test_unreadable_ssh_dir_treated_as_absent(make_home):
    path = make_home(lines=[f"ssh-ed25519 {ED25519_BLOB} ok"], dir_mode=0o755)
    ssh_dir = path.parent
    real_stat = Path.stat

    def stat(self, *args, **kwargs):
        if self == ssh_dir:
            raise PermissionError(13, "Permission denied")
        return real_stat(self, *args, **kwargs)

    with patch.object(Path, "stat", stat):
        result = audit_target(_target(path), now=NOW)

    assert result.target_issues == []
    assert len(result.errors) == 1
    assert "Permission denied" in result.errors[0]
    assert len(result.keys) == 1
    assert count_severity(result) == (1, 0)


def test_no_risk_fields_without_weights(make_home):
    path = make_home(lines=[f"ssh-ed25519 {ED25519_BLOB} ok"])
    result = audit_target(_target(path), now=NOW)
    assert result.risk_score is None
    assert "risk_score" not in result.to_json_dict()


def test_system_target_scaled(make_home):
    path = make_home(lines=[f"ssh-ed25519 {ED25519_BLOB} ok", f"ssh-ed25519 {ED25519_BLOB} ok"])
    user = audit_target(_target(path), weights=RiskWeights(), now=NOW)
    system = audit_target(_target(path, "system", is_system=True), weights=RiskWeights(), now=NOW)
    assert user.risk_score == 20
    assert system.risk_score == 25


def test_audit_is_idempotent(make_home):
    path = make_home(
        lines=[
            "ssh-rsa ssh-rsa-keys-go-here user@host",
            f'no-pty ssh-ed25519 {ED25519_BLOB} "quoted" \\ comment\t2024-01-01',
        ],
        dir_mode=0o750,
    )
    policy = AuditPolicy(max_age_days=30)
    first = audit_target(_target(path), policy, RiskWeights(), now=NOW)
    second = audit_target(_target(path), policy, RiskWeights(), now=NOW)
    assert first.model_dump_json() == second.model_dump_json()


def test_audit_targets_preserves_order(make_home):
    bob = make_home("bob", lines=[f"ssh-ed25519 {ED25519_BLOB} bob"])
    alice = make_home("alice", lines=None)
    results = audit_targets([_target(bob, "bob"), _target(alice, "alice")], now=NOW)
    assert [r.user for r in results] == ["bob", "alice"]


def test_discover_all_users(make_home, tmp_path: Path):
    make_home("carol", lines=None)
    make_home("alice", lines=None)
    (tmp_path / "home" / "README").write_text("not a home")

    targets = discover_user_targets(tmp_path / "home")
    assert [t.user for t in targets] == ["alice", "carol"]
    assert targets[0].keys_path == tmp_path / "home" / "alice" / ".ssh" / "authorized_keys"
    assert targets[0].ssh_dir_path == tmp_path / "home" / "alice" / ".ssh"
    assert not targets[0].is_system


def test_discover_named_users(tmp_path: Path):
    targets = discover_user_targets(tmp_path, [" alice ", "", "bob"])
    assert [t.user for t in targets] == ["alice", "bob"]


def test_discover_system_targets(tmp_path: Path):
    single = tmp_path / "etc" / "authorized_keys"
    single.parent.mkdir()
    single.write_text("")
    keys_dir = tmp_path / "etc" / "authorized_keys.d"
    (keys_dir / "nested").mkdir(parents=True)
    (keys_dir / "authorized_keys_root").write_text("")
    (keys_dir / "nested" / "authorized_keys").write_text("")
    (keys_dir / "unrelated.txt").write_text("")

    targets = discover_system_targets([single, keys_dir, tmp_path / "missing"])
    assert [t.keys_path for t in targets] == [
        single,
        keys_dir / "authorized_keys_root",
        keys_dir / "nested" / "authorized_keys",
    ]
    assert all(t.is_system and t.user == "system" for t in targets)
