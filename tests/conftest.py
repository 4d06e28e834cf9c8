"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Fixed reference instant so age-based checks are deterministic
NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def make_home(tmp_path: Path) -> Callable[..., Path]:
    """Create <tmp>/home/<user>/.ssh/authorized_keys with the given lines and modes.

    Returns the keys file path. Pass lines=None to leave the keys file absent.
    """

    def _make(
        user: str = "alice",
        lines: list[str] | None = None,
        *,
        dir_mode: int = 0o700,
        file_mode: int = 0o600,
        age_days: float = 0.0,
    ) -> Path:
        ssh_dir = tmp_path / "home" / user / ".ssh"
        ssh_dir.mkdir(parents=True, exist_ok=True)
        ssh_dir.chmod(dir_mode)
        keys_path = ssh_dir / "authorized_keys"
        if lines is not None:
            keys_path.write_text("\n".join(lines) + "\n")
            keys_path.chmod(file_mode)
            mtime = NOW.timestamp() - age_days * 86400
            os.utime(keys_path, (mtime, mtime))
        return keys_path

    return _make
