"""Core data model — key records and per-target audit results."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Issue tag prefixes. Tags carrying a detail are rendered as "<kind>:<detail>".
WEAK_TYPE = "weak-type"
UNSAFE_OPTIONS = "unsafe-options"
STALE = "stale"
DUPLICATE = "duplicate"
SSH_DIR_PERMS = "ssh-dir-perms"
AUTH_KEYS_PERMS = "auth-keys-perms"
AUTH_KEYS_MISSING = "auth-keys-missing"


def issue_kind(tag: str) -> str:
    """Return the tag category, e.g. "weak-type" for "weak-type:ssh-rsa"."""
    return tag.split(":", 1)[0]


def issue_detail(tag: str) -> str:
    """Return the detail part of a tag, or "" for bare tags."""
    _, _, detail = tag.partition(":")
    return detail


class RiskLevel(StrEnum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    CLEAN = "CLEAN"


class FailOnRule(StrEnum):
    """Issue families a caller may escalate from warning to critical."""

    WEAK_TYPE = "weak-type"
    PERMS = "perms"
    STALE = "stale"
    DUPLICATE = "duplicate"
    UNSAFE_OPTIONS = "unsafe-options"


class KeyRecord(BaseModel):
    """One parsed authorized_keys entry."""

    model_config = ConfigDict(frozen=True)

    type: str
    blob: str
    comment: str = ""
    options: str = ""

    @property
    def identity(self) -> str:
        """Normalized identity used for duplicate detection."""
        return f"{self.type}:{self.blob}"


class Target(BaseModel):
    """One audited principal and the keys file it owns."""

    model_config = ConfigDict(frozen=True)

    user: str
    keys_path: Path
    ssh_dir: Path | None = None
    is_system: bool = False

    @property
    def ssh_dir_path(self) -> Path:
        return self.ssh_dir if self.ssh_dir is not None else self.keys_path.parent


class KeyResult(BaseModel):
    """Per-key entry of a target result."""

    model_config = ConfigDict(frozen=True)

    type: str
    comment: str = ""
    options: str = ""
    line: int = 0
    issues: list[str] = Field(default_factory=list)


class RiskFactor(BaseModel):
    """A single weighted contribution to a target's risk score."""

    model_config = ConfigDict(frozen=True)

    type: Literal["target", "key"]
    factor: str
    weight: int
    description: str
    key_index: int | None = None


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    risk_factors: list[RiskFactor] = Field(default_factory=list)


class TargetResult(BaseModel):
    """Audit outcome for one target, optionally carrying its risk assessment."""

    model_config = ConfigDict(frozen=True)

    user: str
    path: str
    is_system: bool = False
    target_issues: list[str] = Field(default_factory=list)
    keys: list[KeyResult] = Field(default_factory=list)
    unrecognized_lines: list[int] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    risk_score: int | None = Field(default=None, ge=0, le=100)
    risk_level: RiskLevel | None = None
    risk_factors: list[RiskFactor] | None = None

    @property
    def keys_missing(self) -> bool:
        return AUTH_KEYS_MISSING in self.target_issues

    @property
    def has_issues(self) -> bool:
        """True when any finding besides a lone missing keys file is present."""
        if any(issue_kind(tag) != AUTH_KEYS_MISSING for tag in self.target_issues):
            return True
        if self.unrecognized_lines:
            return True
        return any(key.issues for key in self.keys)

    def to_json_dict(self) -> dict[str, Any]:
        """Serializable form; risk fields are omitted when scoring was disabled."""
        data = self.model_dump(mode="json")
        if self.risk_score is None:
            for field in ("risk_score", "risk_level", "risk_factors"):
                data.pop(field)
        else:
            data["risk_factors"] = [
                factor.model_dump(mode="json", exclude_none=True)
                for factor in self.risk_factors or []
            ]
        return data
