"""Configuration loading — risk weights and audit policy.

Risk weights are read from the first existing config file (explicit path,
./.ssh-audit.conf, ~/.ssh-audit.conf, /etc/ssh-audit/config.conf). Files are
either KEY=VALUE lines or a YAML mapping; neither format is ever executed.
SSH_AUDIT_RISK_* environment variables override the built-in defaults, and a
config file overrides both.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from ssh_key_audit.core.base import FailOnRule

logger = logging.getLogger(__name__)

ENV_PREFIX = "SSH_AUDIT_RISK_"
SYSTEM_CONFIG_PATH = Path("/etc/ssh-audit/config.conf")
CONFIG_FILENAME = ".ssh-audit.conf"

_WEIGHT_MIN = 0
_WEIGHT_MAX = 100
_DEFAULT_SYSTEM_MULTIPLIER = 1.25

_ASSIGNMENT_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


class RiskConfigError(Exception):
    """Raised when a risk config source cannot be parsed or is inconsistent."""


def default_config_paths() -> list[Path]:
    """Implicit config search order, after any explicit path."""
    return [
        Path.cwd() / CONFIG_FILENAME,
        Path.home() / CONFIG_FILENAME,
        SYSTEM_CONFIG_PATH,
    ]


def _clamp(value: Any, name: str) -> int:
    if isinstance(value, bool):
        value = str(value)
    text = str(value).strip()
    if not re.fullmatch(r"-?\d+", text):
        logger.warning("Invalid risk weight %s=%r (not numeric), using 0", name, value)
        return 0
    number = int(text)
    if number < _WEIGHT_MIN:
        logger.warning("Risk weight %s=%d, clamping to %d", name, number, _WEIGHT_MIN)
        return _WEIGHT_MIN
    if number > _WEIGHT_MAX:
        logger.warning("Risk weight %s=%d, clamping to %d", name, number, _WEIGHT_MAX)
        return _WEIGHT_MAX
    return number


class RiskWeights(BaseModel):
    """Point values per issue category, level thresholds, and scoring modifiers."""

    model_config = ConfigDict(frozen=True)

    # Target-level issues
    ssh_dir_perms: int = 40
    auth_keys_perms: int = 35
    auth_keys_missing: int = 5

    # Weak key types
    weak_ssh_rsa: int = 50
    weak_ssh_dss: int = 50
    weak_ecdsa_nist: int = 0  # opt-in

    # Key hygiene
    unsafe_options: int = 35
    duplicate: int = 20

    # Stale buckets (>= days), non-additive
    stale_365: int = 25
    stale_180: int = 15
    stale_90: int = 8

    # Level thresholds (score >= threshold)
    threshold_critical: int = 85
    threshold_high: int = 50
    threshold_medium: int = 20
    threshold_low: int = 1

    system_multiplier: float = _DEFAULT_SYSTEM_MULTIPLIER
    target_max: int = 100
    key_max: int = 100
    top_n: int = 5

    @field_validator(
        "ssh_dir_perms",
        "auth_keys_perms",
        "auth_keys_missing",
        "weak_ssh_rsa",
        "weak_ssh_dss",
        "weak_ecdsa_nist",
        "unsafe_options",
        "duplicate",
        "stale_365",
        "stale_180",
        "stale_90",
        "threshold_critical",
        "threshold_high",
        "threshold_medium",
        "threshold_low",
        "target_max",
        "key_max",
        "top_n",
        mode="before",
    )
    @classmethod
    def _clamp_weight(cls, value: Any, info: ValidationInfo) -> int:
        return _clamp(value, info.field_name)

    @field_validator("system_multiplier", mode="before")
    @classmethod
    def _clamp_multiplier(cls, value: Any) -> float:
        try:
            number = float(str(value).strip())
        except ValueError:
            number = float("nan")
        if number != number:  # NaN
            logger.warning(
                "Invalid system multiplier %r, using %s", value, _DEFAULT_SYSTEM_MULTIPLIER
            )
            return _DEFAULT_SYSTEM_MULTIPLIER
        if number < _WEIGHT_MIN or number > _WEIGHT_MAX:
            clamped = float(min(max(number, _WEIGHT_MIN), _WEIGHT_MAX))
            logger.warning("System multiplier %s out of range, clamping to %s", number, clamped)
            return clamped
        return number

    @model_validator(mode="after")
    def _check_threshold_order(self) -> RiskWeights:
        ordered = (
            self.threshold_low,
            self.threshold_medium,
            self.threshold_high,
            self.threshold_critical,
        )
        if list(ordered) != sorted(ordered):
            raise ValueError(
                "risk thresholds must satisfy LOW <= MEDIUM <= HIGH <= CRITICAL "
                f"(got {ordered[0]}, {ordered[1]}, {ordered[2]}, {ordered[3]})"
            )
        return self


WEIGHT_FIELDS: frozenset[str] = frozenset(RiskWeights.model_fields)


def _field_for_key(key: str) -> str | None:
    name = key.strip()
    if name.upper().startswith(ENV_PREFIX):
        name = name[len(ENV_PREFIX) :]
    name = name.lower()
    return name if name in WEIGHT_FIELDS else None


def _unquote(value: str) -> str:
    value = value.strip()
    if value[:1] in ("'", '"'):
        end = value.find(value[0], 1)
        if end != -1:
            return value[1:end]
    # Trailing inline comment on an unquoted value
    return re.split(r"\s+#", value, maxsplit=1)[0].strip()


def parse_key_value(text: str, source: str = "<config>") -> dict[str, str]:
    """Parse KEY=VALUE config text. Raises RiskConfigError on malformed lines."""
    values: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _ASSIGNMENT_RE.match(line)
        if match is None:
            raise RiskConfigError(f"{source}:{lineno}: expected KEY=VALUE, got {line!r}")
        values[match.group(1)] = _unquote(match.group(2))
    return values


def parse_yaml(text: str, source: str = "<config>") -> dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise RiskConfigError(f"{source}: invalid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RiskConfigError(f"{source}: expected a mapping of weight names to values")
    return {str(k): v for k, v in data.items()}


def _to_fields(raw: Mapping[str, Any], source: str) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key, value in raw.items():
        name = _field_for_key(key)
        if name is None:
            logger.warning("Ignoring unknown risk setting %s in %s", key, source)
            continue
        fields[name] = value
    return fields


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = _field_for_key(key)
        if name is not None:
            overrides[name] = value
    return overrides


def resolve_config_path(path: Path | None = None) -> Path | None:
    """Return the first existing config file in priority order, or None."""
    candidates = default_config_paths()
    if path is not None:
        if not path.is_file():
            logger.warning("Risk config %s not found, searching default locations", path)
        candidates.insert(0, path)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def read_config_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RiskConfigError(f"{path}: cannot read config: {e}") from e
    if path.suffix in (".yaml", ".yml"):
        return _to_fields(parse_yaml(text, str(path)), str(path))
    return _to_fields(parse_key_value(text, str(path)), str(path))


def load_risk_weights(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> tuple[RiskWeights, Path | None]:
    """Build the effective RiskWeights and report which file supplied them.

    Raises RiskConfigError when the selected file cannot be parsed or yields
    an inconsistent threshold set; callers disable risk scoring in that case.
    """
    env = os.environ if environ is None else environ
    values = _env_overrides(env)

    config_path = resolve_config_path(path)
    if config_path is not None:
        logger.info("Loading risk config: %s", config_path)
        values.update(read_config_file(config_path))
    else:
        logger.info("Using built-in risk scoring defaults")

    try:
        weights = RiskWeights(**values)
    except ValidationError as e:
        source = str(config_path) if config_path is not None else "environment"
        messages = "; ".join(err["msg"] for err in e.errors())
        raise RiskConfigError(f"{source}: {messages}") from e
    return weights, config_path


def parse_list(value: str | None, sep: str = ",") -> list[str]:
    """Split a delimited option value, trimming blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(sep) if item.strip()]


class AuditPolicy(BaseModel):
    """Classification policy applied to every target."""

    model_config = ConfigDict(frozen=True)

    forbid_types: frozenset[str] = frozenset({"ssh-rsa"})
    max_age_days: int = Field(default=0, ge=0, le=3650)
    fail_on: frozenset[FailOnRule] = frozenset()

    @classmethod
    def from_options(
        cls,
        *,
        forbid_types: str | Iterable[str] | None = "ssh-rsa",
        max_age_days: int = 0,
        fail_on: str | Iterable[str] | None = None,
    ) -> AuditPolicy:
        """Build a policy from comma-separated option strings or iterables."""
        if isinstance(forbid_types, str) or forbid_types is None:
            forbid = parse_list(forbid_types)
        else:
            forbid = [t.strip() for t in forbid_types if t.strip()]
        if isinstance(fail_on, str) or fail_on is None:
            rules = parse_list(fail_on)
        else:
            rules = [r.strip() for r in fail_on if r.strip()]
        return cls(
            forbid_types=frozenset(forbid),
            max_age_days=max_age_days,
            fail_on=frozenset(FailOnRule(r.lower()) for r in rules),
        )
