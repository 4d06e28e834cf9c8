"""CLI entry point — the `ssh-key-audit` command."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ssh_key_audit.core.auditor import (
    DEFAULT_HOME_ROOT,
    DEFAULT_SYSTEM_PATHS,
    audit_targets,
    discover_system_targets,
    discover_user_targets,
)
from ssh_key_audit.core.base import FailOnRule, RiskLevel, TargetResult
from ssh_key_audit.core.config import (
    AuditPolicy,
    RiskConfigError,
    RiskWeights,
    load_risk_weights,
    parse_list,
)
from ssh_key_audit.core.report import (
    AuditSummary,
    build_json_report,
    exit_code,
    summarize,
)

logger = logging.getLogger("ssh_key_audit")

console = Console()
err_console = Console(stderr=True)

LEVEL_STYLES = {
    RiskLevel.CRITICAL: ("red bold", "🔴"),
    RiskLevel.HIGH: ("red", "🟠"),
    RiskLevel.MEDIUM: ("yellow", "🟡"),
    RiskLevel.LOW: ("blue", "🔵"),
    RiskLevel.CLEAN: ("green", "🟢"),
}


def _setup_logging(verbose: bool) -> None:
    handler = RichHandler(console=err_console, show_path=False, markup=False)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )


def _render_summary(summary: AuditSummary) -> None:
    table = Table(show_header=False, box=None)
    table.add_column(style="dim")
    table.add_column()
    if summary.users_scanned:
        table.add_row("Users scanned", str(summary.users_scanned))
    if summary.system_targets_scanned:
        table.add_row("System targets scanned", str(summary.system_targets_scanned))
    table.add_row("Total targets", str(summary.total_targets))
    table.add_row("Targets with issues", str(summary.targets_with_issues))
    if summary.targets_missing_keys:
        table.add_row(
            "Missing authorized_keys", f"{summary.targets_missing_keys} (informational)"
        )
    table.add_row("Total keys", str(summary.total_keys))
    table.add_row("Warnings", f"[yellow]{summary.warnings}[/yellow]")
    table.add_row("Critical", f"[red]{summary.critical}[/red]")
    console.print(Panel(table, title="Summary", style="blue"))


def _render_risk_detail(result: TargetResult) -> None:
    level = result.risk_level or RiskLevel.CLEAN
    style, icon = LEVEL_STYLES[level]
    console.print(
        f"\n[bold]Detailed risk:[/bold] [{style}]{escape(result.user)}[/{style}] "
        f"{escape(result.path)} (score: {result.risk_score}, level: {level})"
    )
    factors = result.risk_factors or []
    target_factors = [f for f in factors if f.type == "target"]
    key_factors = [f for f in factors if f.type == "key"]
    if target_factors:
        console.print("  [yellow]Target-level issues:[/yellow]")
        for f in target_factors:
            console.print(f"  {icon} {f.factor} (weight: {f.weight})")
            console.print(f"     [dim]{escape(f.description)}[/dim]")
    if key_factors:
        console.print("  [yellow]Key-level issues:[/yellow]")
        for f in key_factors:
            console.print(f"  {icon} Key #{f.key_index}: {f.factor} (weight: {f.weight})")
            console.print(f"     [dim]{escape(f.description)}[/dim]")


def _render_risk(
    results: list[TargetResult], summary: AuditSummary, *, detail: bool
) -> None:
    console.print("\n[blue bold]━━━ Risk Distribution ━━━[/blue bold]")
    for level, count in (summary.risk_distribution or {}).items():
        if count:
            style, icon = LEVEL_STYLES[level]
            console.print(f"{icon} [{style}]{level}:[/{style}] {count} targets")

    if not summary.top_risky:
        console.print("[green]All targets are clean (no risk factors detected)[/green]")
        return

    console.print("\n[blue bold]━━━ Top Risky Targets ━━━[/blue bold]")
    for ranked in summary.top_risky:
        style, icon = LEVEL_STYLES[ranked.risk_level]
        console.print(
            f"{icon} [{style}]{escape(ranked.user)}[/{style}] {escape(ranked.path)} "
            f"(score: {ranked.risk_score}, level: {ranked.risk_level})"
        )
        if ranked.top_factors:
            console.print(f"   Top issues: {', '.join(ranked.top_factors)}")

    if detail:
        for result in sorted(results, key=lambda r: r.risk_score or 0, reverse=True):
            if result.risk_score:
                _render_risk_detail(result)


def _write_json(report: dict[str, object], output: str | None) -> None:
    text = json.dumps(report, indent=2)
    if output is None:
        click.echo(text)
        return
    path = Path(output)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text + "\n")
    os.chmod(path, 0o600)
    console.print(f"[green]JSON summary written: {escape(str(path))}[/green]")


@click.group()
@click.version_option(package_name="ssh-key-audit")
def cli() -> None:
    """ssh-key-audit — audit authorized_keys hygiene and score the risk."""


@cli.command()
@click.option("--users", help="Comma-separated usernames to audit.")
@click.option("--all-users", is_flag=True, help="Audit every home directory under --home-root.")
@click.option(
    "--home-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_HOME_ROOT,
    show_default=True,
    help="Root of user home directories.",
)
@click.option("--system", "include_system", is_flag=True, help="Include system key locations.")
@click.option(
    "--system-paths",
    default=":".join(str(p) for p in DEFAULT_SYSTEM_PATHS),
    show_default=True,
    help="Colon-separated system files or directories.",
)
@click.option(
    "--forbid-types",
    default="ssh-rsa",
    show_default=True,
    help="Comma list of forbidden key types.",
)
@click.option(
    "--max-age",
    type=click.IntRange(0, 3650),
    default=0,
    show_default=True,
    help="Flag keys at least N days old (0 disables).",
)
@click.option(
    "--fail-on",
    default="",
    help="Comma list of rules escalated to critical: "
    + ",".join(rule.value for rule in FailOnRule),
)
@click.option("--json", "as_json", is_flag=True, help="Emit the JSON summary.")
@click.option(
    "--output", "-o", type=click.Path(dir_okay=False), help="Write JSON to this file (mode 600)."
)
@click.option("--dry-run", is_flag=True, help="Show what would be audited without reading files.")
@click.option("--risk", is_flag=True, help="Enable risk scoring.")
@click.option(
    "--risk-detail", is_flag=True, help="Show per-target risk breakdown (implies --risk)."
)
@click.option(
    "--risk-config",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Risk weight config file (KEY=VALUE or YAML).",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
def audit(
    users: str | None,
    all_users: bool,
    home_root: Path,
    include_system: bool,
    system_paths: str,
    forbid_types: str,
    max_age: int,
    fail_on: str,
    as_json: bool,
    output: str | None,
    dry_run: bool,
    risk: bool,
    risk_detail: bool,
    risk_config: Path | None,
    verbose: bool,
) -> None:
    """Audit authorized_keys files. Read-only; exits 2 on critical, 1 on warnings."""
    _setup_logging(verbose)

    if users and all_users:
        raise click.UsageError("--users and --all-users are mutually exclusive")

    try:
        policy = AuditPolicy.from_options(
            forbid_types=forbid_types, max_age_days=max_age, fail_on=fail_on
        )
    except ValueError:
        valid = ", ".join(rule.value for rule in FailOnRule)
        raise click.UsageError(f"--fail-on accepts: {valid}") from None

    risk = risk or risk_detail
    weights: RiskWeights | None = None
    risk_error: str | None = None
    if risk:
        try:
            weights, _source = load_risk_weights(risk_config)
        except RiskConfigError as e:
            risk_error = str(e)
            logger.error("Failed to load risk config: %s", e)
            logger.error("Risk scoring disabled for this run")

    logger.info("Home root: %s", home_root)
    if users:
        logger.info("Users: %s", users)
    if all_users:
        logger.info("All users under: %s", home_root)
    if include_system:
        logger.info("System paths: %s", system_paths)
    logger.info("Forbid types: %s", ", ".join(sorted(policy.forbid_types)) or "(none)")
    if max_age:
        logger.info("Max age days: %d", max_age)
    if policy.fail_on:
        logger.info("Fail-on rules: %s", ", ".join(sorted(policy.fail_on)))

    if dry_run:
        logger.warning("DRY RUN - no filesystem will be read")
        sys.exit(0)

    targets = []
    if users:
        targets.extend(discover_user_targets(home_root, parse_list(users)))
    elif all_users:
        targets.extend(discover_user_targets(home_root))
    if include_system:
        targets.extend(discover_system_targets(Path(p) for p in parse_list(system_paths, ":")))

    results = audit_targets(targets, policy, weights)
    summary = summarize(
        results,
        fail_on=policy.fail_on,
        risk_enabled=weights is not None,
        top_n=weights.top_n if weights is not None else 5,
    )

    if as_json or output:
        report = build_json_report(
            results, summary, home_root=str(home_root), risk_error=risk_error
        )
        _write_json(report, output)

    if not as_json or output:
        _render_summary(summary)
        if weights is not None:
            _render_risk(results, summary, detail=risk_detail)

    sys.exit(exit_code(summary))


@cli.command()
@click.option(
    "--risk-config",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Risk weight config file (KEY=VALUE or YAML).",
)
@click.option("--format", "output_format", type=click.Choice(["rich", "json"]), default="rich")
def weights(risk_config: Path | None, output_format: str) -> None:
    """Show the effective risk weights and where they came from."""
    _setup_logging(False)
    try:
        effective, source = load_risk_weights(risk_config)
    except RiskConfigError as e:
        err_console.print(f"[red]Invalid risk config: {escape(str(e))}[/red]")
        sys.exit(1)

    if output_format == "json":
        click.echo(
            json.dumps(
                {"source": str(source) if source else None, "weights": effective.model_dump()},
                indent=2,
            )
        )
        return

    table = Table(title=f"Risk weights ({escape(str(source)) if source else 'built-in defaults'})")
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    for name, value in effective.model_dump().items():
        table.add_row(name, str(value))
    console.print(table)
