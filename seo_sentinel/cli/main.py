#!/usr/bin/env python3
"""Main CLI entry point for SEO Sentinel using Typer."""

import asyncio
import logging
from enum import IntEnum
from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from .. import __version__
from ..audit.aggregation import AuditSummary, ManipulationReport, ManipulationSeverity
from ..audit.auditors.visual import VisualSeverity
from ..audit.baselines.store import BaselineKind
from ..audit.config.loader import ConfigLoadError, SentinelConfig, load_config, save_default_config
from ..audit.errors import EngineInitializationError
from ..audit.models.audit import AuditOptions, ProgressEvent
from ..audit.models.crawl import DiscoveryOptions
from ..audit.runner import AuditRun, LandingPageAuditor, create_baseline_store


class ExitCode(IntEnum):
    """CLI exit codes for CI/CD integration."""
    SUCCESS = 0            # No blocking issues
    ISSUES_FOUND = 1       # Blocking issues or failed pages
    MANIPULATION = 2       # Heading manipulation with compensating styling
    CONFIG_ERROR = 3       # Configuration or setup error
    RUNTIME_ERROR = 4      # Runtime error during execution


app = typer.Typer(
    name="seo-sentinel",
    help="SEO Sentinel - heading manipulation and visual regression auditing",
    add_completion=False,
)

DEFAULT_CONFIG_PATH = Path("config/sentinel.yaml")

baselines_app = typer.Typer(help="Inspect and manage stored baselines", add_completion=False)
app.add_typer(baselines_app, name="baselines")


def _configure_logging(config: SentinelConfig, verbose: bool = False, quiet: bool = False) -> None:
    level = config.logging.level
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "WARNING"
    logging.basicConfig(level=getattr(logging, level), format=config.logging.format)


def _load(config_file: Optional[Path], env: Optional[str], overrides: Optional[dict] = None) -> SentinelConfig:
    try:
        if config_file is None:
            config_file = DEFAULT_CONFIG_PATH
            if not config_file.exists():
                return SentinelConfig(**(overrides or {}))
        return load_config(str(config_file), environment=env, overrides=overrides)
    except ConfigLoadError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)
    except ValueError as e:
        typer.echo(f"❌ Invalid configuration: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)


def _print_summary(summary: AuditSummary, report: ManipulationReport) -> None:
    typer.echo("")
    typer.echo(f"Audit {summary.audit_id}")
    typer.echo(f"  Landing page:      {summary.landing_url}")
    typer.echo(f"  URLs audited:      {summary.successful_audits}/{summary.total_urls} ({summary.success_rate}%)")
    typer.echo(f"  Score:             {summary.audit_score}")
    typer.echo(f"  Critical issues:   {summary.critical_issues}")
    typer.echo(f"  Warnings:          {summary.total_warnings}")
    typer.echo(f"  H1 manipulations:  {summary.h1_manipulations}")
    typer.echo(f"  Visual changes:    {summary.visual_changes}")
    typer.echo(f"  Duration:          {summary.duration:.1f}s")
    if summary.error:
        typer.echo(f"  Error:             {summary.error}")

    critical = [m for m in report.heading_manipulations if m.severity == ManipulationSeverity.CRITICAL]
    if critical:
        typer.echo("")
        typer.echo(f"🚨 {len(critical)} heading manipulations with compensating styling:")
        for manipulation in critical:
            typer.echo(f"   {manipulation.url}: {manipulation.from_tag} -> {manipulation.to_tag} \"{manipulation.text}\"")

    major = [c for c in report.visual_changes if c.severity == VisualSeverity.MAJOR]
    if major:
        typer.echo("")
        typer.echo(f"⚠️  {len(major)} major visual changes:")
        for change in major[:5]:
            typer.echo(f"   {change.url} - {change.element} on {change.viewport} ({change.diff_percentage:.1f}% different)")


def _exit_code(run: AuditRun) -> ExitCode:
    if run.summary.is_failure:
        return ExitCode.RUNTIME_ERROR
    if run.manipulation_report.summary.get('critical_manipulations'):
        return ExitCode.MANIPULATION
    if run.summary.critical_issues or run.summary.failed_audits:
        return ExitCode.ISSUES_FOUND
    return ExitCode.SUCCESS


def _run_audit(
    config: SentinelConfig,
    url: str,
    discovery: DiscoveryOptions,
    options: AuditOptions,
    output: Optional[Path],
    quiet: bool,
    recreate: bool
) -> None:
    def on_progress(event: ProgressEvent) -> None:
        if quiet:
            return
        marker = "✅" if event.result.success else "❌"
        typer.echo(f"[{event.current}/{event.total}] {marker} {event.url} (score {event.result.score})")

    auditor = LandingPageAuditor(config)
    try:
        if recreate:
            run = asyncio.run(auditor.recreate_baselines(url, discovery, options, on_progress))
        else:
            run = asyncio.run(auditor.audit_landing_page(url, discovery, options, on_progress))
    except EngineInitializationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)
    except KeyboardInterrupt:
        typer.echo("❌ Operation interrupted by user", err=True)
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(run.model_dump_json(indent=2))
        typer.echo(f"Results written to {output}")

    if not quiet:
        if recreate:
            typer.echo(f"Deleted {run.baselines_deleted} baselines before re-auditing")
        _print_summary(run.summary, run.manipulation_report)

    raise typer.Exit(code=_exit_code(run).value)


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"SEO Sentinel v{__version__}")


@app.command()
def audit(
    url: Annotated[str, typer.Argument(help="Landing page URL to crawl and audit")],
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration file")
    ] = None,
    env: Annotated[
        Optional[str],
        typer.Option("--env", "-e", help="Environment overrides to apply")
    ] = None,
    max_depth: Annotated[
        Optional[int],
        typer.Option("--max-depth", help="Maximum link depth from the landing page")
    ] = None,
    max_urls: Annotated[
        Optional[int],
        typer.Option("--max-urls", help="Maximum number of URLs to discover")
    ] = None,
    follow_external: Annotated[
        bool,
        typer.Option("--follow-external", help="Follow links to other hosts")
    ] = False,
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", help="Pages audited at the same time (1-10)")
    ] = None,
    only: Annotated[
        Optional[List[str]],
        typer.Option("--only", help="Run only these auditors")
    ] = None,
    skip: Annotated[
        Optional[List[str]],
        typer.Option("--skip", help="Skip these auditors")
    ] = None,
    headful: Annotated[
        bool,
        typer.Option("--headful", help="Run browser with GUI (for debugging)")
    ] = False,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the full run as JSON")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Only print errors")] = False,
):
    """
    Crawl a landing page and audit every discovered URL.

    The first audit of a URL captures its baselines; later audits report
    heading manipulation and visual regressions against them.
    """
    overrides = {}
    if concurrency is not None:
        overrides["audit"] = {"concurrent_limit": concurrency}
    if headful:
        overrides["browser"] = {"headless": False}

    config = _load(config_file, env, overrides)
    _configure_logging(config, verbose, quiet)

    discovery = DiscoveryOptions(
        max_depth=max_depth,
        max_urls=max_urls,
        follow_external_links=True if follow_external else None,
    )
    options = AuditOptions(only=set(only) if only else None, skip=set(skip or []))
    _run_audit(config, url, discovery, options, output, quiet, recreate=False)


@baselines_app.command(name="list")
def list_baselines(
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration file")
    ] = None,
    env: Annotated[Optional[str], typer.Option("--env", "-e")] = None,
    kind: Annotated[
        Optional[BaselineKind],
        typer.Option("--kind", "-k", help="Only list baselines of this kind")
    ] = None,
):
    """List stored baselines."""
    config = _load(config_file, env)
    _configure_logging(config)
    store = create_baseline_store(config.baselines)

    keys = asyncio.run(store.list_keys(kind))
    for key in keys:
        typer.echo(f"{key.kind.value:<11} {key.name}")
    typer.echo(f"{len(keys)} baselines")


@baselines_app.command(name="clear")
def clear_baselines(
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration file")
    ] = None,
    env: Annotated[Optional[str], typer.Option("--env", "-e")] = None,
    kind: Annotated[
        Optional[BaselineKind],
        typer.Option("--kind", "-k", help="Only clear baselines of this kind")
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
):
    """Delete stored baselines so the next audit captures new ones."""
    config = _load(config_file, env)
    _configure_logging(config)

    target = f"{kind.value} baselines" if kind else "all baselines"
    if not yes:
        typer.confirm(f"Delete {target} in {config.baselines.path}?", abort=True)

    store = create_baseline_store(config.baselines)
    deleted = asyncio.run(store.clear(kind))
    typer.echo(f"Deleted {deleted} baselines")


@baselines_app.command(name="recreate")
def recreate_baselines(
    url: Annotated[str, typer.Argument(help="Landing page URL")],
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration file")
    ] = None,
    env: Annotated[Optional[str], typer.Option("--env", "-e")] = None,
    max_depth: Annotated[Optional[int], typer.Option("--max-depth")] = None,
    max_urls: Annotated[Optional[int], typer.Option("--max-urls")] = None,
    output: Annotated[Optional[Path], typer.Option("--output", "-o")] = None,
    quiet: Annotated[bool, typer.Option("--quiet", "-q")] = False,
):
    """Delete the baselines of every URL reachable from a landing page and capture new ones."""
    config = _load(config_file, env)
    _configure_logging(config, quiet=quiet)
    discovery = DiscoveryOptions(max_depth=max_depth, max_urls=max_urls)
    _run_audit(config, url, discovery, AuditOptions(), output, quiet, recreate=True)


@app.command(name="init-config")
def init_config(
    path: Annotated[
        Path,
        typer.Argument(help="Where to write the configuration file")
    ] = DEFAULT_CONFIG_PATH,
    force: Annotated[bool, typer.Option("--force", help="Overwrite an existing file")] = False,
):
    """Write a starter configuration file."""
    if path.exists() and not force:
        typer.echo(f"❌ {path} already exists (use --force to overwrite)", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)
    try:
        save_default_config(str(path))
    except ConfigLoadError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)
    typer.echo(f"✅ Wrote default configuration to {path}")


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
