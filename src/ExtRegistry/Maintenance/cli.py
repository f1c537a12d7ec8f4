# === NAVMAP v1 ===
# {
#   "module": "ExtRegistry.Maintenance.cli",
#   "purpose": "Typer CLI for running workers, startup triggers, key lifecycle and queue inspection",
#   "sections": [
#     {"id": "run", "name": "run", "anchor": "function-run", "kind": "function"},
#     {"id": "bootstrap", "name": "bootstrap", "anchor": "function-bootstrap", "kind": "function"},
#     {"id": "keys", "name": "keys_app", "anchor": "keys-app", "kind": "group"},
#     {"id": "reconcile", "name": "reconcile", "anchor": "function-reconcile", "kind": "function"},
#     {"id": "queue", "name": "queue_app", "anchor": "queue-app", "kind": "group"},
#     {"id": "config", "name": "config_app", "anchor": "config-app", "kind": "group"}
#   ]
# }
# === /NAVMAP ===

"""Command line entry point for the maintenance subsystem.

**Usage:**

    # Schedule startup triggers and work the queue until it drains
    extreg-maintenance run --config maintenance.yaml --drain

    # Only schedule startup triggers (one member of the fleet)
    extreg-maintenance bootstrap -c maintenance.yaml

    # Key lifecycle
    extreg-maintenance keys renew

    # Reconcile public ids for one extension, or all of them
    extreg-maintenance reconcile acme widget
    extreg-maintenance reconcile

    # Queue inspection
    extreg-maintenance queue stats --format json
    extreg-maintenance queue retry-failed --dry-run
"""

from __future__ import annotations

import json
import logging
import time
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ExtRegistry.Maintenance.bootstrap import MaintenanceApp
from ExtRegistry.Maintenance.config import (
    KEYPAIR_MODE_CREATE,
    KEYPAIR_MODE_DELETE,
    KEYPAIR_MODE_RENEW,
    MaintenanceConfig,
    export_config_schema,
    load_config,
)
from ExtRegistry.Maintenance.logging_config import setup_logging
from ExtRegistry.Maintenance.orchestrator.models import JobState

__all__ = ["app"]

LOGGER = logging.getLogger(__name__)

console = Console()
app = typer.Typer(help="Extension registry migration and integrity maintenance")
keys_app = typer.Typer(help="Signing key pair lifecycle")
queue_app = typer.Typer(help="Persistent job queue inspection")
config_app = typer.Typer(help="Configuration inspection")
app.add_typer(keys_app, name="keys")
app.add_typer(queue_app, name="queue")
app.add_typer(config_app, name="config")

CONFIG_OPTION = typer.Option(
    None, "--config", "-c", help="Config file path (YAML/JSON)", envvar="MAINTENANCE_CONFIG"
)


def _load(
    config: Optional[str], verbose: bool = False, overrides: Optional[dict] = None
) -> MaintenanceConfig:
    cli_overrides = dict(overrides or {})
    if verbose:
        cli_overrides["logging"] = {"level": "DEBUG"}
    cfg = load_config(config, cli_overrides=cli_overrides)
    setup_logging(cfg.logging)
    return cfg


def _fail(exc: Exception, verbose: bool = False) -> None:
    console.print(f"[red]✗ Error: {exc}[/red]")
    if verbose:
        raise exc
    raise typer.Exit(code=1)


def _print_stats(stats: dict[str, int]) -> None:
    table = Table(title="Job queue")
    table.add_column("State")
    table.add_column("Jobs", justify="right")
    for key, value in stats.items():
        table.add_row(key, str(value))
    console.print(table)


# ============================================================================
# Worker and startup commands
# ============================================================================


@app.command()
def run(
    config: Optional[str] = CONFIG_OPTION,
    workers: Optional[int] = typer.Option(None, "--workers", help="Number of worker threads"),
    drain: bool = typer.Option(False, "--drain", help="Process ready jobs, then exit"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Give up draining after this many seconds"
    ),
    skip_startup: bool = typer.Option(
        False, "--skip-startup", help="Do not schedule startup triggers"
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Schedule startup triggers and run the worker pool."""
    try:
        overrides = {"orchestrator": {"max_workers": workers}} if workers else None
        cfg = _load(config, verbose, overrides)
        maintenance = MaintenanceApp.from_config(cfg)
    except Exception as e:
        _fail(e, verbose)
        return

    try:
        if not skip_startup:
            maintenance.on_startup()
        console.print(
            Panel(
                f"[bold green]✓ Maintenance ready[/bold green]\n"
                f"Registry version: {cfg.registry_version or '-'}\n"
                f"Workers: {cfg.orchestrator.max_workers}\n"
                f"Config hash: {cfg.config_hash()[:8]}...",
                title="ExtRegistry maintenance",
            )
        )
        if drain:
            idle = maintenance.orchestrator.run_until_idle(timeout=timeout)
            _print_stats(maintenance.queue.stats())
            if not idle:
                console.print("[yellow]ⓘ Timed out with jobs still ready[/yellow]")
                raise typer.Exit(code=2)
            return

        maintenance.orchestrator.start()
        try:
            while True:
                time.sleep(cfg.orchestrator.heartbeat_seconds)
                LOGGER.debug(f"Queue: {maintenance.queue.stats()}")
        except KeyboardInterrupt:
            console.print("Stopping workers...")
        finally:
            maintenance.orchestrator.stop()
    finally:
        maintenance.close()


@app.command()
def bootstrap(
    config: Optional[str] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Schedule the startup triggers without running workers."""
    try:
        cfg = _load(config, verbose)
        maintenance = MaintenanceApp.from_config(cfg)
        try:
            job_ids = maintenance.on_startup()
        finally:
            maintenance.close()
    except Exception as e:
        _fail(e, verbose)
        return
    console.print(f"[green]✓ Startup triggers scheduled ({len(job_ids)} jobs)[/green]")
    for job_id in job_ids:
        console.print(f"  - {job_id}")


@app.command()
def reconcile(
    namespace: Optional[str] = typer.Argument(None, help="Namespace name"),
    extension: Optional[str] = typer.Argument(None, help="Extension name"),
    config: Optional[str] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Reconcile public ids with the upstream gallery."""
    if (namespace is None) != (extension is None):
        console.print("[red]✗ Pass both NAMESPACE and EXTENSION, or neither[/red]")
        raise typer.Exit(code=1)
    try:
        maintenance = MaintenanceApp.from_config(_load(config, verbose))
        try:
            reconciler = maintenance.services.reconciler
            if namespace is None:
                result = reconciler.update_all()
            else:
                result = reconciler.update(namespace, extension)
        finally:
            maintenance.close()
    except Exception as e:
        _fail(e, verbose)
        return

    table = Table(title=f"Public id changes ({result.changed})")
    table.add_column("Entity")
    table.add_column("Id", justify="right")
    table.add_column("New public id")
    for entity_id, public_id in sorted(result.extensions.items()):
        table.add_row("extension", str(entity_id), public_id)
    for entity_id, public_id in sorted(result.namespaces.items()):
        table.add_row("namespace", str(entity_id), public_id)
    console.print(table)


# ============================================================================
# Key pair lifecycle
# ============================================================================


def _keys(mode: str, config: Optional[str], verbose: bool) -> None:
    try:
        maintenance = MaintenanceApp.from_config(_load(config, verbose))
        try:
            maintenance.services.keys.run(mode)
            active = maintenance.services.keys.active_key_pair()
            stats = maintenance.queue.stats()
        finally:
            maintenance.close()
    except Exception as e:
        _fail(e, verbose)
        return
    console.print(
        f"[green]✓ {mode} done[/green] "
        f"(active key: {active.public_id if active else 'none'}, queued jobs: {stats['queued']})"
    )


@keys_app.command("create")
def keys_create(
    config: Optional[str] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Ensure an active key pair exists and sign what it has not signed yet."""
    _keys(KEYPAIR_MODE_CREATE, config, verbose)


@keys_app.command("renew")
def keys_renew(
    config: Optional[str] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Rotate to a new key pair and re-sign every published version."""
    _keys(KEYPAIR_MODE_RENEW, config, verbose)


@keys_app.command("purge")
def keys_purge(
    config: Optional[str] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Delete every signature and key pair."""
    _keys(KEYPAIR_MODE_DELETE, config, verbose)


# ============================================================================
# Queue inspection
# ============================================================================


@queue_app.command("stats")
def queue_stats(
    config: Optional[str] = CONFIG_OPTION,
    format: str = typer.Option("table", "--format", help="Output format: table|json"),
) -> None:
    """Display job counts per state and the recurring schedules."""
    try:
        maintenance = MaintenanceApp.from_config(_load(config))
        try:
            stats = maintenance.queue.stats()
            recurring = maintenance.queue.list_recurring()
            pending = maintenance.services.sweeper.pending_by_kind()
        finally:
            maintenance.close()
    except Exception as e:
        _fail(e)
        return

    if format == "json":
        typer.echo(
            json.dumps(
                {
                    "jobs": stats,
                    "recurring": [
                        {"name": r["name"], "cron": r["cron"], "next_run_at": r["next_run_at"]}
                        for r in recurring
                    ],
                    "pending_migrations": pending,
                },
                indent=2,
            )
        )
        return

    _print_stats(stats)
    schedules = Table(title="Recurring jobs")
    schedules.add_column("Name")
    schedules.add_column("Cron")
    schedules.add_column("Next run (UTC)")
    for row in recurring:
        schedules.add_row(row["name"], row["cron"], row["next_run_at"])
    console.print(schedules)
    if pending:
        migrations = Table(title="Pending migrations")
        migrations.add_column("Kind")
        migrations.add_column("Items", justify="right")
        for kind, count in pending.items():
            migrations.add_row(kind, str(count))
        console.print(migrations)


@queue_app.command("retry-failed")
def queue_retry_failed(
    config: Optional[str] = CONFIG_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be retried"),
) -> None:
    """Re-arm every job in the error state with a fresh retry budget."""
    try:
        maintenance = MaintenanceApp.from_config(_load(config))
        try:
            failed = maintenance.queue.find(state=JobState.ERROR.value)
            if not failed:
                console.print("No failed jobs to retry")
                return
            console.print(f"Found {len(failed)} failed jobs:")
            for job in failed:
                console.print(f"  - {job['job_id']} ({job['kind']}): {job['last_error']}")
            if dry_run:
                console.print("\n[green]✓ Dry run complete (no changes made)[/green]")
                return
            retried = maintenance.queue.retry_failed()
        finally:
            maintenance.close()
    except Exception as e:
        _fail(e)
        return
    console.print(f"\n[green]✓ Retried {retried} jobs[/green]")


# ============================================================================
# Configuration
# ============================================================================


@config_app.command("show")
def config_show(config: Optional[str] = CONFIG_OPTION) -> None:
    """Print the merged configuration (file < environment)."""
    try:
        cfg = load_config(config)
    except Exception as e:
        _fail(e)
        return
    typer.echo(json.dumps(cfg.model_dump(mode="json"), indent=2))


@config_app.command("schema")
def config_schema() -> None:
    """Print the JSON Schema of the configuration."""
    typer.echo(json.dumps(export_config_schema(), indent=2))


if __name__ == "__main__":
    app()
