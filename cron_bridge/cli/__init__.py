"""Entry points for the command-line interface.

The ``cron-bridge`` command inspects both schedulers, runs due tasks and
manages the manifest cache.
"""

from __future__ import annotations

import click  # noqa: F401 - re-exported for CLI extensions

import typer

from ..errors import BridgeError
from ..manifest_cache import VERSION_OPTION
from ..metrics import start_metrics_server
from ..runtime import Bridge, get_default_bridge
from ..scheduler.queue import ActionStatus
import cron_bridge as cb


app = typer.Typer(help="Inspect and drive the cron bridge")
cache_app = typer.Typer(help="Manage the manifest cache")
app.add_typer(cache_app, name="cache")

_config_path: str | None = None


@app.callback()
def _global_options(
    metrics_port: int | None = typer.Option(
        None,
        "--metrics-port",
        help="Expose Prometheus metrics on PORT before executing the command",
    ),
    config: str | None = typer.Option(
        None,
        "--config",
        help="Path to a YAML configuration file",
    ),
) -> None:
    """Handle global options for the CLI."""

    global _config_path
    _config_path = config
    if metrics_port is not None:
        start_metrics_server(metrics_port)


def _bridge() -> Bridge:
    if _config_path is None:
        try:
            return get_default_bridge()
        except RuntimeError:
            pass
    return cb.initialize(_config_path)


@app.command("list")
def list_tasks() -> None:
    """List tasks waiting in the polling scheduler."""

    bridge = _bridge()
    for task in bridge.polling.list_tasks():
        schedule = task.schedule or "once"
        typer.echo(f"{task.timestamp}\t{task.hook}\t{schedule}\t{list(task.args)}")


@app.command("schedules")
def list_schedules() -> None:
    """List the interval catalog."""

    bridge = _bridge()
    for name, entry in sorted(
        bridge.polling.list_catalog().items(), key=lambda item: item[1].interval_seconds
    ):
        typer.echo(f"{name}\t{entry.interval_seconds}\t{entry.display_label}")


@app.command("actions")
def list_actions(
    hook: str | None = typer.Option(None, "--hook", help="Only show actions for HOOK"),
    status: str = typer.Option(
        ActionStatus.PENDING.value, "--status", help="Action status to show"
    ),
) -> None:
    """List actions held by the queue."""

    bridge = _bridge()
    try:
        wanted = ActionStatus(status)
    except ValueError as exc:
        typer.echo(f"error: unknown status '{status}'", err=True)
        raise typer.Exit(code=1) from exc
    for action in bridge.queue.query_pending_actions(hook, status=wanted):
        every = f"every {action.recurrence}s" if action.recurrence else "once"
        typer.echo(f"{action.action_id}\t{action.timestamp}\t{action.hook}\t{every}")


@app.command("run")
def run() -> None:
    """Run every due polling-scheduler task."""

    bridge = _bridge()
    try:
        ran = bridge.polling.run_due()
    except BridgeError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"ran {ran} task(s)")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
) -> None:
    """Serve the HTTP API for the default bridge."""

    from ..api import start_server

    _bridge()
    start_server(host, port)


@cache_app.command("flush")
def cache_flush() -> None:
    """Write a pending manifest change to the durable table."""

    bridge = _bridge()
    if not bridge.cache.active:
        typer.echo("error: manifest cache is not active", err=True)
        raise typer.Exit(code=1)
    if bridge.cache.flush():
        typer.echo("manifest flushed")
    else:
        typer.echo("error: flush failed", err=True)
        raise typer.Exit(code=1)


@cache_app.command("revert")
def cache_revert() -> None:
    """Move the cached manifest back into the option store."""

    bridge = _bridge()
    if bridge.cache.revert():
        typer.echo("manifest restored to option store")
    else:
        typer.echo("no cached manifest to restore")


@cache_app.command("status")
def cache_status() -> None:
    """Show whether the manifest cache is in use."""

    bridge = _bridge()
    typer.echo(f"active\t{bridge.cache.active}")
    typer.echo(f"flush_pending\t{bridge.cache.flush_pending}")
    typer.echo(f"schema\t{bridge.options.get(VERSION_OPTION)}")
    typer.echo(f"table\t{bridge.table.name}")


def main(argv: list[str] | None = None) -> None:
    """Run the command-line interface."""

    app(args=argv, prog_name="cron-bridge")


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
