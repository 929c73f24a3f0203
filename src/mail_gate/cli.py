# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for mail-gate.

Usage:
    mail-gate serve --port 8000
    mail-gate check 203.0.113.7
    mail-gate stats 203.0.113.7
    mail-gate validate message.json
    mail-gate sanitize body.html

Every command reads the same configuration as the server: ``--config``
(or ``GMG_CONFIG``) plus the ``GMG_*`` environment variables.

Example:
    $ mail-gate --config /etc/mail-gate/config.ini validate message.json
    $ echo '<p>hi</p><script>x()</script>' | mail-gate sanitize -
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from .config_loader import GateConfig, load_gate_config
from .history import create_history_store
from .logger import configure_logging
from .rate_limit import RateLimiter
from .validator import ContentValidator

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


async def _with_limiter(config: GateConfig, operation: str, identity: str):
    store = create_history_store(config.db_path)
    await store.init()
    try:
        limiter = RateLimiter(store, config.rate_limit)
        return await getattr(limiter, operation)(identity)
    finally:
        await store.close()


@click.group()
@click.option("--config", "config_path", envvar="GMG_CONFIG", type=click.Path(dir_okay=False), help="Path to config.ini")
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """mail-gate: rate limiting and content checks for outbound email."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_gate_config(config_path)
    except ValueError as exc:
        print_error(f"Invalid configuration: {exc}")
        sys.exit(2)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Bind port (default from config)")
@click.option("--log-level", envvar="GMG_LOG_LEVEL", default="INFO", show_default=True)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, log_level: str) -> None:
    """Run the HTTP dispatch endpoint with uvicorn."""
    import uvicorn

    config: GateConfig = ctx.obj["config"]
    if ctx.obj["config_path"]:
        os.environ["GMG_CONFIG"] = ctx.obj["config_path"]
    configure_logging(log_level)
    uvicorn.run(
        "mail_gate.server:app",
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=log_level.lower(),
    )


@main.command()
@click.argument("identity")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def check(ctx: click.Context, identity: str, as_json: bool) -> None:
    """Tell whether IDENTITY may send another email now."""
    decision = run_async(_with_limiter(ctx.obj["config"], "check", identity))
    if as_json:
        print_json(decision.model_dump(by_alias=True))
    elif decision.allowed:
        print_success(f"{identity} may send")
    else:
        print_error(f"{decision.reason} (retry after {decision.retry_after}s)")
    if not decision.allowed:
        sys.exit(1)


@main.command()
@click.argument("identity")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stats(ctx: click.Context, identity: str, as_json: bool) -> None:
    """Show send counts and remaining quota for IDENTITY."""
    snapshot = run_async(_with_limiter(ctx.obj["config"], "stats", identity))
    if as_json:
        print_json(snapshot.model_dump(by_alias=True))
        return

    table = Table(title=f"Usage for {identity}")
    table.add_column("Window", style="cyan")
    table.add_column("Sent", justify="right")
    table.add_column("Remaining", justify="right", style="green")
    table.add_row("minute", str(snapshot.sent_last_minute), str(snapshot.remaining_minute))
    table.add_row("hour", str(snapshot.sent_last_hour), str(snapshot.remaining_hour))
    table.add_row("day", str(snapshot.sent_last_day), str(snapshot.remaining_day))
    console.print(table)


@main.command()
@click.argument("message_file", type=click.File("r"))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def validate(ctx: click.Context, message_file, as_json: bool) -> None:
    """Run the content checks on a JSON message (``-`` for stdin)."""
    try:
        payload = json.load(message_file)
    except json.JSONDecodeError as exc:
        print_error(f"Invalid JSON: {exc}")
        sys.exit(2)
    if not isinstance(payload, dict):
        print_error("Message must be a JSON object")
        sys.exit(2)

    result = ContentValidator(ctx.obj["config"].validation).validate(payload)
    if as_json:
        print_json(result.model_dump())
    elif result.valid:
        print_success("Message passed all checks")
    else:
        table = Table(title="Violations")
        table.add_column("Field", style="cyan")
        table.add_column("Reason", style="red")
        for name, reasons in result.details.items():
            for reason in reasons:
                table.add_row(name, reason)
        console.print(table)
    if not result.valid:
        sys.exit(1)


@main.command()
@click.argument("html_file", type=click.File("r"))
@click.pass_context
def sanitize(ctx: click.Context, html_file) -> None:
    """Print HTML_FILE with all markup outside the allow-list removed."""
    validator = ContentValidator(ctx.obj["config"].validation)
    click.echo(validator.sanitize_html(html_file.read()))


if __name__ == "__main__":
    main()
