"""
CLI interface for Notify Guard.

Provides command-line access to quotas, subscriptions and push reminders.
"""

import json
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from notify_guard.config.loader import (
    ConfigurationError,
    database_path,
    load_notify_config,
    load_vapid_credential,
)
from notify_guard.core.dispatcher import DispatchOutcome, PushDispatcher
from notify_guard.core.fanout import FanOutResult, fan_out
from notify_guard.core.preferences import WEEKLY_REMINDER, preference_filter
from notify_guard.core.quota import QuotaLedger
from notify_guard.core.vapid import (
    KeyImportError,
    SigningError,
    endpoint_origin,
    sign_vapid_token,
)
from notify_guard.logging_config import configure_logging
from notify_guard.storage.models import PushSubscription
from notify_guard.storage.repository import (
    StorageError,
    SubscriptionRepository,
    UsageRepository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_OUTCOME_STYLE = {
    DispatchOutcome.DELIVERED: "green",
    DispatchOutcome.REJECTED: "yellow",
    DispatchOutcome.ERROR: "red",
}


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (defaults to NOTIFY_GUARD_LOG_LEVEL or WARNING)"
    )
):
    """Notify Guard CLI."""
    configure_logging(level=log_level)
    if ctx.invoked_subcommand is None:
        console.print("Notify Guard - Use --help to see available commands")


@app.command()
def init():
    """Initialize the Notify Guard database."""
    try:
        initialize_schema(database_path())
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except StorageError as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(
    subject_id: str = typer.Argument(..., help="Subject to inspect"),
    operation: str = typer.Argument(..., help="Metered operation, e.g. ai-chat"),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML file overriding the built-in quotas"
    )
):
    """Show a subject's consumption in the current window."""
    try:
        policy = load_notify_config(config_path).get_policy(operation)
        ledger = QuotaLedger(UsageRepository(database_path()))
        status = ledger.status(subject_id, policy)
    except (ConfigurationError, StorageError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Quota: {operation}")
    table.add_column("Subject")
    table.add_column("Used", justify="right")
    table.add_column("Ceiling", justify="right")
    table.add_column("Window")
    table.add_column("Resets in")
    table.add_column("State")
    table.add_row(
        subject_id,
        f"{status.used:g}",
        f"{status.ceiling:g}",
        str(status.window),
        str(status.resets_in) if status.resets_in is not None else "-",
        "[red]exceeded[/]" if status.exceeded else "[green]allowed[/]",
    )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def subscribe(
    subject_id: str = typer.Argument(...),
    endpoint: str = typer.Argument(..., help="Push service endpoint URL"),
    p256dh: str = typer.Argument(..., help="Subscriber public key (base64url)"),
    auth: str = typer.Argument(..., help="Subscriber auth secret (base64url)"),
    delivery_type: str = typer.Option("web", "--delivery-type", help="Delivery channel")
):
    """Register a push subscription for a subject."""
    try:
        endpoint_origin(endpoint)
        SubscriptionRepository(database_path()).add(PushSubscription(
            subject_id=subject_id,
            endpoint=endpoint,
            p256dh=p256dh,
            auth=auth,
            delivery_type=delivery_type
        ))
    except (ValueError, StorageError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Subscribed {subject_id}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def remind(
    subjects: List[str] = typer.Argument(..., help="Subjects to remind"),
    title: str = typer.Option("Weekly Review Reminder", "--title"),
    body: str = typer.Option(
        "Time to reflect on your week. Tap to start your review.", "--body"
    ),
    url: str = typer.Option("/app/review", "--url"),
    prune: bool = typer.Option(
        False,
        "--prune",
        help="Delete subscriptions the push service reports as gone (404 or 410)"
    ),
    config_path: Optional[str] = typer.Option(None, "--config", "-c")
):
    """Push a weekly review reminder to every device of the given subjects."""
    try:
        config = load_notify_config(config_path)
        credential = load_vapid_credential()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    subscriptions = SubscriptionRepository(database_path())
    payload = json.dumps({
        "title": title,
        "body": body,
        "url": url,
        "tag": WEEKLY_REMINDER,
    })

    try:
        with PushDispatcher(credential, timeout=config.push.timeout_seconds) as dispatcher:
            result = fan_out(
                subjects,
                lambda _subject_id: payload,
                credential,
                subscriptions,
                dispatcher=dispatcher,
                max_workers=config.push.max_workers,
                ttl_seconds=config.push.ttl_seconds,
                recipient_filter=preference_filter(subscriptions, WEEKLY_REMINDER)
            )

        _display_fan_out_result(result)

        if prune and result.expired_endpoints:
            removed = sum(
                1 for r in result.expired_endpoints
                if subscriptions.delete(r.subject_id, r.endpoint)
            )
            console.print(f"Removed {removed} stale subscription(s)")
    except StorageError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    sys.exit(EXIT_CODE_PASS)


@app.command()
def token(endpoint: str = typer.Argument(..., help="Push service endpoint URL")):
    """Print a signed VAPID token for an endpoint's push service."""
    try:
        credential = load_vapid_credential()
        signed = sign_vapid_token(
            endpoint_origin(endpoint), credential.private_key, credential.contact
        )
    except (ValueError, KeyImportError, SigningError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    typer.echo(signed)
    sys.exit(EXIT_CODE_PASS)


def _display_fan_out_result(result: FanOutResult):
    """Display one row per delivery attempt and a summary line."""
    console.print("\n[bold]Push Reminder Result[/bold]")
    console.print("-" * 40)

    if not result.results:
        console.print("\n[dim]No push subscriptions found for these subjects.[/]")
    else:
        table = Table()
        table.add_column("Subject")
        table.add_column("Endpoint", overflow="fold")
        table.add_column("Outcome")
        table.add_column("Status", justify="right")
        for r in result.results:
            style = _OUTCOME_STYLE[r.outcome]
            table.add_row(
                r.subject_id,
                r.endpoint,
                f"[{style}]{r.outcome.value}[/]",
                str(r.http_status) if r.http_status is not None else "-",
            )
        console.print(table)

    console.print(
        f"Delivered: {result.delivered_count}  "
        f"Not delivered: {result.not_delivered_count}  "
        f"Skipped by preference: {len(result.skipped_subjects)}"
    )


if __name__ == "__main__":
    app()
