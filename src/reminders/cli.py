"""CLI for reminder reconciliation: inspect and run passes from an events file."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import click
from pydantic import ValidationError

from reminders import __version__
from reminders.config import ConfigError, RemindersConfig, load_config
from reminders.core.engine import PassResult, ReconciliationEngine, plan_pass
from reminders.core.fingerprint import fingerprint
from reminders.core.logging import configure_logging
from reminders.core.metrics import init_metrics
from reminders.gateway.batching import BatchingReminderGateway
from reminders.gateway.http import HttpNotificationPlatform
from reminders.models import Event, ReconciliationState

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("reminders.toml")


class EventsFileError(Exception):
    """Raised when an events file cannot be read or validated."""


def load_events(path: Path) -> list[Event]:
    """Read events from a JSON file holding a list, or an object with an ``events`` list."""
    try:
        payload = json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        raise EventsFileError(f"Cannot read events from {path}: {exc}") from exc

    if isinstance(payload, dict):
        payload = payload.get("events")
    if not isinstance(payload, list):
        raise EventsFileError(f"{path} must contain a JSON list of events")

    try:
        return [Event.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise EventsFileError(f"Invalid event in {path}: {exc}") from exc


def _format_result(result: PassResult) -> str:
    parts = [
        f"outcome={result.outcome}",
        f"scheduled={len(result.scheduled)}",
        f"failed={len(result.failed)}",
        f"cancelled={len(result.cancelled)}",
    ]
    return " ".join(parts)


async def _reconcile_once(config: RemindersConfig, events: list[Event]) -> PassResult:
    platform = HttpNotificationPlatform(
        config.platform.base_url,
        api_token=config.platform.api_token,
        timeout_s=config.platform.timeout_s,
        max_retries=config.platform.max_retries,
    )
    gateway = BatchingReminderGateway(platform, minutes_before=config.binding.minutes_before)
    engine = ReconciliationEngine(gateway, name=config.binding.name)
    try:
        return await engine.reconcile(events)
    finally:
        await gateway.shutdown()


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Reminders: keep event reminder notifications in step with a calendar."""


@cli.command("fingerprint")
@click.argument("events_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def fingerprint_cmd(events_path: Path) -> None:
    """Print the content fingerprint of an events file."""
    try:
        events = load_events(events_path)
    except EventsFileError as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)
    click.echo(fingerprint(events))


@cli.command()
@click.argument("events_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    help="Path to reminders.toml (or a directory containing it)",
)
@click.option("--dry-run", is_flag=True, help="Print the events that would be scheduled")
def reconcile(events_path: Path, config_path: Path, dry_run: bool) -> None:
    """Run one reconciliation pass for an events file."""
    try:
        config = load_config(config_path)
        events = load_events(events_path)
    except (ConfigError, EventsFileError) as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)

    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        binding_name=config.binding.name,
    )

    if not config.binding.enabled:
        click.echo(f"Binding {config.binding.name} is disabled; nothing to do")
        return

    if dry_run:
        plan = plan_pass(events, ReconciliationState(), datetime.now(UTC))
        click.echo(f"Would schedule {len(plan.to_schedule)} event(s)")
        for event in plan.to_schedule:
            click.echo(f"  {event.id}  {event.start_time.isoformat()}  {event.title}")
        return

    init_metrics(f"reminders-{config.binding.name}")
    result = asyncio.run(_reconcile_once(config, events))
    click.echo(_format_result(result))
    for error in result.errors:
        click.echo(f"  error: {error}", err=True)
    if result.errors:
        sys.exit(2)
