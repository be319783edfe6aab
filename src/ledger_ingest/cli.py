"""CLI entry point for ledger-ingest."""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
from typing import IO, TYPE_CHECKING, Any

import click

from ledger_ingest.adapters.imap import ImapMailbox
from ledger_ingest.app import build_pipeline
from ledger_ingest.config import (
    get_imap_config,
    get_log_level,
    get_pipeline_config,
)
from ledger_ingest.db import get_connection, init_schema
from ledger_ingest.errors import (
    PayloadValidationError,
    internal_error_body,
    validation_error_body,
)
from ledger_ingest.ingestion import parse_sms_payload

if TYPE_CHECKING:
    from ledger_ingest.app import Pipeline

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _pipeline(*, with_mailbox: bool) -> Pipeline:
    config = get_pipeline_config()
    mailbox = ImapMailbox(get_imap_config()) if with_mailbox else None
    return build_pipeline(config, mailbox=mailbox)


@click.group()
@click.option("--log-level", default=None, help="Overrides LOG_LEVEL.")
def cli(log_level: str | None) -> None:
    """Ledger Ingest: turn bank SMS and emails into transactions and holdings."""
    _configure_logging((log_level or get_log_level()).upper())


@cli.command("init-db")
def init_db() -> None:
    """Create database tables."""
    with get_connection() as conn:
        init_schema(conn)
    click.echo("Schema ready.")


@cli.command("ingest-sms")
@click.argument("payload_file", type=click.File("r"), default="-")
def ingest_sms(payload_file: IO[str]) -> None:
    """Ingest one SMS payload given as JSON (file or stdin)."""
    try:
        data = json.load(payload_file)
    except json.JSONDecodeError as exc:
        _echo_json(
            validation_error_body(
                PayloadValidationError([{"field": "payload", "message": str(exc)}])
            )
        )
        sys.exit(1)

    pipeline = _pipeline(with_mailbox=False)
    try:
        result = pipeline.coordinator.ingest_sms(parse_sms_payload(data))
    except PayloadValidationError as exc:
        _echo_json(validation_error_body(exc))
        sys.exit(1)
    except Exception:
        logger.exception("SMS ingestion failed")
        _echo_json(internal_error_body())
        sys.exit(1)
    finally:
        pipeline.dispatcher.shutdown(wait=True)

    _echo_json(result.acknowledgment())


@cli.command()
def poll() -> None:
    """Run a single mailbox poll tick."""
    pipeline = _pipeline(with_mailbox=True)
    try:
        if pipeline.poller is None:
            raise click.ClickException("Mailbox poller is not configured")
        report = pipeline.poller.poll_once()
    finally:
        pipeline.dispatcher.shutdown(wait=True)
    _echo_json(dataclasses.asdict(report))


@cli.command()
def sweep() -> None:
    """Run a single backlog sweep."""
    pipeline = _pipeline(with_mailbox=False)
    try:
        report = pipeline.sweeper.sweep()
    finally:
        pipeline.dispatcher.shutdown(wait=True)
    _echo_json(dataclasses.asdict(report))


@cli.command()
def run() -> None:
    """Run the backlog sweeper and, if enabled, the mailbox poller."""
    config = get_pipeline_config()
    mailbox = ImapMailbox(get_imap_config()) if config.poll_enabled else None
    pipeline = build_pipeline(config, mailbox=mailbox)
    click.echo("Running; press Ctrl+C to stop.")
    pipeline.run_forever()
