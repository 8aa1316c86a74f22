"""roster_sync.cli

CLI entrypoint for the roster -> Notion sync.

Modes (--mode):
  scheduled  - run now, then every --interval-hours, forever (default)
  once       - single run; exit 1 if the run hit a fatal error
  lookup     - show the Notion page(s) for --member-id

Usage:
    roster-sync --mode scheduled --config-file config/sync.example.yml

    roster-sync --mode once --dry-run --report-dir ./artifacts/reports

    roster-sync --mode lookup --member-id M-0042

Credentials come from the environment (optionally loaded from --env-file);
see roster_sync.config.REQUIRED_ENV_VARS.
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click
import requests
from dotenv import load_dotenv

from roster_sync.config import ConfigError, SyncSettings, load_settings
from roster_sync.notion_client import NotionApiError
from roster_sync.pipeline import build_store, run_sync
from roster_sync.scheduler import run_scheduled
from roster_sync.shared import SyncCounters, build_sync_report, write_run_report

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def _run_and_report(
    settings: SyncSettings,
    run_id: str,
    dry_run: bool,
    report_dir: str | None,
) -> SyncCounters:
    started_at = datetime.now(timezone.utc).isoformat()
    counters = run_sync(settings, dry_run=dry_run)
    click.echo(f"[{run_id}]\n{build_sync_report(counters)}")
    if report_dir:
        report_path = write_run_report(
            run_id, started_at, counters, Path(report_dir),
            {"csv_url": settings.csv_url},
        )
        click.echo(f"[{run_id}] Run report: {report_path}")
    return counters


@click.command()
@click.option(
    "--mode",
    default="scheduled",
    type=click.Choice(["scheduled", "once", "lookup"]),
    show_default=True,
    help="Run mode",
)
@click.option("--config-file", default=None, type=click.Path(exists=True, dir_okay=False), help="YAML tunables file")
@click.option("--env-file", default=None, type=click.Path(exists=True, dir_okay=False), help="dotenv file to load before reading the environment")
@click.option("--interval-hours", default=24.0, type=float, show_default=True, help="[scheduled] Hours between run starts")
@click.option("--dry-run", is_flag=True, default=False, help="[scheduled|once] Read only: no Notion writes, no email")
@click.option("--report-dir", default=None, type=click.Path(file_okay=False), help="[scheduled|once] Write a JSON run report per run here")
@click.option("--member-id", default=None, help="[lookup] Member ID to look up")
@click.option("--run-id", default=None, help="[once] Override UUID for log correlation")
@click.option("--verbose", is_flag=True, default=False, help="DEBUG logging")
def main(
    mode: str,
    config_file: str | None,
    env_file: str | None,
    interval_hours: float,
    dry_run: bool,
    report_dir: str | None,
    member_id: str | None,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Sync the published member roster into Notion and mail the contacts."""
    _configure_logging(verbose)
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    try:
        settings = load_settings(os.environ, Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"FATAL: {exc}", err=True)
        sys.exit(1)

    if mode == "lookup":
        if not member_id:
            click.echo("FATAL: lookup mode requires: --member-id", err=True)
            sys.exit(1)
        store = build_store(settings, requests.Session())
        try:
            records = store.find_by_identifier(member_id)
        except (NotionApiError, requests.RequestException) as exc:
            click.echo(f"FATAL: lookup failed: {exc}", err=True)
            sys.exit(1)
        if not records:
            click.echo(f"No Notion page for Member ID {member_id!r}")
            return
        for rec in records:
            click.echo(f"{rec.identifier}\t{rec.page_id}")
        return

    if mode == "once":
        run_id = run_id or str(uuid.uuid4())
        click.echo(f"[{run_id}] Starting once run (dry_run={dry_run})")
        counters = _run_and_report(settings, run_id, dry_run, report_dir)
        if not counters.ok:
            sys.exit(1)
        return

    if interval_hours <= 0:
        click.echo("FATAL: --interval-hours must be > 0", err=True)
        sys.exit(1)

    def job() -> None:
        job_run_id = str(uuid.uuid4())
        click.echo(f"[{job_run_id}] Starting scheduled run (dry_run={dry_run})")
        _run_and_report(settings, job_run_id, dry_run, report_dir)

    run_scheduled(job, interval_hours, settings.timezone)


if __name__ == "__main__":
    main()
