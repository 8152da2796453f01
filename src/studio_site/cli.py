from __future__ import annotations

import json
from datetime import datetime

import click

from studio_site import __version__
from studio_site.config import get_safe_config_report, get_settings
from studio_site.ops.audit import AuditEventType, AuditLog, Severity
from studio_site.ops.storage import BlobStoreError, build_blob_store
from studio_site.utils.log import set_log_level


@click.group()
@click.version_option(__version__, prog_name="studio-site")
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this invocation.")
def cli(log_level: str | None) -> None:
    """
    Studio site backend tools.
    """
    if log_level:
        set_log_level(log_level)


@cli.command(name="serve")
def serve() -> None:
    """Run the API server (uvicorn on HOST:PORT)."""
    from studio_site.web.run import main

    main()


@cli.command(name="audit")
@click.option("--start", type=click.DateTime(), default=None, help="Only entries at/after this time (UTC).")
@click.option("--end", type=click.DateTime(), default=None, help="Only entries at/before this time (UTC).")
@click.option(
    "--event-type",
    type=click.Choice([e.value for e in AuditEventType], case_sensitive=False),
    default=None,
)
@click.option("--username", default=None)
@click.option(
    "--severity",
    type=click.Choice([s.value for s in Severity], case_sensitive=False),
    default=None,
)
@click.option("--limit", type=click.IntRange(min=1), default=100, show_default=True)
def audit(
    start: datetime | None,
    end: datetime | None,
    event_type: str | None,
    username: str | None,
    severity: str | None,
    limit: int,
) -> None:
    """
    Print persisted audit entries (newest first), one JSON object per line.
    """
    s = get_settings()
    log = AuditLog(
        build_blob_store(s),
        key=str(s.audit_log_filename),
        max_entries=int(s.audit_max_entries),
    )
    try:
        entries = log.query(
            start=start,
            end=end,
            event_type=event_type.upper() if event_type else None,
            username=username,
            severity=severity.lower() if severity else None,
            limit=limit,
        )
    except BlobStoreError as ex:
        raise click.ClickException(f"audit log unavailable: {ex}") from ex
    for e in entries:
        click.echo(json.dumps(e.to_dict(), sort_keys=True))


@cli.command(name="config")
def config_report() -> None:
    """Print the effective configuration (secret values are never shown)."""
    click.echo(json.dumps(get_safe_config_report(), indent=2, sort_keys=True, default=str))


if __name__ == "__main__":  # pragma: no cover
    cli()
