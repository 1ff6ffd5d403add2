"""CLI utilities for operating on report formats as the system."""

# purpose: give operators feed sync, verification, modification and rendering without the API
# status: production
# depends_on: backend.reportfmt.database, backend.reportfmt.services

from __future__ import annotations

import json
import os
from typing import List, Optional

import typer

from ..database import SessionLocal
from ..rbac import RequestContext
from ..services import composer, feed
from ..services import report_formats as service

app = typer.Typer(help="Report format maintenance commands")


def sync_feed() -> dict[str, int]:
    """Synchronize predefined report formats with the predefined directory."""

    session = SessionLocal()
    try:
        return feed.sync_report_formats(session, RequestContext.system())
    finally:
        session.close()


def verify(report_format_id: str) -> dict[str, object]:
    session = SessionLocal()
    try:
        report_format = service.verify_report_format(session, RequestContext.system(), report_format_id)
        return {
            "id": report_format.uuid,
            "trust": service.TrustState(report_format.trust).label,
        }
    finally:
        session.close()


def _split_param(item: str) -> tuple[str, str]:
    name, sep, value = item.partition("=")
    if not sep or not name:
        raise typer.BadParameter(f"Expected NAME=VALUE, got {item!r}")
    return name, value


def modify(
    report_format_id: str,
    *,
    name: str | None = None,
    summary: str | None = None,
    active: bool | None = None,
    predefined: bool | None = None,
    params: List[str] | None = None,
) -> dict[str, object]:
    """Apply field changes, then each ``NAME=VALUE`` param in order."""

    pairs = [_split_param(item) for item in params or []]
    ctx = RequestContext.system()
    session = SessionLocal()
    try:
        report_format = service.modify_report_format(
            session,
            ctx,
            report_format_id,
            name=name,
            summary=summary,
            active=active,
            predefined=predefined,
        )
        for param_name, param_value in pairs:
            report_format = service.modify_report_format(
                session,
                ctx,
                report_format_id,
                param_name=param_name,
                param_value=param_value,
            )
        return service.serialize_report_format(session, report_format).model_dump(mode="json")
    finally:
        session.close()


def render(report_format_id: str, report_start: str, work_dir: str) -> dict[str, object]:
    """Compose a report with a format; the output file is left in ``work_dir``."""

    session = SessionLocal()
    try:
        output = composer.apply_report_format(
            session,
            RequestContext.system(),
            report_format_id,
            report_start,
            os.path.join(work_dir, "report.xml"),
            work_dir,
        )
        return {"id": report_format_id, "output": output}
    finally:
        session.close()


def prune_trash() -> dict[str, int]:
    session = SessionLocal()
    try:
        return {"removed": feed.check_db_report_formats_trash(session)}
    finally:
        session.close()


def _fail(exc: service.ReportFormatError) -> None:
    typer.echo(json.dumps({"error": str(exc), "code": exc.code}))
    raise typer.Exit(code=1)


@app.command("sync-feed")
def sync_feed_command() -> None:
    """CLI wrapper for :func:`sync_feed`."""

    try:
        summary = sync_feed()
    except feed.FeedSyncError as exc:
        typer.echo(json.dumps({"error": str(exc), "code": -1}))
        raise typer.Exit(code=1)
    typer.echo(json.dumps(summary))


@app.command("verify")
def verify_command(report_format_id: str) -> None:
    try:
        summary = verify(report_format_id)
    except service.ReportFormatError as exc:
        _fail(exc)
    typer.echo(json.dumps(summary))


@app.command("modify")
def modify_command(
    report_format_id: str,
    name: Optional[str] = typer.Option(None, help="New name"),
    summary: Optional[str] = typer.Option(None, help="New summary"),
    active: Optional[bool] = typer.Option(None, "--active/--inactive", help="Activate or deactivate"),
    predefined: Optional[bool] = typer.Option(
        None, "--predefined/--not-predefined", help="Set the predefined marker"
    ),
    param: Optional[List[str]] = typer.Option(None, "--param", help="Param value as NAME=VALUE"),
) -> None:
    """CLI wrapper for :func:`modify`."""

    try:
        summary_out = modify(
            report_format_id,
            name=name,
            summary=summary,
            active=active,
            predefined=predefined,
            params=param,
        )
    except service.ReportFormatError as exc:
        _fail(exc)
    typer.echo(json.dumps(summary_out))


@app.command("render")
def render_command(
    report_format_id: str,
    report_start: str = typer.Option(..., "--report-start", help="Report XML without its closing tag"),
    work_dir: str = typer.Option(..., "--work-dir", help="Directory for the report and output"),
) -> None:
    summary = render(report_format_id, report_start, work_dir)
    typer.echo(json.dumps(summary))
    if summary["output"] is None:
        raise typer.Exit(code=1)


@app.command("prune-trash")
def prune_trash_command() -> None:
    typer.echo(json.dumps(prune_trash()))


if __name__ == "__main__":
    app()
