"""Report generation through a report format and the formats it embeds."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from xml.sax.saxutils import escape, quoteattr

from sqlalchemy.orm import Session

from .. import models, storage
from ..rbac import RequestContext
from .generator import GeneratorError, run_report_format_script
from .params import ParamType, split_report_format_list
from .report_formats import find_report_format_with_permission

# purpose: expand report_format_list dependencies recursively and run the generators
# status: production
# depends_on: backend.reportfmt.services.generator

_logger = logging.getLogger(__name__)


def print_report_xml_end(xml_start: str, xml_file: str, report_format: models.ReportFormat) -> None:
    """Write ``xml_start`` plus the format's params and the closing tag to ``xml_file``."""

    shutil.copyfile(xml_start, xml_file)
    with open(xml_file, "a", encoding="utf-8") as out:
        out.write("<report_format>")
        for param in report_format.params:
            out.write(
                f"<param><name>{escape(param.name)}</name>"
                f"<value>{escape(param.value or '')}</value></param>"
            )
        out.write("</report_format>")
        out.write("</report>")


def dependency_ids(report_format: models.ReportFormat) -> list[str]:
    """Ids listed by the format's report_format_list params, in order."""

    ids: list[str] = []
    for param in report_format.params:
        if param.type == ParamType.REPORT_FORMAT_LIST.value:
            ids.extend(split_report_format_list(param.value or ""))
    return ids


def build_files_manifest(
    db: Session,
    xml_dir: str,
    subreports: dict[str, str],
) -> str:
    parts = ["<files>", f"<basedir>{escape(xml_dir)}</basedir>"]
    for dependency_id, path in subreports.items():
        dependency = (
            db.query(models.ReportFormat)
            .filter(models.ReportFormat.uuid == dependency_id)
            .first()
        )
        if dependency is None:
            parts.append(f"<file id={quoteattr(dependency_id)}>{escape(path)}</file>")
            continue
        parts.append(
            f"<file id={quoteattr(dependency_id)}"
            f" content_type={quoteattr(dependency.content_type or '')}"
            f" report_format_name={quoteattr(dependency.name)}>"
            f"{escape(path)}</file>"
        )
    parts.append("</files>")
    return "".join(parts)


def apply_report_format(
    db: Session,
    ctx: RequestContext,
    report_format_uuid: str,
    xml_start: str,
    xml_file: str,
    xml_dir: str,
    used_ids: tuple[str, ...] = (),
) -> str | None:
    """Generate a report with a report format.

    ``used_ids`` holds the formats already being applied further up the
    dependency chain. A format that is in that chain, missing, hidden from
    the caller or inactive yields None. Otherwise returns the path of the
    output file, created in ``xml_dir`` and owned by the caller from now on.
    """

    if report_format_uuid in used_ids:
        _logger.info("Recursion loop for report format %s", report_format_uuid)
        return None
    report_format = find_report_format_with_permission(
        db, ctx, report_format_uuid, "get_report_formats"
    )
    if report_format is None:
        _logger.info("Report format %s not found", report_format_uuid)
        return None
    if not report_format.active:
        _logger.info("Report format %s is not active", report_format_uuid)
        return None

    chain = used_ids + (report_format_uuid,)
    subreports: dict[str, str] = {}
    attempted: set[str] = set()
    temp_dirs: list[str] = []
    output_file = None
    try:
        for dependency_id in dependency_ids(report_format):
            if dependency_id in attempted:
                continue
            attempted.add(dependency_id)
            subreport_dir = tempfile.mkdtemp(prefix="gvmd_")
            temp_dirs.append(subreport_dir)
            subreport = apply_report_format(
                db,
                ctx,
                dependency_id,
                xml_start,
                os.path.join(subreport_dir, "report.xml"),
                subreport_dir,
                chain,
            )
            if subreport:
                subreports[dependency_id] = subreport

        manifest = build_files_manifest(db, xml_dir, subreports)
        extension = report_format.extension or ""
        output_fd, output_file = tempfile.mkstemp(
            prefix=f"{report_format_uuid}-", suffix=f".{extension}", dir=xml_dir
        )
        os.close(output_fd)
        print_report_xml_end(xml_start, xml_file, report_format)
        run_report_format_script(db, report_format, xml_file, xml_dir, manifest, output_file)
    except (GeneratorError, OSError) as exc:
        _logger.warning("Failed to apply report format %s: %s", report_format_uuid, exc)
        if output_file:
            storage.discard_tree(output_file)
        return None
    finally:
        for directory in temp_dirs:
            storage.discard_tree(directory)
    return output_file
