"""Synchronization of predefined report formats with the feed directory."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from .. import models, paths, rbac, resources, storage
from ..rbac import RequestContext
from .descriptor import DESCRIPTOR_FILE, Descriptor, DescriptorError, load_descriptor
from .report_formats import (
    ALERT_NOTICE_FORMAT_DATA,
    ALERT_REPORT_FORMAT_DATA,
    RESOURCE_TYPE,
    PermissionDenied,
)

# purpose: make the predefined report format rows mirror the descriptors on disk
# status: production
# depends_on: backend.reportfmt.services.descriptor, backend.reportfmt.resources
# related_docs: DESIGN.md (feed sync)

_logger = logging.getLogger(__name__)

LEGACY_UUID_RENAMES = (
    ("a0704abb-2120-489f-959f-251c9f4ffebd", "5ceff8ba-1f62-11e1-ab9f-406186ea4fc5"),
    ("b993b6f5-f9fb-4e6e-9c94-dd46c00e058d", "6c248850-1f62-11e1-b082-406186ea4fc5"),
    ("929884c6-c2c4-41e7-befb-2f6aa163b458", "77bd6c4a-1f62-11e1-abf0-406186ea4fc5"),
    ("9f1ab17b-aaaa-411a-8c57-12df446f5588", "7fcc3a1a-1f62-11e1-86bf-406186ea4fc5"),
    ("f5c2a364-47d2-4700-b21d-0a7693daddab", "9ca6fe72-1f62-11e1-9e7c-406186ea4fc5"),
    ("1a60a67e-97d0-4cbf-bc77-f71b08e7043d", "a0b5bfb2-1f62-11e1-85db-406186ea4fc5"),
    ("19f6f1b3-7128-4433-888c-ccc764fe6ed5", "a3810a62-1f62-11e1-9219-406186ea4fc5"),
    ("d5da9f67-8551-4e51-807b-b6a873d70e34", "a994b278-1f62-11e1-96ac-406186ea4fc5"),
    # Oldest first, newer renames go at the end.
    ("7fcc3a1a-1f62-11e1-86bf-406186ea4fc5", "a684c02c-b531-11e1-bdc2-406186ea4fc5"),
    ("a0b5bfb2-1f62-11e1-85db-406186ea4fc5", "c402cc3e-b531-11e1-9163-406186ea4fc5"),
)

READ_ROLES = (rbac.ROLE_ADMIN, rbac.ROLE_GUEST, rbac.ROLE_OBSERVER, rbac.ROLE_USER)


class FeedSyncError(RuntimeError):
    """Raised when the predefined report format directory cannot be read."""


@dataclass(frozen=True)
class _FormatSnapshot:
    id: int
    owner_id: int | None
    name: str
    summary: str
    description: str
    extension: str
    content_type: str
    trust: int
    active: bool


@dataclass(frozen=True)
class _ParamSnapshot:
    type: str
    value: str
    type_min: int | None
    type_max: int | None
    fallback: str


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _take_snapshot(db: Session) -> tuple[dict[str, _FormatSnapshot], dict[tuple[int, str], _ParamSnapshot]]:
    formats: dict[str, _FormatSnapshot] = {}
    params: dict[tuple[int, str], _ParamSnapshot] = {}
    for row in db.query(models.ReportFormat).filter(models.ReportFormat.owner_id.is_(None)):
        formats[row.uuid] = _FormatSnapshot(
            id=row.id,
            owner_id=row.owner_id,
            name=row.name,
            summary=row.summary,
            description=row.description,
            extension=row.extension,
            content_type=row.content_type,
            trust=row.trust,
            active=bool(row.active),
        )
        for param in row.params:
            params[(row.id, param.name)] = _ParamSnapshot(
                type=param.type,
                value=param.value,
                type_min=param.type_min,
                type_max=param.type_max,
                fallback=param.fallback,
            )
    return formats, params


def check_report_format(
    db: Session,
    report_format_uuid: str,
    descriptor: Descriptor,
    formats: dict[str, _FormatSnapshot],
    params: dict[tuple[int, str], _ParamSnapshot],
) -> models.ReportFormat:
    """Create or update one predefined report format from its descriptor.

    The modification time only moves when a tracked field differs from the
    snapshot taken before the sync.
    """

    now = _now()
    fields = {
        "owner_id": None,
        "name": descriptor.name,
        "summary": descriptor.summary,
        "description": descriptor.description,
        "extension": descriptor.extension,
        "content_type": descriptor.content_type,
        "trust": models.TRUST_YES,
        "active": True,
    }
    report_format = (
        db.query(models.ReportFormat)
        .filter(models.ReportFormat.uuid == report_format_uuid)
        .first()
    )
    if report_format is None:
        report_format = models.ReportFormat(
            uuid=report_format_uuid,
            signature="",
            trust_time=now,
            creation_time=now,
            modification_time=now,
            **fields,
        )
        db.add(report_format)
        db.flush()
        changed = False
    else:
        previous = formats.get(report_format_uuid)
        changed = previous is None or any(
            getattr(previous, key) != value for key, value in fields.items()
        )
        for key, value in fields.items():
            setattr(report_format, key, value)
        report_format.signature = ""
        report_format.trust_time = now

    for role_uuid in READ_ROLES:
        resources.add_role_permission_resource(
            db, role_uuid, "get_report_formats", RESOURCE_TYPE, report_format.id, report_format.uuid
        )
    resources.resource_set_predefined(db, RESOURCE_TYPE, report_format.id, True)

    existing = {param.name: param for param in report_format.params}
    kept: set[str] = set()
    for item in descriptor.params:
        values = {
            "type": item.type.value,
            "value": item.value,
            "type_min": item.type_min,
            "type_max": item.type_max,
            "type_regex": "",
            "fallback": item.fallback,
        }
        param = existing.get(item.name)
        if param is None:
            param = models.ReportFormatParam(name=item.name, **values)
            report_format.params.append(param)
            existing[item.name] = param
            changed = True
        else:
            before = params.get((report_format.id, item.name))
            after = _ParamSnapshot(
                type=values["type"],
                value=values["value"],
                type_min=values["type_min"],
                type_max=values["type_max"],
                fallback=values["fallback"],
            )
            if before is None or before != after:
                changed = True
            for key, value in values.items():
                setattr(param, key, value)
        param.options = [models.ReportFormatParamOption(value=option) for option in item.options]
        kept.add(item.name)

    for param in [param for param in report_format.params if param.name not in kept]:
        report_format.params.remove(param)
        changed = True

    if changed:
        report_format.modification_time = now
    db.flush()
    return report_format


def _in_use_by_alert(db: Session, report_format_uuid: str) -> bool:
    live = (
        db.query(models.AlertMethodData.id)
        .filter(
            models.AlertMethodData.data == report_format_uuid,
            models.AlertMethodData.name.in_(ALERT_REPORT_FORMAT_DATA),
        )
        .first()
    )
    if live is not None:
        return True
    trashed = (
        db.query(models.AlertMethodDataTrash.id)
        .filter(
            models.AlertMethodDataTrash.data == report_format_uuid,
            models.AlertMethodDataTrash.name.in_(ALERT_NOTICE_FORMAT_DATA),
        )
        .first()
    )
    return trashed is not None


def check_db_report_formats(db: Session) -> dict[str, int]:
    """Reconcile predefined rows with the predefined directory. The caller commits."""

    root = paths.predefined_root()
    try:
        entries = sorted(os.listdir(root))
    except OSError as exc:
        _logger.warning("Failed to open directory %s: %s", root, exc)
        raise FeedSyncError(f"Failed to open directory {root}") from exc

    formats, params = _take_snapshot(db)
    summary = {"synced": 0, "failed": 0, "removed": 0, "kept_in_use": 0}
    try:
        for entry in entries:
            directory = os.path.join(root, entry)
            if not os.path.isdir(directory):
                continue
            try:
                descriptor = load_descriptor(os.path.join(directory, DESCRIPTOR_FILE))
            except DescriptorError as exc:
                _logger.warning("Skipping report format %s: %s", entry, exc)
                summary["failed"] += 1
                continue
            check_report_format(db, entry, descriptor, formats, params)
            formats.pop(entry, None)
            summary["synced"] += 1

        for report_format_uuid, snapshot in formats.items():
            report_format = db.get(models.ReportFormat, snapshot.id)
            if report_format is None:
                continue
            if _in_use_by_alert(db, report_format_uuid):
                _logger.warning(
                    "Keeping old report format %s (%s) because an alert uses it",
                    report_format.name,
                    report_format_uuid,
                )
                summary["kept_in_use"] += 1
                continue
            resources.resource_set_predefined(db, RESOURCE_TYPE, report_format.id, False)
            resources.permissions_set_orphans(db, RESOURCE_TYPE, report_format.id, models.LOCATION_TABLE)
            resources.tags_remove_resource(db, RESOURCE_TYPE, report_format.id, models.LOCATION_TABLE)
            db.delete(report_format)
            summary["removed"] += 1
        db.flush()
    finally:
        formats.clear()
        params.clear()
    return summary


def check_db_trash_report_formats(db: Session) -> int:
    """Drop every trash row when the trash directory has vanished. The caller commits."""

    if os.path.lexists(paths.trash_root()):
        return 0
    count = 0
    for trash in db.query(models.ReportFormatTrash).all():
        db.query(models.AlertMethodDataTrash).filter(
            models.AlertMethodDataTrash.data == trash.original_uuid,
            models.AlertMethodDataTrash.name.in_(ALERT_NOTICE_FORMAT_DATA),
        ).delete(synchronize_session=False)
        resources.permissions_set_orphans(db, RESOURCE_TYPE, trash.id, models.LOCATION_TRASH)
        resources.tags_remove_resource(db, RESOURCE_TYPE, trash.id, models.LOCATION_TRASH)
        db.delete(trash)
        count += 1
    db.flush()
    if count:
        _logger.info(
            "Trash report format directory was missing. Removed all %s trash report formats.",
            count,
        )
    return count


def update_report_format_uuids(db: Session) -> None:
    """Apply the fixed renames of old predefined report format UUIDs. The caller commits."""

    for old, new in LEGACY_UUID_RENAMES:
        storage.remove_tree(paths.predefined_dir(old))
        report_format = db.query(models.ReportFormat).filter(models.ReportFormat.uuid == old).first()
        if report_format is not None:
            taken = db.query(models.ReportFormat.id).filter(models.ReportFormat.uuid == new).first()
            if taken is None:
                report_format.uuid = new
                report_format.modification_time = _now()
        db.query(models.AlertMethodData).filter(models.AlertMethodData.data == old).update(
            {models.AlertMethodData.data: new}, synchronize_session=False
        )
    db.flush()


def check_db_report_formats_trash(db: Session) -> int:
    """Remove trash directories that have no trash row. Returns how many."""

    root = paths.trash_root()
    try:
        entries = os.listdir(root)
    except FileNotFoundError:
        return 0
    except OSError as exc:
        _logger.warning("Failed to open %s: %s", root, exc)
        raise FeedSyncError(f"Failed to open directory {root}") from exc

    removed = 0
    for entry in entries:
        if not entry.isdigit():
            continue
        if db.get(models.ReportFormatTrash, int(entry)) is not None:
            continue
        storage.remove_tree(os.path.join(root, entry))
        removed += 1
    return removed


def sync_report_formats(db: Session, ctx: RequestContext | None = None) -> dict[str, int]:
    """Run the startup repairs and the predefined report format sync."""

    ctx = ctx or RequestContext.system()
    if not rbac.can_everything(ctx.user):
        raise PermissionDenied("Only the system may sync predefined report formats")
    try:
        trash_removed = check_db_trash_report_formats(db)
        update_report_format_uuids(db)
        summary = check_db_report_formats(db)
        db.commit()
    except Exception:
        db.rollback()
        raise
    try:
        summary["trash_dirs_pruned"] = check_db_report_formats_trash(db)
    except OSError as exc:
        _logger.warning("Failed to prune trash report format dirs: %s", exc)
        summary["trash_dirs_pruned"] = 0
    summary["trash_rows_removed"] = trash_removed
    return summary
