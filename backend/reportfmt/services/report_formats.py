"""Report format lifecycle: create, copy, modify, trash, restore and verify.

Every operation owns its transaction. Rows are changed first, files on
disk are written or moved last, and the commit only happens once the disk
work succeeded. Any failure rolls the session back and removes partially
written directories.
"""

from __future__ import annotations

import logging
import os
import uuid as uuid_lib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import models, paths, resources, storage
from ..rbac import RequestContext, can_everything, owned_by_current_user, user_has_access, user_may
from ..schemas import (
    ReportFormatAlertOut,
    ReportFormatOut,
    ReportFormatParamOut,
    ReportFormatTrashOut,
)
from . import canonical, signatures
from .params import BoundError, ParamSpec, ParamType, parse_bound, validate_param_row, validate_value
from .signatures import TrustState

# purpose: keep report format rows, files and trust state consistent through their lifecycle
# status: production
# depends_on: backend.reportfmt.storage, backend.reportfmt.services.signatures, backend.reportfmt.resources
# related_docs: DESIGN.md (lifecycle)

_logger = logging.getLogger(__name__)

RESOURCE_TYPE = "report_format"

ALERT_REPORT_FORMAT_DATA = (
    "notice_attach_format",
    "notice_report_format",
    "scp_report_format",
    "send_report_format",
    "smb_report_format",
    "verinice_server_report_format",
)
ALERT_NOTICE_FORMAT_DATA = ("notice_attach_format", "notice_report_format")


class ReportFormatError(RuntimeError):
    """Base error for report format operations.

    ``code`` is the numeric result of the operation for front ends that
    translate results themselves.
    """

    code = -1

    def __init__(self, message: str, *, code: int | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class PermissionDenied(ReportFormatError):
    code = 99


class ReportFormatNotFound(ReportFormatError):
    code = 1


class MissingReportFormatId(ReportFormatError):
    code = 2


class ReportFormatExists(ReportFormatError):
    code = 1


class InvalidFileName(ReportFormatError):
    code = 2


class ParamValueInvalid(ReportFormatError):
    code = 3


class ParamFallbackInvalid(ReportFormatError):
    code = 4


class ParamFallbackMissing(ReportFormatError):
    code = 5


class ParamBoundInvalid(ReportFormatError):
    code = 6


class ParamTypeMissing(ReportFormatError):
    code = 7


class DuplicateParamName(ReportFormatError):
    code = 8


class ParamTypeInvalid(ReportFormatError):
    code = 9


class ParamNotFound(ReportFormatError):
    code = 3


class InvalidPredefinedFlag(ReportFormatError):
    code = 5


class ReportFormatInUse(ReportFormatError):
    code = 1


class PredefinedReportFormat(ReportFormatError):
    code = 3


class NameConflict(ReportFormatError):
    code = 3


class UuidConflict(ReportFormatError):
    code = 4


class InternalError(ReportFormatError):
    code = -1


class StorageFailure(InternalError):
    """Raised when the asset directory could not be written, moved or removed."""


class RepositoryCorruption(RuntimeError):
    """Raised when stored data breaks an invariant no operation can repair."""


@dataclass
class _CheckedParam:
    spec: ParamSpec
    type: ParamType
    type_min: int | None
    type_max: int | None

    @property
    def value(self) -> str:
        return self.spec.value if self.spec.value is not None else self.spec.fallback


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> str:
    return str(uuid_lib.uuid4())


def is_predefined(db: Session, report_format: models.ReportFormat) -> bool:
    return resources.resource_predefined(db, RESOURCE_TYPE, report_format.id)


def report_format_dir(db: Session, report_format: models.ReportFormat) -> str:
    """Directory holding the files of an active report format."""

    if report_format.owner is None or is_predefined(db, report_format):
        return paths.predefined_dir(report_format.uuid)
    return paths.owner_dir(report_format.owner.uuid, report_format.uuid)


def find_report_format_with_permission(
    db: Session,
    ctx: RequestContext,
    report_format_uuid: str,
    permission: str,
) -> models.ReportFormat | None:
    report_format = (
        db.query(models.ReportFormat)
        .filter(models.ReportFormat.uuid == report_format_uuid)
        .first()
    )
    if report_format is None:
        return None
    if not user_has_access(db, ctx, RESOURCE_TYPE, report_format, permission):
        return None
    return report_format


def find_trash(db: Session, ctx: RequestContext, trash_uuid: str) -> models.ReportFormatTrash | None:
    query = db.query(models.ReportFormatTrash).filter(models.ReportFormatTrash.uuid == trash_uuid)
    if not can_everything(ctx.user):
        query = query.filter(owned_by_current_user(ctx, models.ReportFormatTrash))
    return query.first()


def _name_taken(db: Session, owner_id: int | None, name: str) -> bool:
    query = db.query(models.ReportFormat.id).filter(models.ReportFormat.name == name)
    if owner_id is None:
        query = query.filter(models.ReportFormat.owner_id.is_(None))
    else:
        query = query.filter(models.ReportFormat.owner_id == owner_id)
    return query.first() is not None


def _unique_name(db: Session, owner_id: int | None, name: str) -> str:
    candidate = name
    number = 1
    while _name_taken(db, owner_id, candidate):
        number += 1
        candidate = f"{name} {number}"
    return candidate


def _uuid_in_use(db: Session, report_format_uuid: str) -> bool:
    active = (
        db.query(models.ReportFormat.id)
        .filter(models.ReportFormat.uuid == report_format_uuid)
        .first()
    )
    if active is not None:
        return True
    trashed = (
        db.query(models.ReportFormatTrash.id)
        .filter(models.ReportFormatTrash.original_uuid == report_format_uuid)
        .first()
    )
    return trashed is not None


def _check_param_specs(specs: Sequence[ParamSpec]) -> list[_CheckedParam]:
    checked: list[_CheckedParam] = []
    seen: set[str] = set()
    for spec in specs:
        if not spec.type:
            raise ParamTypeMissing(f"Param {spec.name!r} has no type")
        param_type = ParamType.from_name(spec.type)
        if param_type is None:
            raise ParamTypeInvalid(f"Param {spec.name!r} has unknown type {spec.type!r}")
        try:
            type_min = parse_bound(spec.type_min, upper=False)
            type_max = parse_bound(spec.type_max, upper=True)
        except BoundError as exc:
            raise ParamBoundInvalid(f"Param {spec.name!r}: {exc}") from exc
        if spec.fallback is None:
            raise ParamFallbackMissing(f"Param {spec.name!r} has no default")
        if spec.name in seen:
            raise DuplicateParamName(f"Param {spec.name!r} given more than once")
        seen.add(spec.name)
        checked.append(_CheckedParam(spec, param_type, type_min, type_max))
    return checked


def _copy_params(source_params, target, param_model, option_model) -> None:
    for source in source_params:
        param = param_model(
            name=source.name,
            type=source.type,
            value=source.value,
            type_min=source.type_min,
            type_max=source.type_max,
            type_regex=source.type_regex,
            fallback=source.fallback,
        )
        param.options = [option_model(value=option.value) for option in source.options]
        target.params.append(param)


def _rollback(db: Session, directory: str | None = None, link: str | None = None) -> None:
    db.rollback()
    if directory:
        storage.discard_tree(directory)
    if link:
        try:
            os.unlink(link)
        except OSError as exc:
            _logger.warning("Failed to remove signature link %s: %s", link, exc)


def create_report_format(
    db: Session,
    ctx: RequestContext,
    *,
    report_format_uuid: str,
    name: str,
    files: Sequence[tuple[str, bytes]],
    params: Sequence[ParamSpec],
    extension: str = "",
    content_type: str = "",
    summary: str = "",
    description: str = "",
    signature: str | None = None,
) -> models.ReportFormat:
    """Import a report format owned by the context user.

    A signature found in the feed for ``report_format_uuid`` takes
    precedence over ``signature``. Verification failures only lower trust.
    """

    if ctx.user is None or not user_may(db, ctx, "create_report_format"):
        raise PermissionDenied("Permission to create report formats denied")
    try:
        storage.check_file_names(files)
    except storage.InvalidFileName as exc:
        raise InvalidFileName(str(exc)) from exc
    checked = _check_param_specs(params)

    found = signatures.find_signature(report_format_uuid)
    effective_signature = found.signature if found else (signature or "").encode("utf-8")
    trust = TrustState.UNKNOWN
    if effective_signature:
        identity = canonical.CanonicalIdentity(
            uuid=(found.linked_uuid if found and found.linked_uuid else report_format_uuid),
            extension=extension,
            content_type=content_type,
        )
        payload = canonical.canonicalize(
            identity,
            files,
            [
                canonical.CanonicalParam(
                    name=item.spec.name,
                    type_name=item.spec.type,
                    fallback=item.spec.fallback,
                    type_min=item.type_min,
                    type_max=item.type_max,
                    options=tuple(item.spec.options),
                )
                for item in checked
            ],
        )
        try:
            trust = signatures.verify_signature(payload, effective_signature)
        except signatures.SignatureVerifierUnavailable as exc:
            raise InternalError("Signature verification unavailable") from exc

    directory = None
    link = None
    try:
        stored_uuid = report_format_uuid
        if _uuid_in_use(db, report_format_uuid):
            stored_uuid = _new_uuid()
            link = signatures.link_signature(report_format_uuid, stored_uuid)

        now = _now()
        report_format = models.ReportFormat(
            uuid=stored_uuid,
            owner_id=ctx.user.id,
            name=_unique_name(db, ctx.user.id, name),
            extension=extension or "",
            content_type=content_type or "",
            summary=summary or "",
            description=description or "",
            signature=effective_signature.decode("utf-8", errors="replace"),
            trust=int(trust),
            trust_time=now,
            active=False,
            creation_time=now,
            modification_time=now,
        )
        db.add(report_format)
        db.flush()

        for item in checked:
            param = models.ReportFormatParam(
                report_format_id=report_format.id,
                name=item.spec.name,
                type=item.type.value,
                value=item.value,
                type_min=item.type_min,
                type_max=item.type_max,
                type_regex="",
                fallback=item.spec.fallback,
            )
            param.options = [models.ReportFormatParamOption(value=option) for option in item.spec.options]
            db.add(param)
            db.flush()
            bounds = {"type_min": item.type_min, "type_max": item.type_max, "options": item.spec.options}
            if not validate_value(item.type, item.value, **bounds):
                raise ParamValueInvalid(f"Value of param {item.spec.name!r} is invalid")
            if not validate_value(item.type, item.spec.fallback, **bounds):
                raise ParamFallbackInvalid(f"Default of param {item.spec.name!r} is invalid")

        directory = paths.owner_dir(ctx.user.uuid, stored_uuid)
        storage.write_files(directory, files)
        db.commit()
    except ReportFormatError:
        _rollback(db, directory, link)
        raise
    except OSError as exc:
        _logger.warning("Failed to store report format %s: %s", report_format_uuid, exc)
        _rollback(db, directory, link)
        raise StorageFailure("Failed to store report format files") from exc
    except Exception:
        _rollback(db, directory, link)
        raise
    db.refresh(report_format)
    return report_format


def copy_report_format(
    db: Session,
    ctx: RequestContext,
    source_uuid: str,
    name: str | None = None,
) -> models.ReportFormat:
    """Clone a report format, its params and its files for the context user."""

    if ctx.user is None or not user_may(db, ctx, "create_report_format"):
        raise PermissionDenied("Permission to create report formats denied")
    source = find_report_format_with_permission(db, ctx, source_uuid, "get_report_formats")
    if source is None:
        raise ReportFormatNotFound(f"Report format {source_uuid} not found", code=2)
    if name and _name_taken(db, ctx.user.id, name):
        raise ReportFormatExists(f"Report format {name!r} exists already")

    predefined = is_predefined(db, source)
    source_dir = report_format_dir(db, source)
    directory = None
    try:
        now = _now()
        copy = models.ReportFormat(
            uuid=_new_uuid(),
            owner_id=ctx.user.id,
            name=name or _unique_name(db, ctx.user.id, f"{source.name} Clone"),
            extension=source.extension,
            content_type=source.content_type,
            summary=source.summary,
            description=source.description,
            signature=source.signature,
            trust=int(TrustState.YES) if predefined else source.trust,
            trust_time=now if predefined else source.trust_time,
            active=source.active,
            creation_time=now,
            modification_time=now,
        )
        _copy_params(source.params, copy, models.ReportFormatParam, models.ReportFormatParamOption)
        db.add(copy)
        db.flush()

        if not os.path.isdir(source_dir):
            _logger.warning("Report format directory %s not found", source_dir)
            raise StorageFailure("Report format directory missing")
        directory = paths.owner_dir(ctx.user.uuid, copy.uuid)
        storage.copy_tree(source_dir, directory)
        db.commit()
    except ReportFormatError:
        _rollback(db, directory)
        raise
    except OSError as exc:
        _logger.warning("Failed to copy report format %s: %s", source_uuid, exc)
        _rollback(db, directory)
        raise StorageFailure("Failed to copy report format files") from exc
    except Exception:
        _rollback(db, directory)
        raise
    db.refresh(copy)
    return copy


def _parse_flag(value: bool | str | None) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if value not in ("0", "1"):
        raise InvalidPredefinedFlag(f"Predefined flag must be 0 or 1, not {value!r}")
    return value == "1"


def modify_report_format(
    db: Session,
    ctx: RequestContext,
    report_format_uuid: str | None,
    *,
    name: str | None = None,
    summary: str | None = None,
    active: bool | None = None,
    predefined: bool | str | None = None,
    param_name: str | None = None,
    param_value: str | None = None,
) -> models.ReportFormat:
    if not report_format_uuid:
        raise MissingReportFormatId("A report format id is required")
    predefined = _parse_flag(predefined)
    try:
        if not user_may(db, ctx, "modify_report_format"):
            raise PermissionDenied("Permission to modify report formats denied")
        report_format = find_report_format_with_permission(
            db, ctx, report_format_uuid, "modify_report_format"
        )
        if report_format is None:
            raise ReportFormatNotFound(f"Report format {report_format_uuid} not found")
        if not ctx.is_system and is_predefined(db, report_format):
            raise PermissionDenied("Predefined report formats can only be modified by the system")

        changed = False
        if name is not None:
            report_format.name = name
            changed = True
        if summary is not None:
            report_format.summary = summary
            changed = True
        if active is not None:
            report_format.active = bool(active)
            changed = True
        if predefined is not None:
            resources.resource_set_predefined(db, RESOURCE_TYPE, report_format.id, predefined)
            changed = True
        if param_name is not None:
            set_report_format_param(db, report_format, param_name, param_value or "")
            changed = True
        if changed:
            report_format.modification_time = _now()
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(report_format)
    return report_format


def set_report_format_param(
    db: Session,
    report_format: models.ReportFormat,
    name: str,
    value: str,
) -> models.ReportFormatParam:
    """Set the value of one param. The caller commits."""

    param = (
        db.query(models.ReportFormatParam)
        .filter(
            models.ReportFormatParam.report_format_id == report_format.id,
            models.ReportFormatParam.name == name,
        )
        .first()
    )
    if param is None:
        raise ParamNotFound(f"Param {name!r} not found")
    if not validate_param_row(param, value):
        raise ParamValueInvalid(f"Value of param {name!r} is invalid", code=4)
    param.value = value
    return param


def report_format_in_use(db: Session, report_format: models.ReportFormat) -> bool:
    return (
        db.query(models.AlertMethodData.id)
        .filter(
            models.AlertMethodData.data == report_format.uuid,
            models.AlertMethodData.name.in_(ALERT_REPORT_FORMAT_DATA),
        )
        .first()
        is not None
    )


def trash_report_format_in_use(db: Session, trash: models.ReportFormatTrash) -> bool:
    return (
        db.query(models.AlertMethodDataTrash.id)
        .filter(
            models.AlertMethodDataTrash.data == trash.original_uuid,
            models.AlertMethodDataTrash.name.in_(ALERT_REPORT_FORMAT_DATA),
        )
        .first()
        is not None
    )


def _in_use_by_trash_alert(db: Session, report_format_uuid: str) -> bool:
    return (
        db.query(models.AlertMethodDataTrash.id)
        .filter(
            models.AlertMethodDataTrash.data == report_format_uuid,
            models.AlertMethodDataTrash.name.in_(ALERT_NOTICE_FORMAT_DATA),
        )
        .first()
        is not None
    )


def delete_report_format(
    db: Session,
    ctx: RequestContext,
    report_format_uuid: str,
    *,
    ultimate: bool = False,
) -> None:
    """Move a report format to the trash, or remove it for good.

    ``report_format_uuid`` may also name a trashed format. Trashing one
    again is a no-op.
    """

    try:
        if not user_may(db, ctx, "delete_report_format"):
            raise PermissionDenied("Permission to delete report formats denied")
        report_format = find_report_format_with_permission(
            db, ctx, report_format_uuid, "delete_report_format"
        )
        if report_format is None:
            trash = find_trash(db, ctx, report_format_uuid)
            if trash is None:
                raise ReportFormatNotFound(f"Report format {report_format_uuid} not found", code=2)
            if not ultimate:
                db.commit()
                return
            _delete_trash(db, trash)
            return

        if is_predefined(db, report_format):
            raise PredefinedReportFormat("Predefined report formats cannot be deleted")
        directory = report_format_dir(db, report_format)

        if ultimate:
            if _in_use_by_trash_alert(db, report_format.uuid) or report_format_in_use(db, report_format):
                raise ReportFormatInUse("Report format is in use by an alert")
            resources.permissions_set_orphans(db, RESOURCE_TYPE, report_format.id, models.LOCATION_TABLE)
            resources.tags_remove_resource(db, RESOURCE_TYPE, report_format.id, models.LOCATION_TABLE)
            db.delete(report_format)
            db.flush()
            storage.remove_tree(directory)
            db.commit()
            return

        if report_format_in_use(db, report_format):
            raise ReportFormatInUse("Report format is in use by an alert")
        _move_to_trash(db, report_format, directory)
    except ReportFormatError:
        db.rollback()
        raise
    except OSError as exc:
        _logger.warning("Failed to delete report format %s: %s", report_format_uuid, exc)
        db.rollback()
        raise StorageFailure("Failed to delete report format files") from exc
    except Exception:
        db.rollback()
        raise


def _delete_trash(db: Session, trash: models.ReportFormatTrash) -> None:
    if trash_report_format_in_use(db, trash):
        raise ReportFormatInUse("Trashed report format is in use by a trashed alert")
    trash_id = trash.id
    original_uuid = trash.original_uuid
    resources.permissions_set_orphans(db, RESOURCE_TYPE, trash_id, models.LOCATION_TRASH)
    resources.tags_remove_resource(db, RESOURCE_TYPE, trash_id, models.LOCATION_TRASH)
    db.delete(trash)
    db.flush()
    storage.remove_tree(paths.trash_dir(trash_id))
    signatures.unlink_signature(original_uuid)
    db.commit()


def _move_to_trash(db: Session, report_format: models.ReportFormat, directory: str) -> None:
    storage.make_dir(paths.trash_root())
    trash = models.ReportFormatTrash(
        uuid=_new_uuid(),
        original_uuid=report_format.uuid,
        owner_id=report_format.owner_id,
        name=report_format.name,
        extension=report_format.extension,
        content_type=report_format.content_type,
        summary=report_format.summary,
        description=report_format.description,
        signature=report_format.signature,
        trust=report_format.trust,
        trust_time=report_format.trust_time,
        active=report_format.active,
        creation_time=report_format.creation_time,
        modification_time=report_format.modification_time,
    )
    _copy_params(
        report_format.params, trash, models.ReportFormatParamTrash, models.ReportFormatParamOptionTrash
    )
    db.add(trash)
    db.flush()
    resources.permissions_set_locations(
        db, RESOURCE_TYPE, report_format.id, trash.id, models.LOCATION_TRASH, trash.uuid
    )
    resources.tags_set_locations(
        db, RESOURCE_TYPE, report_format.id, trash.id, models.LOCATION_TRASH, trash.uuid
    )
    db.delete(report_format)
    db.flush()
    storage.move_tree(directory, paths.trash_dir(trash.id))
    db.commit()


def restore_report_format(db: Session, ctx: RequestContext, trash_uuid: str) -> models.ReportFormat:
    """Move a trashed report format back under its original UUID."""

    try:
        if not user_may(db, ctx, "restore"):
            raise PermissionDenied("Permission to restore denied")
        trash = find_trash(db, ctx, trash_uuid)
        if trash is None:
            raise ReportFormatNotFound(f"Trashed report format {trash_uuid} not found", code=2)
        if not trash.original_uuid:
            raise RepositoryCorruption(f"Trashed report format {trash_uuid} has no original UUID")
        if ctx.user is not None and _name_taken(db, ctx.user.id, trash.name):
            raise NameConflict(f"A report format named {trash.name!r} exists already")
        if (
            db.query(models.ReportFormat.id)
            .filter(models.ReportFormat.uuid == trash.original_uuid)
            .first()
            is not None
        ):
            raise UuidConflict(f"A report format with id {trash.original_uuid} exists already")

        report_format = models.ReportFormat(
            uuid=trash.original_uuid,
            owner_id=trash.owner_id,
            name=trash.name,
            extension=trash.extension,
            content_type=trash.content_type,
            summary=trash.summary,
            description=trash.description,
            signature=trash.signature,
            trust=trash.trust,
            trust_time=trash.trust_time,
            active=trash.active,
            creation_time=trash.creation_time,
            modification_time=trash.modification_time,
        )
        _copy_params(trash.params, report_format, models.ReportFormatParam, models.ReportFormatParamOption)
        db.add(report_format)
        db.flush()
        resources.permissions_set_locations(
            db, RESOURCE_TYPE, trash.id, report_format.id, models.LOCATION_TABLE, report_format.uuid
        )
        resources.tags_set_locations(
            db, RESOURCE_TYPE, trash.id, report_format.id, models.LOCATION_TABLE, report_format.uuid
        )
        trash_id = trash.id
        db.delete(trash)
        db.flush()
        owner = report_format.owner
        storage.move_tree(
            paths.trash_dir(trash_id),
            paths.owner_dir(owner.uuid, report_format.uuid) if owner else paths.predefined_dir(report_format.uuid),
        )
        db.commit()
    except ReportFormatError:
        db.rollback()
        raise
    except OSError as exc:
        _logger.warning("Failed to restore report format %s: %s", trash_uuid, exc)
        db.rollback()
        raise StorageFailure("Failed to restore report format files") from exc
    except Exception:
        db.rollback()
        raise
    db.refresh(report_format)
    return report_format


def compute_trust(db: Session, report_format: models.ReportFormat) -> TrustState:
    """Verify the stored format against its feed signature, else its own."""

    found = signatures.find_signature(report_format.uuid)
    signature = found.signature if found else (report_format.signature or "").encode("utf-8")
    if not signature:
        return TrustState.UNKNOWN
    identity = canonical.CanonicalIdentity(
        uuid=(found.linked_uuid if found and found.linked_uuid else report_format.uuid),
        extension=report_format.extension,
        content_type=report_format.content_type,
        global_=is_predefined(db, report_format),
    )
    files = storage.read_files(report_format_dir(db, report_format))
    payload = canonical.canonicalize(identity, files, canonical.params_from_rows(report_format.params))
    return signatures.verify_signature(payload, signature)


def verify_report_format(db: Session, ctx: RequestContext, report_format_uuid: str) -> models.ReportFormat:
    try:
        if not user_may(db, ctx, "verify_report_format"):
            raise PermissionDenied("Permission to verify report formats denied")
        report_format = find_report_format_with_permission(
            db, ctx, report_format_uuid, "verify_report_format"
        )
        if report_format is None:
            raise ReportFormatNotFound(f"Report format {report_format_uuid} not found")
        trust = compute_trust(db, report_format)
        now = _now()
        report_format.trust = int(trust)
        report_format.trust_time = now
        report_format.modification_time = now
        db.commit()
    except ReportFormatError:
        db.rollback()
        raise
    except signatures.SignatureVerifierUnavailable as exc:
        db.rollback()
        raise InternalError("Signature verification unavailable") from exc
    except OSError as exc:
        _logger.warning("Failed to read report format %s: %s", report_format_uuid, exc)
        db.rollback()
        raise StorageFailure("Failed to read report format files") from exc
    except Exception:
        db.rollback()
        raise
    db.refresh(report_format)
    return report_format


def empty_trashcan_report_formats(db: Session, ctx: RequestContext) -> int:
    """Remove every trashed report format of the context user."""

    try:
        if not user_may(db, ctx, "empty_trashcan"):
            raise PermissionDenied("Permission to empty the trashcan denied")
        trashed = (
            db.query(models.ReportFormatTrash)
            .filter(owned_by_current_user(ctx, models.ReportFormatTrash))
            .all()
        )
        removed = [(trash.id, trash.original_uuid) for trash in trashed]
        for trash in trashed:
            resources.permissions_set_orphans(db, RESOURCE_TYPE, trash.id, models.LOCATION_TRASH)
            resources.tags_remove_resource(db, RESOURCE_TYPE, trash.id, models.LOCATION_TRASH)
            db.delete(trash)
        db.flush()
        for trash_id, original_uuid in removed:
            storage.remove_tree(paths.trash_dir(trash_id))
            signatures.unlink_signature(original_uuid)
        db.commit()
    except ReportFormatError:
        db.rollback()
        raise
    except OSError as exc:
        _logger.warning("Failed to remove trash report format dir: %s", exc)
        db.rollback()
        raise StorageFailure("Failed to empty the trashcan") from exc
    except Exception:
        db.rollback()
        raise
    return len(removed)


def inherit_report_formats(db: Session, user: models.User, inheritor: models.User) -> None:
    """Hand all report formats of ``user`` to ``inheritor``. The caller commits."""

    owned = db.query(models.ReportFormat).filter(models.ReportFormat.owner_id == user.id).all()
    for report_format in owned:
        source = paths.owner_dir(user.uuid, report_format.uuid)
        if os.path.isdir(source):
            storage.move_tree(source, paths.owner_dir(inheritor.uuid, report_format.uuid))
        report_format.owner_id = inheritor.id
    db.query(models.ReportFormatTrash).filter(models.ReportFormatTrash.owner_id == user.id).update(
        {models.ReportFormatTrash.owner_id: inheritor.id}, synchronize_session=False
    )
    db.flush()


def delete_report_formats_user(db: Session, user: models.User) -> None:
    """Remove all report formats of ``user``. The caller commits."""

    for report_format in db.query(models.ReportFormat).filter(models.ReportFormat.owner_id == user.id):
        db.delete(report_format)
    trash_ids = []
    for trash in db.query(models.ReportFormatTrash).filter(models.ReportFormatTrash.owner_id == user.id):
        trash_ids.append(trash.id)
        db.delete(trash)
    db.flush()
    storage.remove_tree(paths.owner_root(user.uuid))
    for trash_id in trash_ids:
        storage.remove_tree(paths.trash_dir(trash_id))


def lookup_report_format(db: Session, ctx: RequestContext, name: str) -> models.ReportFormat | None:
    """Find an active report format by name.

    Formats owned by the caller win over global ones, which win over
    formats of other users the caller can read.
    """

    candidates = (
        db.query(models.ReportFormat)
        .filter(models.ReportFormat.name == name, models.ReportFormat.active.is_(True))
        .order_by(models.ReportFormat.id)
        .all()
    )
    user_id = ctx.user.id if ctx.user is not None else None

    def rank(report_format: models.ReportFormat) -> int:
        if report_format.owner_id is not None and report_format.owner_id == user_id:
            return 0
        if report_format.owner_id is None:
            return 1
        return 2

    for report_format in sorted(candidates, key=rank):
        if user_has_access(db, ctx, RESOURCE_TYPE, report_format, "get_report_formats"):
            return report_format
    return None


def get_report_format(db: Session, ctx: RequestContext, report_format_uuid: str) -> models.ReportFormat:
    report_format = find_report_format_with_permission(
        db, ctx, report_format_uuid, "get_report_formats"
    )
    if report_format is None:
        raise ReportFormatNotFound(f"Report format {report_format_uuid} not found")
    return report_format


def list_report_formats(db: Session, ctx: RequestContext) -> list[models.ReportFormat]:
    rows = db.query(models.ReportFormat).order_by(models.ReportFormat.name, models.ReportFormat.id).all()
    return [
        row for row in rows if user_has_access(db, ctx, RESOURCE_TYPE, row, "get_report_formats")
    ]


def list_trash_report_formats(db: Session, ctx: RequestContext) -> list[models.ReportFormatTrash]:
    query = db.query(models.ReportFormatTrash).order_by(models.ReportFormatTrash.id)
    if not can_everything(ctx.user):
        query = query.filter(owned_by_current_user(ctx, models.ReportFormatTrash))
    return query.all()


def report_format_alerts(
    db: Session, ctx: RequestContext, report_format: models.ReportFormat
) -> list[models.Alert]:
    """Alerts whose actions use ``report_format`` and that the caller can see."""

    query = (
        db.query(models.Alert)
        .join(models.AlertMethodData, models.AlertMethodData.alert_id == models.Alert.id)
        .filter(
            models.AlertMethodData.data == report_format.uuid,
            models.AlertMethodData.name.in_(ALERT_REPORT_FORMAT_DATA),
        )
        .order_by(models.Alert.name)
        .distinct()
    )
    if not can_everything(ctx.user):
        query = query.filter(
            sa.or_(models.Alert.owner_id == ctx.user.id, models.Alert.owner_id.is_(None))
        )
    return query.all()


def _serialize_params(params) -> list[ReportFormatParamOut]:
    return [
        ReportFormatParamOut(
            name=param.name,
            type=param.type,
            value=param.value or "",
            default=param.fallback,
            min=param.type_min,
            max=param.type_max,
            options=[option.value for option in param.options],
        )
        for param in params
    ]


def serialize_report_format(db: Session, report_format: models.ReportFormat) -> ReportFormatOut:
    return ReportFormatOut(
        id=report_format.uuid,
        name=report_format.name,
        owner_id=report_format.owner.uuid if report_format.owner else None,
        extension=report_format.extension or "",
        content_type=report_format.content_type or "",
        summary=report_format.summary or "",
        description=report_format.description or "",
        trust=TrustState(report_format.trust).label,
        trust_time=report_format.trust_time,
        active=bool(report_format.active),
        predefined=is_predefined(db, report_format),
        in_use=report_format_in_use(db, report_format),
        creation_time=report_format.creation_time,
        modification_time=report_format.modification_time,
        params=_serialize_params(report_format.params),
    )


def serialize_trash_report_format(db: Session, trash: models.ReportFormatTrash) -> ReportFormatTrashOut:
    return ReportFormatTrashOut(
        id=trash.uuid,
        original_id=trash.original_uuid,
        name=trash.name,
        owner_id=trash.owner.uuid if trash.owner else None,
        extension=trash.extension or "",
        content_type=trash.content_type or "",
        summary=trash.summary or "",
        description=trash.description or "",
        trust=TrustState(trash.trust).label,
        trust_time=trash.trust_time,
        active=bool(trash.active),
        in_use=trash_report_format_in_use(db, trash),
        creation_time=trash.creation_time,
        modification_time=trash.modification_time,
        params=_serialize_params(trash.params),
    )


def serialize_alert(alert: models.Alert) -> ReportFormatAlertOut:
    return ReportFormatAlertOut(id=alert.uuid, name=alert.name)
