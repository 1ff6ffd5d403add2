from typing import List, NoReturn

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..rbac import RequestContext
from ..services import report_formats as service
from ..services.params import ParamSpec
from .. import models, schemas

router = APIRouter(prefix="/api/report-formats", tags=["report_formats"])

_CONFLICTS = (
    service.ReportFormatExists,
    service.ReportFormatInUse,
    service.PredefinedReportFormat,
    service.NameConflict,
    service.UuidConflict,
)


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, service.PermissionDenied):
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    if isinstance(exc, service.ReportFormatNotFound):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, _CONFLICTS):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, (service.InternalError, service.RepositoryCorruption)):
        raise HTTPException(status_code=500, detail="Internal error") from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def _context(user: models.User) -> RequestContext:
    return RequestContext(user=user)


@router.post("", response_model=schemas.ReportFormatOut)
async def create_report_format(
    payload: schemas.ReportFormatCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    params = [
        ParamSpec(
            name=param.name,
            type=param.type,
            value=param.value,
            fallback=param.default,
            type_min=param.min,
            type_max=param.max,
            options=list(param.options),
        )
        for param in payload.params
    ]
    try:
        report_format = service.create_report_format(
            db,
            _context(user),
            report_format_uuid=payload.id,
            name=payload.name,
            files=[(item.name, item.decoded()) for item in payload.files],
            params=params,
            extension=payload.extension,
            content_type=payload.content_type,
            summary=payload.summary,
            description=payload.description,
            signature=payload.signature,
        )
    except (service.ReportFormatError, service.RepositoryCorruption) as exc:
        _raise_http(exc)
    return service.serialize_report_format(db, report_format)


@router.get("")
async def list_report_formats(
    trash: bool = False,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    ctx = _context(user)
    if trash:
        return [
            service.serialize_trash_report_format(db, row)
            for row in service.list_trash_report_formats(db, ctx)
        ]
    return [service.serialize_report_format(db, row) for row in service.list_report_formats(db, ctx)]


@router.get("/lookup", response_model=schemas.ReportFormatOut)
async def lookup_report_format(
    name: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    report_format = service.lookup_report_format(db, _context(user), name)
    if report_format is None:
        raise HTTPException(status_code=404, detail="Report format not found")
    return service.serialize_report_format(db, report_format)


@router.delete("/trash")
async def empty_trash(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        removed = service.empty_trashcan_report_formats(db, _context(user))
    except service.ReportFormatError as exc:
        _raise_http(exc)
    return {"removed": removed}


@router.post("/trash/{trash_id}/restore", response_model=schemas.ReportFormatOut)
async def restore_report_format(
    trash_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        report_format = service.restore_report_format(db, _context(user), trash_id)
    except (service.ReportFormatError, service.RepositoryCorruption) as exc:
        _raise_http(exc)
    return service.serialize_report_format(db, report_format)


@router.get("/{report_format_id}", response_model=schemas.ReportFormatOut)
async def get_report_format(
    report_format_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        report_format = service.get_report_format(db, _context(user), report_format_id)
    except service.ReportFormatError as exc:
        _raise_http(exc)
    return service.serialize_report_format(db, report_format)


@router.post("/{report_format_id}/copy", response_model=schemas.ReportFormatOut)
async def copy_report_format(
    report_format_id: str,
    payload: schemas.ReportFormatCopy,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        report_format = service.copy_report_format(db, _context(user), report_format_id, payload.name)
    except service.ReportFormatError as exc:
        _raise_http(exc)
    return service.serialize_report_format(db, report_format)


@router.patch("/{report_format_id}", response_model=schemas.ReportFormatOut)
async def modify_report_format(
    report_format_id: str,
    payload: schemas.ReportFormatUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        report_format = service.modify_report_format(
            db,
            _context(user),
            report_format_id,
            name=payload.name,
            summary=payload.summary,
            active=payload.active,
            predefined=payload.predefined,
            param_name=payload.param_name,
            param_value=payload.param_value,
        )
    except service.ReportFormatError as exc:
        _raise_http(exc)
    return service.serialize_report_format(db, report_format)


@router.delete("/{report_format_id}")
async def delete_report_format(
    report_format_id: str,
    ultimate: bool = False,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        service.delete_report_format(db, _context(user), report_format_id, ultimate=ultimate)
    except service.ReportFormatError as exc:
        _raise_http(exc)
    return {"status": "deleted"}


@router.post("/{report_format_id}/verify", response_model=schemas.ReportFormatOut)
async def verify_report_format(
    report_format_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        report_format = service.verify_report_format(db, _context(user), report_format_id)
    except service.ReportFormatError as exc:
        _raise_http(exc)
    return service.serialize_report_format(db, report_format)


@router.get("/{report_format_id}/alerts", response_model=List[schemas.ReportFormatAlertOut])
async def report_format_alerts(
    report_format_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    ctx = _context(user)
    try:
        report_format = service.get_report_format(db, ctx, report_format_id)
    except service.ReportFormatError as exc:
        _raise_http(exc)
    return [service.serialize_alert(alert) for alert in service.report_format_alerts(db, ctx, report_format)]
