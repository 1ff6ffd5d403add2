"""Report format lifecycle: import, copy, modify, trash, restore and verify."""

# purpose: cover result codes, trust outcomes and disk state of every lifecycle operation
# status: active

import os
import stat
import uuid

import pytest

from .. import models, paths, rbac, resources
from ..rbac import RequestContext
from ..services import report_formats as service
from ..services.params import ParamSpec
from ..services.signatures import TrustState
from .conftest import (
    GENERATE_CAT,
    canonical_payload,
    create_format,
    integer_param,
    make_user,
    sign,
)


def _add_alert(db, report_format_uuid, *, name="notice_report_format", trash=False):
    if trash:
        alert = models.AlertTrash(name="Trashed alert")
        alert.method_data.append(models.AlertMethodDataTrash(name=name, data=report_format_uuid))
    else:
        alert = models.Alert(name="Alert")
        alert.method_data.append(models.AlertMethodData(name=name, data=report_format_uuid))
    db.add(alert)
    db.commit()
    return alert


def test_create_with_valid_signature_is_trusted(db, user):
    report_format_uuid = str(uuid.uuid4())
    files = [("generate", GENERATE_CAT)]
    params = [integer_param()]
    signature = sign(canonical_payload(report_format_uuid, files, params))

    report_format = create_format(
        db, user, report_format_uuid=report_format_uuid, files=files, params=params, signature=signature
    )

    assert report_format.uuid == report_format_uuid
    assert report_format.trust == TrustState.YES
    assert report_format.active is False
    assert report_format.owner_id == user.id
    directory = paths.owner_dir(user.uuid, report_format_uuid)
    assert stat.S_IMODE(os.stat(os.path.join(directory, "generate")).st_mode) == 0o755
    assert [param.value for param in report_format.params] == ["10"]


def test_create_trust_without_or_with_bad_signature(db, user):
    assert create_format(db, user, name="a").trust == TrustState.UNKNOWN
    assert create_format(db, user, name="b", signature=sign(b"other")).trust == TrustState.NO
    assert create_format(db, user, name="c", signature="garbage").trust == TrustState.UNKNOWN


def test_create_prefers_feed_signature(db, user, report_format_env):
    report_format_uuid = str(uuid.uuid4())
    files = [("generate", GENERATE_CAT)]
    feed = report_format_env["feed"] / "report_formats"
    feed.mkdir()
    (feed / f"{report_format_uuid}.asc").write_text(sign(canonical_payload(report_format_uuid, files)))

    report_format = create_format(
        db, user, report_format_uuid=report_format_uuid, files=files, signature=sign(b"wrong")
    )
    assert report_format.trust == TrustState.YES


def test_reimport_gets_new_uuid_and_keeps_trust(db, user, report_format_env):
    report_format_uuid = str(uuid.uuid4())
    files = [("generate", GENERATE_CAT)]
    feed = report_format_env["feed"] / "report_formats"
    feed.mkdir()
    (feed / f"{report_format_uuid}.asc").write_text(sign(canonical_payload(report_format_uuid, files)))

    first = create_format(db, user, report_format_uuid=report_format_uuid, files=files)
    second = create_format(db, user, report_format_uuid=report_format_uuid, files=files)

    assert first.uuid == report_format_uuid
    assert second.uuid != report_format_uuid
    assert second.name == "Plain text 2"
    assert second.trust == TrustState.YES
    assert os.path.islink(paths.signature_link_path(second.uuid))

    verified = service.verify_report_format(db, RequestContext(user=user), second.uuid)
    assert verified.trust == TrustState.YES


@pytest.mark.parametrize(
    "params,error,code",
    [
        ([ParamSpec("p", None, "1", "1")], service.ParamTypeMissing, 7),
        ([ParamSpec("p", "float", "1", "1")], service.ParamTypeInvalid, 9),
        ([ParamSpec("p", "integer", "1", None)], service.ParamFallbackMissing, 5),
        ([integer_param(), integer_param()], service.DuplicateParamName, 8),
        ([integer_param(type_max="9223372036854775807")], service.ParamBoundInvalid, 6),
        ([integer_param(type_min="x")], service.ParamBoundInvalid, 6),
        ([integer_param(value="500")], service.ParamValueInvalid, 3),
        ([integer_param(fallback="0")], service.ParamFallbackInvalid, 4),
    ],
)
def test_create_rejects_bad_params(db, user, params, error, code):
    report_format_uuid = str(uuid.uuid4())
    with pytest.raises(error) as excinfo:
        create_format(db, user, report_format_uuid=report_format_uuid, params=params)
    assert excinfo.value.code == code
    assert db.query(models.ReportFormat).count() == 0
    assert not os.path.exists(paths.owner_dir(user.uuid, report_format_uuid))


def test_create_accepts_values_at_bounds(db, user):
    report_format = create_format(
        db,
        user,
        params=[
            integer_param(name="low", value="19", fallback="89", type_min="19", type_max="89"),
            ParamSpec("title", "string", "x" * 42, "", type_min="0", type_max="42"),
        ],
    )
    low, title = report_format.params
    assert (low.type_min, low.type_max, low.value) == (19, 89, "19")
    assert (title.type_min, title.type_max) == (0, 42)

    ctx = RequestContext(user=user)
    service.modify_report_format(db, ctx, report_format.uuid, param_name="low", param_value="89")
    with pytest.raises(service.ParamValueInvalid):
        service.modify_report_format(db, ctx, report_format.uuid, param_name="low", param_value="90")


def test_create_rejects_path_file_names(db, user):
    with pytest.raises(service.InvalidFileName) as excinfo:
        create_format(db, user, files=[("../generate", b"x")])
    assert excinfo.value.code == 2
    assert db.query(models.ReportFormat).count() == 0


def test_create_uses_fallback_when_value_missing(db, user):
    report_format = create_format(db, user, params=[integer_param(value=None)])
    assert report_format.params[0].value == "5"


def test_create_requires_permission(db):
    observer = make_user(db, role=rbac.ROLE_OBSERVER)
    with pytest.raises(service.PermissionDenied) as excinfo:
        create_format(db, observer)
    assert excinfo.value.code == 99


def test_copy_names_and_files(db, user):
    source = create_format(db, user, name="Report", params=[integer_param()])
    ctx = RequestContext(user=user)

    first = service.copy_report_format(db, ctx, source.uuid)
    second = service.copy_report_format(db, ctx, source.uuid)
    named = service.copy_report_format(db, ctx, source.uuid, "Custom")

    assert first.name == "Report Clone"
    assert second.name == "Report Clone 2"
    assert named.name == "Custom"
    assert [param.name for param in first.params] == ["rows"]
    assert os.path.exists(os.path.join(paths.owner_dir(user.uuid, first.uuid), "generate"))

    with pytest.raises(service.ReportFormatExists):
        service.copy_report_format(db, ctx, source.uuid, "Custom")
    with pytest.raises(service.ReportFormatNotFound) as excinfo:
        service.copy_report_format(db, ctx, str(uuid.uuid4()))
    assert excinfo.value.code == 2


def test_copy_of_predefined_is_trusted(db, user):
    source = create_format(db, user, name="Shared")
    service.modify_report_format(db, RequestContext.system(), source.uuid, predefined="1")
    system_dir = paths.predefined_dir(source.uuid)
    os.makedirs(system_dir)
    with open(os.path.join(system_dir, "generate"), "wb") as handle:
        handle.write(GENERATE_CAT)

    copy = service.copy_report_format(db, RequestContext(user=user), source.uuid)
    assert copy.trust == TrustState.YES
    assert not service.is_predefined(db, copy)


def test_modify_fields_and_params(db, user):
    report_format = create_format(db, user, params=[integer_param()])
    ctx = RequestContext(user=user)

    updated = service.modify_report_format(
        db, ctx, report_format.uuid, name="Renamed", summary="New", active=True,
        param_name="rows", param_value="42",
    )
    assert updated.name == "Renamed"
    assert updated.active is True
    assert updated.params[0].value == "42"

    with pytest.raises(service.ParamValueInvalid) as excinfo:
        service.modify_report_format(db, ctx, report_format.uuid, param_name="rows", param_value="0")
    assert excinfo.value.code == 4
    with pytest.raises(service.ParamNotFound) as excinfo:
        service.modify_report_format(db, ctx, report_format.uuid, param_name="nope", param_value="1")
    assert excinfo.value.code == 3
    with pytest.raises(service.InvalidPredefinedFlag) as excinfo:
        service.modify_report_format(db, ctx, report_format.uuid, predefined="2")
    assert excinfo.value.code == 5
    with pytest.raises(service.MissingReportFormatId) as excinfo:
        service.modify_report_format(db, ctx, None, name="x")
    assert excinfo.value.code == 2
    with pytest.raises(service.ReportFormatNotFound) as excinfo:
        service.modify_report_format(db, ctx, str(uuid.uuid4()), name="x")
    assert excinfo.value.code == 1

    db.expire_all()
    assert db.get(models.ReportFormat, report_format.id).params[0].value == "42"


def test_modify_failure_leaves_row_unchanged(db, user):
    report_format = create_format(db, user, params=[integer_param()])
    with pytest.raises(service.ParamValueInvalid):
        service.modify_report_format(
            db, RequestContext(user=user), report_format.uuid, name="Changed",
            param_name="rows", param_value="1000",
        )
    db.expire_all()
    assert db.get(models.ReportFormat, report_format.id).name == "Plain text"


def test_only_system_modifies_predefined(db, user, admin):
    report_format = create_format(db, user)
    service.modify_report_format(db, RequestContext.system(), report_format.uuid, predefined=True)
    with pytest.raises(service.PermissionDenied):
        service.modify_report_format(db, RequestContext(user=admin), report_format.uuid, name="x")


def test_other_users_cannot_see_formats(db, user, other_user):
    report_format = create_format(db, user)
    with pytest.raises(service.ReportFormatNotFound):
        service.get_report_format(db, RequestContext(user=other_user), report_format.uuid)
    assert service.list_report_formats(db, RequestContext(user=other_user)) == []


def test_trash_and_restore_round_trip(db, user):
    ctx = RequestContext(user=user)
    report_format = create_format(db, user, params=[integer_param()])
    report_format_uuid = report_format.uuid
    tag = models.Tag(name="keep")
    tag.resources.append(
        models.TagResource(
            resource_type=service.RESOURCE_TYPE,
            resource=report_format.id,
            resource_uuid=report_format_uuid,
        )
    )
    db.add(tag)
    db.commit()

    service.delete_report_format(db, ctx, report_format_uuid)

    trash = db.query(models.ReportFormatTrash).one()
    assert trash.original_uuid == report_format_uuid
    assert db.query(models.ReportFormat).count() == 0
    assert os.path.isdir(paths.trash_dir(trash.id))
    assert not os.path.exists(paths.owner_dir(user.uuid, report_format_uuid))
    tag_resource = db.query(models.TagResource).one()
    assert (tag_resource.resource, tag_resource.resource_location) == (trash.id, models.LOCATION_TRASH)

    # deleting a trashed format without ultimate is a no-op
    service.delete_report_format(db, ctx, trash.uuid)
    assert db.query(models.ReportFormatTrash).count() == 1

    restored = service.restore_report_format(db, ctx, trash.uuid)
    assert restored.uuid == report_format_uuid
    assert [param.name for param in restored.params] == ["rows"]
    assert os.path.isdir(paths.owner_dir(user.uuid, report_format_uuid))
    assert db.query(models.ReportFormatTrash).count() == 0
    db.expire_all()
    tag_resource = db.query(models.TagResource).one()
    assert (tag_resource.resource, tag_resource.resource_location) == (restored.id, models.LOCATION_TABLE)


def test_delete_error_codes(db, user):
    ctx = RequestContext(user=user)
    in_use = create_format(db, user, name="Used")
    _add_alert(db, in_use.uuid)
    with pytest.raises(service.ReportFormatInUse) as excinfo:
        service.delete_report_format(db, ctx, in_use.uuid)
    assert excinfo.value.code == 1

    predefined = create_format(db, user, name="Predefined")
    service.modify_report_format(db, RequestContext.system(), predefined.uuid, predefined=True)
    with pytest.raises(service.PredefinedReportFormat) as excinfo:
        service.delete_report_format(db, RequestContext.system(), predefined.uuid)
    assert excinfo.value.code == 3

    with pytest.raises(service.ReportFormatNotFound) as excinfo:
        service.delete_report_format(db, ctx, str(uuid.uuid4()))
    assert excinfo.value.code == 2


def test_ultimate_delete_checks_trashed_alerts(db, user):
    ctx = RequestContext(user=user)
    report_format = create_format(db, user)
    _add_alert(db, report_format.uuid, trash=True)
    with pytest.raises(service.ReportFormatInUse):
        service.delete_report_format(db, ctx, report_format.uuid, ultimate=True)

    other = create_format(db, user, name="Other")
    service.delete_report_format(db, ctx, other.uuid, ultimate=True)
    assert db.query(models.ReportFormat).filter(models.ReportFormat.uuid == other.uuid).count() == 0
    assert db.query(models.ReportFormatTrash).count() == 0
    assert not os.path.exists(paths.owner_dir(user.uuid, other.uuid))


def test_ultimate_delete_from_trash(db, user):
    ctx = RequestContext(user=user)
    report_format = create_format(db, user)
    service.delete_report_format(db, ctx, report_format.uuid)
    trash = db.query(models.ReportFormatTrash).one()
    trash_id = trash.id

    service.delete_report_format(db, ctx, trash.uuid, ultimate=True)
    assert db.query(models.ReportFormatTrash).count() == 0
    assert not os.path.exists(paths.trash_dir(trash_id))


def test_restore_conflicts(db, user, other_user):
    ctx = RequestContext(user=user)
    report_format = create_format(db, user, name="Named")
    report_format_uuid = report_format.uuid
    service.delete_report_format(db, ctx, report_format_uuid)
    trash = db.query(models.ReportFormatTrash).one()

    clash = create_format(db, user, name="Named")
    with pytest.raises(service.NameConflict) as excinfo:
        service.restore_report_format(db, ctx, trash.uuid)
    assert excinfo.value.code == 3
    service.modify_report_format(db, ctx, clash.uuid, name="Renamed")

    db.add(models.ReportFormat(uuid=report_format_uuid, owner_id=other_user.id, name="Elsewhere"))
    db.commit()
    with pytest.raises(service.UuidConflict) as excinfo:
        service.restore_report_format(db, ctx, trash.uuid)
    assert excinfo.value.code == 4

    with pytest.raises(service.ReportFormatNotFound) as excinfo:
        service.restore_report_format(db, ctx, str(uuid.uuid4()))
    assert excinfo.value.code == 2


def test_restore_without_original_uuid_aborts(db, user):
    trash = models.ReportFormatTrash(uuid=str(uuid.uuid4()), owner_id=user.id, name="Broken")
    db.add(trash)
    db.commit()
    with pytest.raises(service.RepositoryCorruption):
        service.restore_report_format(db, RequestContext(user=user), trash.uuid)


def test_permissions_follow_trash(db, user, other_user):
    report_format = create_format(db, user)
    db.add(
        models.Permission(
            name="get_report_formats",
            resource_type=service.RESOURCE_TYPE,
            resource=report_format.id,
            resource_uuid=report_format.uuid,
            subject_type="user",
            subject=other_user.id,
        )
    )
    db.commit()
    assert service.get_report_format(db, RequestContext(user=other_user), report_format.uuid)

    service.delete_report_format(db, RequestContext(user=user), report_format.uuid)
    trash = db.query(models.ReportFormatTrash).one()
    permission = db.query(models.Permission).filter(models.Permission.subject_type == "user").one()
    assert (permission.resource, permission.resource_location) == (trash.id, models.LOCATION_TRASH)

    service.delete_report_format(db, RequestContext(user=user), trash.uuid, ultimate=True)
    db.expire_all()
    permission = db.query(models.Permission).filter(models.Permission.subject_type == "user").one()
    assert permission.resource == resources.ORPHAN_RESOURCE


def test_verify_detects_tampering(db, user):
    report_format_uuid = str(uuid.uuid4())
    files = [("generate", GENERATE_CAT)]
    report_format = create_format(
        db, user, report_format_uuid=report_format_uuid, files=files,
        signature=sign(canonical_payload(report_format_uuid, files)),
    )
    ctx = RequestContext(user=user)
    assert service.verify_report_format(db, ctx, report_format.uuid).trust == TrustState.YES

    with open(os.path.join(paths.owner_dir(user.uuid, report_format_uuid), "generate"), "ab") as handle:
        handle.write(b"echo tampered\n")
    verified = service.verify_report_format(db, ctx, report_format.uuid)
    assert verified.trust == TrustState.NO

    with pytest.raises(service.ReportFormatNotFound) as excinfo:
        service.verify_report_format(db, ctx, str(uuid.uuid4()))
    assert excinfo.value.code == 1


def test_verify_without_verifier_is_internal_error(db, user, monkeypatch, tmp_path):
    report_format = create_format(db, user, signature="abc")
    monkeypatch.setenv("GVMD_GPGV", str(tmp_path / "missing"))
    with pytest.raises(service.InternalError) as excinfo:
        service.verify_report_format(db, RequestContext(user=user), report_format.uuid)
    assert excinfo.value.code == -1


def test_empty_trashcan(db, user, other_user):
    ctx = RequestContext(user=user)
    for name in ("one", "two"):
        service.delete_report_format(db, ctx, create_format(db, user, name=name).uuid)
    service.delete_report_format(
        db, RequestContext(user=other_user), create_format(db, other_user, name="theirs").uuid
    )

    assert service.empty_trashcan_report_formats(db, ctx) == 2
    remaining = db.query(models.ReportFormatTrash).one()
    assert remaining.owner_id == other_user.id
    assert os.path.isdir(paths.trash_dir(remaining.id))

    assert service.empty_trashcan_report_formats(db, ctx) == 0
    db.expire_all()
    assert db.query(models.ReportFormatTrash).filter(models.ReportFormatTrash.owner_id == user.id).count() == 0
    assert sorted(os.listdir(paths.trash_root())) == [str(remaining.id)]


def test_inherit_and_delete_user_formats(db, user, other_user):
    report_format = create_format(db, user)
    trashed = create_format(db, user, name="Trashed")
    service.delete_report_format(db, RequestContext(user=user), trashed.uuid)

    service.inherit_report_formats(db, user, other_user)
    db.commit()
    db.refresh(report_format)
    assert report_format.owner_id == other_user.id
    assert os.path.isdir(paths.owner_dir(other_user.uuid, report_format.uuid))
    assert not os.path.exists(paths.owner_dir(user.uuid, report_format.uuid))
    assert db.query(models.ReportFormatTrash).one().owner_id == other_user.id

    service.delete_report_formats_user(db, other_user)
    db.commit()
    assert db.query(models.ReportFormat).count() == 0
    assert db.query(models.ReportFormatTrash).count() == 0
    assert not os.path.exists(paths.owner_root(other_user.uuid))


def test_lookup_prefers_owned_then_global(db, user, other_user):
    ctx = RequestContext(user=user)
    theirs = create_format(db, other_user, name="Shared name", active=True)
    db.add(
        models.Permission(
            name="get_report_formats",
            resource_type=service.RESOURCE_TYPE,
            resource=theirs.id,
            resource_uuid=theirs.uuid,
            subject_type="user",
            subject=user.id,
        )
    )
    db.commit()
    assert service.lookup_report_format(db, ctx, "Shared name").uuid == theirs.uuid

    mine = create_format(db, user, name="Shared name", active=True)
    assert service.lookup_report_format(db, ctx, "Shared name").uuid == mine.uuid
    assert service.lookup_report_format(db, ctx, "Unknown") is None


def test_report_format_alerts(db, user):
    report_format = create_format(db, user)
    _add_alert(db, report_format.uuid, name="scp_report_format")
    _add_alert(db, report_format.uuid, name="unrelated")
    alerts = service.report_format_alerts(db, RequestContext.system(), report_format)
    assert len(alerts) == 1
    assert service.serialize_report_format(db, report_format).in_use is True
