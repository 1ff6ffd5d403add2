import base64
import uuid

from .. import models
from ..services.params import ParamSpec
from .conftest import GENERATE_CAT, auth_headers, canonical_payload, client, sign


def _payload(report_format_uuid=None, name="Plain text", signature=None):
    return {
        "id": report_format_uuid or str(uuid.uuid4()),
        "name": name,
        "extension": "txt",
        "content_type": "text/plain",
        "summary": "Summary",
        "description": "Description",
        "signature": signature,
        "files": [{"name": "generate", "content": base64.b64encode(GENERATE_CAT).decode()}],
        "params": [
            {"name": "rows", "type": "integer", "value": "10", "default": "5", "min": "1", "max": "100"}
        ],
    }


def test_requires_authentication(client):
    assert client.get("/api/report-formats").status_code == 403
    resp = client.get("/api/report-formats", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 403


def test_create_get_and_list(client, user):
    headers = auth_headers(user)
    report_format_uuid = str(uuid.uuid4())
    files = [("generate", GENERATE_CAT)]
    signature = sign(
        canonical_payload(report_format_uuid, files, [ParamSpec("rows", "integer", "10", "5", "1", "100")])
    )
    resp = client.post("/api/report-formats", json=_payload(report_format_uuid, signature=signature), headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == report_format_uuid
    assert body["trust"] == "yes"
    assert body["active"] is False
    assert body["owner_id"] == user.uuid
    assert body["params"][0] == {
        "name": "rows",
        "type": "integer",
        "value": "10",
        "default": "5",
        "min": 1,
        "max": 100,
        "options": [],
    }

    resp = client.get(f"/api/report-formats/{report_format_uuid}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Plain text"

    resp = client.get("/api/report-formats", headers=headers)
    assert [item["id"] for item in resp.json()] == [report_format_uuid]


def test_create_validation_errors(client, user):
    headers = auth_headers(user)
    payload = _payload()
    payload["params"][0]["value"] = "1000"
    assert client.post("/api/report-formats", json=payload, headers=headers).status_code == 400

    payload = _payload()
    payload["files"][0]["content"] = "***"
    assert client.post("/api/report-formats", json=payload, headers=headers).status_code == 422


def test_modify_copy_and_lookup(client, user):
    headers = auth_headers(user)
    report_format_uuid = client.post("/api/report-formats", json=_payload(), headers=headers).json()["id"]

    resp = client.patch(
        f"/api/report-formats/{report_format_uuid}",
        json={"name": "Renamed", "active": True, "param_name": "rows", "param_value": "20"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "Renamed"
    assert resp.json()["params"][0]["value"] == "20"

    resp = client.patch(
        f"/api/report-formats/{report_format_uuid}",
        json={"param_name": "rows", "param_value": "0"},
        headers=headers,
    )
    assert resp.status_code == 400

    resp = client.post(f"/api/report-formats/{report_format_uuid}/copy", json={}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Renamed Clone"

    resp = client.post(f"/api/report-formats/{report_format_uuid}/copy", json={"name": "Renamed"}, headers=headers)
    assert resp.status_code == 409

    resp = client.get("/api/report-formats/lookup", params={"name": "Renamed"}, headers=headers)
    assert resp.json()["id"] == report_format_uuid


def test_delete_trash_restore_and_empty(client, user):
    headers = auth_headers(user)
    report_format_uuid = client.post("/api/report-formats", json=_payload(), headers=headers).json()["id"]

    assert client.delete(f"/api/report-formats/{report_format_uuid}", headers=headers).status_code == 200
    assert client.get(f"/api/report-formats/{report_format_uuid}", headers=headers).status_code == 404

    trash = client.get("/api/report-formats", params={"trash": True}, headers=headers).json()
    assert [item["original_id"] for item in trash] == [report_format_uuid]

    resp = client.post(f"/api/report-formats/trash/{trash[0]['id']}/restore", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["id"] == report_format_uuid

    client.delete(f"/api/report-formats/{report_format_uuid}", headers=headers)
    resp = client.delete("/api/report-formats/trash", headers=headers)
    assert resp.json() == {"removed": 1}

    resp = client.post(f"/api/report-formats/trash/{uuid.uuid4()}/restore", headers=headers)
    assert resp.status_code == 404


def test_in_use_conflict_and_alerts(client, db, user):
    headers = auth_headers(user)
    report_format_uuid = client.post("/api/report-formats", json=_payload(), headers=headers).json()["id"]
    alert = models.Alert(name="Mailer", owner_id=user.id)
    alert.method_data.append(models.AlertMethodData(name="notice_attach_format", data=report_format_uuid))
    db.add(alert)
    db.commit()

    assert client.delete(f"/api/report-formats/{report_format_uuid}", headers=headers).status_code == 409
    resp = client.get(f"/api/report-formats/{report_format_uuid}/alerts", headers=headers)
    assert resp.json() == [{"id": alert.uuid, "name": "Mailer"}]


def test_verify_route(client, user):
    headers = auth_headers(user)
    report_format_uuid = client.post("/api/report-formats", json=_payload(), headers=headers).json()["id"]
    resp = client.post(f"/api/report-formats/{report_format_uuid}/verify", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["trust"] == "unknown"
    assert client.post(f"/api/report-formats/{uuid.uuid4()}/verify", headers=headers).status_code == 404


def test_other_users_get_not_found(client, user, other_user):
    report_format_uuid = client.post(
        "/api/report-formats", json=_payload(), headers=auth_headers(user)
    ).json()["id"]
    resp = client.get(f"/api/report-formats/{report_format_uuid}", headers=auth_headers(other_user))
    assert resp.status_code == 404


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"request_count" in resp.content
