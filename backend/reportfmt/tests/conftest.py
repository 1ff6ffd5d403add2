import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
import hashlib
import sys
import textwrap
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

sys.path.append(str(Path(__file__).resolve().parents[2]))

from reportfmt.main import app
from reportfmt.database import Base, get_db
from reportfmt import models, rbac
from reportfmt.auth import create_access_token
from reportfmt.rbac import RequestContext
from reportfmt.services import canonical, report_formats
from reportfmt.services.params import ParamSpec

FAKE_GPGV = textwrap.dedent(
    """\
    #!/bin/sh
    # A signature is good when it holds the sha256 of the payload.
    sig=""
    data=""
    for arg in "$@"; do
      sig="$data"
      data="$arg"
    done
    actual=$(cat "$sig")
    if [ "$actual" = "garbage" ]; then
      exit 2
    fi
    expected=$(sha256sum "$data" | cut -d ' ' -f 1)
    if [ "$actual" = "$expected" ]; then
      exit 0
    fi
    exit 1
    """
)

GENERATE_CAT = b"#!/bin/sh\ncat \"$1\"\n"


def sign(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def canonical_payload(report_format_uuid, files, params=(), extension="txt", content_type="text/plain", global_=False):
    """Canonical bytes for not yet stored input, as a feed signer computes them."""

    return canonical.canonicalize(
        canonical.CanonicalIdentity(report_format_uuid, extension, content_type, global_),
        files,
        canonical.params_from_specs(params),
    )


@pytest.fixture(autouse=True)
def report_format_env(tmp_path, monkeypatch):
    dirs = {
        "state": tmp_path / "state",
        "feed": tmp_path / "feed",
        "predefined": tmp_path / "predefined",
        "sysconf": tmp_path / "sysconf",
        "bin": tmp_path / "bin",
    }
    for path in dirs.values():
        path.mkdir()
    gpgv = dirs["bin"] / "gpgv"
    gpgv.write_text(FAKE_GPGV)
    gpgv.chmod(0o755)
    monkeypatch.setenv("GVMD_STATE_DIR", str(dirs["state"]))
    monkeypatch.setenv("GVMD_FEED_DIR", str(dirs["feed"]))
    monkeypatch.setenv("GVMD_PREDEFINED_REPORT_FORMATS_DIR", str(dirs["predefined"]))
    monkeypatch.setenv("GVMD_SYSCONF_DIR", str(dirs["sysconf"]))
    monkeypatch.setenv("GVMD_GPGV", str(gpgv))
    monkeypatch.setenv("REPORT_FORMAT_GENERATOR_USER", "")
    monkeypatch.delenv("REPORT_FORMAT_GENERATOR_TIMEOUT", raising=False)
    return dirs


@pytest.fixture(autouse=True)
def session_factory(tmp_path, monkeypatch):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr("reportfmt.cli.report_formats.SessionLocal", factory)
    monkeypatch.setattr("reportfmt.tasks.SessionLocal", factory)
    with factory() as db:
        rbac.ensure_builtin_roles(db)
        db.commit()
    yield factory
    app.dependency_overrides.pop(get_db, None)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def make_user(db, *, role=rbac.ROLE_USER, is_admin=False, email=None):
    user = models.User(email=email or f"user-{uuid.uuid4()}@example.com", is_admin=is_admin)
    if role is not None:
        user.roles.append(db.query(models.Role).filter(models.Role.uuid == role).one())
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def other_user(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, role=None, is_admin=True)


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


def create_format(
    db,
    user,
    *,
    report_format_uuid=None,
    name="Plain text",
    files=None,
    params=(),
    signature=None,
    active=False,
):
    """Create a report format through the lifecycle, optionally activated."""

    ctx = RequestContext(user=user)
    report_format = report_formats.create_report_format(
        db,
        ctx,
        report_format_uuid=report_format_uuid or str(uuid.uuid4()),
        name=name,
        files=list(files) if files is not None else [("generate", GENERATE_CAT)],
        params=list(params),
        extension="txt",
        content_type="text/plain",
        summary="Summary",
        description="Description",
        signature=signature,
    )
    if active:
        report_format = report_formats.modify_report_format(db, ctx, report_format.uuid, active=True)
    return report_format


def integer_param(name="rows", value="10", fallback="5", type_min="1", type_max="100"):
    return ParamSpec(
        name=name,
        type="integer",
        value=value,
        fallback=fallback,
        type_min=type_min,
        type_max=type_max,
    )


def write_predefined(root, report_format_uuid, *, name="Feed format", params_xml="", generate=GENERATE_CAT):
    """Lay out a predefined report format directory with its descriptor."""

    directory = Path(root) / report_format_uuid
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "report_format.xml").write_text(
        "<report_format id=\"%s\">"
        "<name>%s</name>"
        "<extension>txt</extension>"
        "<content_type>text/plain</content_type>"
        "<summary>Feed summary</summary>"
        "<description>Feed description</description>"
        "%s"
        "</report_format>" % (report_format_uuid, name, params_xml)
    )
    generate_path = directory / "generate"
    generate_path.write_bytes(generate)
    generate_path.chmod(0o755)
    return directory
