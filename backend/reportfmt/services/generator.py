"""Generator invocation for report formats."""

from __future__ import annotations

import logging
import os
import pwd
import shlex
import subprocess
from dataclasses import dataclass

from sqlalchemy.orm import Session

from .. import models, storage
from .report_formats import report_format_dir

# purpose: run a report format's generate script against a report, without root privileges
# status: production
# depends_on: backend.reportfmt.services.report_formats.report_format_dir

_logger = logging.getLogger(__name__)


class GeneratorError(RuntimeError):
    """Raised when a generator could not be run."""


@dataclass(frozen=True)
class UnprivilegedAccount:
    name: str
    uid: int
    gid: int


def unprivileged_account() -> UnprivilegedAccount | None:
    """The account generators run as, or None to run as the current user.

    Only a process with elevated privileges switches accounts.
    """

    if os.geteuid() != 0:
        return None
    name = os.getenv("REPORT_FORMAT_GENERATOR_USER", "nobody")
    if not name:
        return None
    try:
        entry = pwd.getpwnam(name)
    except KeyError as exc:
        raise GeneratorError(f"Unknown generator account {name!r}") from exc
    return UnprivilegedAccount(name=name, uid=entry.pw_uid, gid=entry.pw_gid)


def _timeout() -> float | None:
    value = os.getenv("REPORT_FORMAT_GENERATOR_TIMEOUT")
    return float(value) if value else None


def run_unprivileged(
    command: str,
    *,
    cwd: str,
    account: UnprivilegedAccount | None,
    owned_paths: tuple[str, ...] = (),
) -> int:
    """Run a shell command line in ``cwd`` as ``account``.

    The paths in ``owned_paths`` are handed to the account first so the
    command can read its input and write its output. Supplementary groups
    are dropped. Returns the exit status of the shell.
    """

    kwargs = {}
    if account is not None:
        for path in owned_paths:
            os.chown(path, account.uid, account.gid)
        kwargs = {"user": account.uid, "group": account.gid, "extra_groups": []}
    result = subprocess.run(
        command,
        shell=True,
        cwd=cwd,
        check=False,
        timeout=_timeout(),
        **kwargs,
    )
    return result.returncode


def run_report_format_script(
    db: Session,
    report_format: models.ReportFormat,
    xml_file: str,
    xml_dir: str,
    manifest: str,
    output_file: str,
) -> None:
    """Run ``generate`` as ``generate <xml_file> '<manifest>' > <output_file>``.

    The script runs inside the report format's directory. Its exit status
    is not interpreted; only failing to run it, or it being killed, is an
    error.
    """

    script_dir = report_format_dir(db, report_format)
    script = os.path.join(script_dir, storage.ENTRY_POINT)
    if not os.path.isfile(script) or not os.access(script, os.X_OK):
        _logger.warning("Generator %s missing or not executable", script)
        raise GeneratorError(f"Generator missing for report format {report_format.uuid}")

    command = (
        f"{shlex.quote(script)} {shlex.quote(xml_file)} {shlex.quote(manifest)}"
        f" > {shlex.quote(output_file)} 2> /dev/null"
    )
    _logger.debug("Running generator: %s", command)
    try:
        status = run_unprivileged(
            command,
            cwd=script_dir,
            account=unprivileged_account(),
            owned_paths=(xml_dir, xml_file, output_file),
        )
    except subprocess.TimeoutExpired as exc:
        _logger.warning("Generator %s timed out", script)
        raise GeneratorError(f"Generator timed out for report format {report_format.uuid}") from exc
    except OSError as exc:
        _logger.warning("Failed to run generator %s: %s", script, exc)
        raise GeneratorError(f"Failed to run generator for report format {report_format.uuid}") from exc
    if status < 0:
        _logger.warning("Generator %s killed by signal %s", script, -status)
        raise GeneratorError(f"Generator killed for report format {report_format.uuid}")
    if status:
        _logger.debug("Generator %s exited with %s", script, status)
