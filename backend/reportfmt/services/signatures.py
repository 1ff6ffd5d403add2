"""Detached signature checks against the trusted keyring."""

from __future__ import annotations

import enum
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass

from .. import models, paths, storage

# purpose: classify report format content as trusted, untrusted or unknown
# status: production
# depends_on: gpgv, backend.reportfmt.paths

_logger = logging.getLogger(__name__)


class TrustState(enum.IntEnum):
    YES = models.TRUST_YES
    NO = models.TRUST_NO
    UNKNOWN = models.TRUST_UNKNOWN

    @property
    def label(self) -> str:
        return self.name.lower()


class SignatureVerifierUnavailable(OSError):
    """Raised when the verification program cannot be run at all."""


@dataclass(frozen=True)
class FoundSignature:
    signature: bytes
    linked_uuid: str | None = None


def _verifier_command(signature_file: str, payload_file: str) -> list[str]:
    return [
        os.getenv("GVMD_GPGV", "gpgv"),
        "--homedir",
        paths.verifier_home(),
        "--quiet",
        "--keyring",
        paths.trusted_keyring(),
        "--",
        signature_file,
        payload_file,
    ]


def verify_signature(payload: bytes, signature: bytes) -> TrustState:
    """Check ``signature`` over ``payload``.

    Exit status 0 means a good signature, 1 a bad one. Anything else is
    blamed on the signature content and yields ``UNKNOWN``.
    """

    payload_fd, payload_file = tempfile.mkstemp(prefix="gvmd-installer-")
    signature_fd, signature_file = tempfile.mkstemp(prefix="gvmd-signature-")
    try:
        with os.fdopen(payload_fd, "wb") as handle:
            handle.write(payload)
        with os.fdopen(signature_fd, "wb") as handle:
            handle.write(signature)
        command = _verifier_command(signature_file, payload_file)
        _logger.debug("Spawning %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                cwd=tempfile.gettempdir(),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            _logger.warning("Failed to run %s: %s", command[0], exc)
            raise SignatureVerifierUnavailable(exc.errno, str(exc)) from exc
    finally:
        for path in (payload_file, signature_file):
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
    if result.returncode == 0:
        return TrustState.YES
    if result.returncode == 1:
        return TrustState.NO
    _logger.debug("Verifier exited with %s: %s", result.returncode, result.stderr)
    return TrustState.UNKNOWN


def find_signature(report_format_uuid: str) -> FoundSignature | None:
    """Look up ``<uuid>.asc`` in the feed, then among the private links.

    For a private link the UUID of the signature it points to is returned
    as ``linked_uuid``, since that is the identity the signature covers.
    """

    if not report_format_uuid:
        return None
    feed_path = paths.signature_feed_path(report_format_uuid)
    try:
        with open(feed_path, "rb") as handle:
            return FoundSignature(handle.read())
    except FileNotFoundError:
        pass
    except OSError as exc:
        _logger.debug("Failed to read %s: %s", feed_path, exc)
        return None

    link_path = paths.signature_link_path(report_format_uuid)
    try:
        with open(link_path, "rb") as handle:
            signature = handle.read()
    except OSError:
        return None
    real_basename = os.path.basename(os.path.realpath(link_path))
    return FoundSignature(signature, real_basename.split(".", 1)[0] or real_basename)


def link_signature(existing_uuid: str, new_uuid: str) -> str:
    """Point the private signature of ``new_uuid`` at the one for ``existing_uuid``."""

    # purpose: keep a reimported format verifiable after it is given a fresh UUID
    # outputs: path of the created link
    # status: production
    feed_path = paths.signature_feed_path(existing_uuid)
    private_path = paths.signature_link_path(existing_uuid)
    if os.path.exists(feed_path):
        target = os.path.realpath(feed_path)
    elif os.path.lexists(private_path):
        target = os.readlink(private_path) if os.path.islink(private_path) else private_path
    else:
        target = feed_path

    storage.make_dir(paths.signature_link_root())
    link_path = paths.signature_link_path(new_uuid)
    if os.path.lexists(link_path):
        os.unlink(link_path)
    os.symlink(target, link_path)
    return link_path


def unlink_signature(report_format_uuid: str | None) -> None:
    if not report_format_uuid:
        return
    try:
        os.unlink(paths.signature_link_path(report_format_uuid))
    except FileNotFoundError:
        pass
