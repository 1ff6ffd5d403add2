"""Filesystem layout of report format assets and signatures."""

import os

# purpose: single place that knows the on-disk layout shared with feed producers
# status: production
# depends_on: os.getenv (GVMD_STATE_DIR, GVMD_FEED_DIR, GVMD_PREDEFINED_REPORT_FORMATS_DIR, GVMD_SYSCONF_DIR)


def state_dir() -> str:
    return os.getenv("GVMD_STATE_DIR", "/var/lib/gvm/gvmd")


def feed_dir() -> str:
    return os.getenv("GVMD_FEED_DIR", "/var/lib/openvas/plugins")


def predefined_root() -> str:
    return os.getenv(
        "GVMD_PREDEFINED_REPORT_FORMATS_DIR", "/usr/share/gvm/gvmd/report_formats"
    )


def predefined_dir(report_format_uuid: str) -> str:
    return os.path.join(predefined_root(), report_format_uuid)


def owner_root(owner_uuid: str | None = None) -> str:
    root = os.path.join(state_dir(), "report_formats")
    if owner_uuid is None:
        return root
    return os.path.join(root, owner_uuid)


def owner_dir(owner_uuid: str, report_format_uuid: str) -> str:
    return os.path.join(owner_root(owner_uuid), report_format_uuid)


def trash_root() -> str:
    return os.path.join(state_dir(), "report_formats_trash")


def trash_dir(trash_id: int) -> str:
    return os.path.join(trash_root(), str(trash_id))


def signature_feed_path(report_format_uuid: str) -> str:
    return os.path.join(feed_dir(), "report_formats", f"{report_format_uuid}.asc")


def signature_link_root() -> str:
    return os.path.join(state_dir(), "signatures", "report_formats")


def signature_link_path(report_format_uuid: str) -> str:
    return os.path.join(signature_link_root(), f"{report_format_uuid}.asc")


def verifier_home() -> str:
    return os.path.join(os.getenv("GVMD_SYSCONF_DIR", "/etc/gvm"), "gnupg")


def trusted_keyring() -> str:
    gpg_home = os.getenv("GVMD_GPG_HOME") or verifier_home()
    return os.path.join(gpg_home, "pubring.gpg")
