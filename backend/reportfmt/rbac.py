from __future__ import annotations

from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.orm import Session

from . import models

# purpose: command and resource permission checks for report format operations
# status: production

ROLE_ADMIN = "7a8cb5b4-b74d-11e2-8187-406186ea4fc5"
ROLE_GUEST = "cc9cac5e-39a3-11e4-abae-406186ea4fc5"
ROLE_OBSERVER = "87a7e3a8-1d7f-11e3-abb4-406186ea4fc5"
ROLE_USER = "8d453140-b74d-11e2-b0be-406186ea4fc5"

BUILTIN_ROLES: dict[str, str] = {
    ROLE_ADMIN: "Admin",
    ROLE_GUEST: "Guest",
    ROLE_OBSERVER: "Observer",
    ROLE_USER: "User",
}

REPORT_FORMAT_COMMANDS = (
    "create_report_format",
    "get_report_formats",
    "modify_report_format",
    "delete_report_format",
    "verify_report_format",
    "restore",
    "empty_trashcan",
)

_ROLE_COMMANDS: dict[str, tuple[str, ...]] = {
    ROLE_USER: REPORT_FORMAT_COMMANDS,
    ROLE_OBSERVER: ("get_report_formats",),
    ROLE_GUEST: ("get_report_formats",),
}


@dataclass(frozen=True)
class RequestContext:
    """Who an operation runs for. ``user`` is None for the system itself."""

    user: models.User | None = None

    @classmethod
    def system(cls) -> "RequestContext":
        return cls(user=None)

    @property
    def is_system(self) -> bool:
        return self.user is None


def can_everything(user: models.User | None) -> bool:
    return user is None or bool(user.is_admin)


def _subject_filter(user: models.User):
    role_ids = [role.id for role in user.roles]
    clauses = [
        sa.and_(models.Permission.subject_type == "user", models.Permission.subject == user.id)
    ]
    if role_ids:
        clauses.append(
            sa.and_(
                models.Permission.subject_type == "role",
                models.Permission.subject.in_(role_ids),
            )
        )
    return sa.or_(*clauses)


def user_may(db: Session, ctx: RequestContext, command: str) -> bool:
    """Whether the context may run ``command`` at all."""

    if can_everything(ctx.user):
        return True
    return (
        db.query(models.Permission.id)
        .filter(
            models.Permission.name == command,
            models.Permission.resource_type.is_(None),
            _subject_filter(ctx.user),
        )
        .first()
        is not None
    )


def user_has_access(
    db: Session,
    ctx: RequestContext,
    resource_type: str,
    resource,
    action: str,
) -> bool:
    """Whether the context may apply ``action`` to one resource row.

    Owners and admins always may. Otherwise a permission on the resource is
    needed: any permission grants read access, other actions need their own.
    """

    if can_everything(ctx.user):
        return True
    if resource.owner_id is not None and resource.owner_id == ctx.user.id:
        return True
    query = db.query(models.Permission.id).filter(
        models.Permission.resource_type == resource_type,
        models.Permission.resource_uuid == resource.uuid,
        _subject_filter(ctx.user),
    )
    if not action.startswith("get_"):
        query = query.filter(models.Permission.name == action)
    return query.first() is not None


def owned_by_current_user(ctx: RequestContext, model):
    """Query criterion selecting rows of ``model`` owned by the context user."""

    if ctx.user is None:
        return model.owner_id.is_(None)
    return model.owner_id == ctx.user.id


def ensure_builtin_roles(db: Session) -> dict[str, models.Role]:
    """Create the fixed roles and their command permissions if missing."""

    roles: dict[str, models.Role] = {}
    for role_uuid, name in BUILTIN_ROLES.items():
        role = db.query(models.Role).filter(models.Role.uuid == role_uuid).first()
        if role is None:
            role = models.Role(uuid=role_uuid, name=name)
            db.add(role)
            db.flush()
        roles[role_uuid] = role
        for command in _ROLE_COMMANDS.get(role_uuid, ()):
            exists = (
                db.query(models.Permission.id)
                .filter(
                    models.Permission.name == command,
                    models.Permission.resource_type.is_(None),
                    models.Permission.subject_type == "role",
                    models.Permission.subject == role.id,
                )
                .first()
            )
            if exists is None:
                db.add(
                    models.Permission(
                        name=command,
                        subject_type="role",
                        subject=role.id,
                    )
                )
    db.flush()
    return roles
