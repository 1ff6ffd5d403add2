"""Generic resource bookkeeping shared by the table and trash locations."""

from __future__ import annotations

from sqlalchemy.orm import Session

from . import models

# purpose: move permissions, tags and predefined markers along with a resource
# status: production
# depends_on: backend.reportfmt.models.Permission, backend.reportfmt.models.TagResource

ORPHAN_RESOURCE = -1


def _opposite(location: int) -> int:
    if location == models.LOCATION_TRASH:
        return models.LOCATION_TABLE
    return models.LOCATION_TRASH


def permissions_set_locations(
    db: Session,
    resource_type: str,
    old_id: int,
    new_id: int,
    new_location: int,
    new_uuid: str | None = None,
) -> int:
    """Point permissions at a resource that moved between table and trash."""

    values = {
        models.Permission.resource: new_id,
        models.Permission.resource_location: new_location,
    }
    if new_uuid is not None:
        values[models.Permission.resource_uuid] = new_uuid
    return (
        db.query(models.Permission)
        .filter(
            models.Permission.resource_type == resource_type,
            models.Permission.resource == old_id,
            models.Permission.resource_location == _opposite(new_location),
        )
        .update(values, synchronize_session=False)
    )


def permissions_set_orphans(db: Session, resource_type: str, resource_id: int, location: int) -> int:
    return (
        db.query(models.Permission)
        .filter(
            models.Permission.resource_type == resource_type,
            models.Permission.resource == resource_id,
            models.Permission.resource_location == location,
        )
        .update({models.Permission.resource: ORPHAN_RESOURCE}, synchronize_session=False)
    )


def tags_set_locations(
    db: Session,
    resource_type: str,
    old_id: int,
    new_id: int,
    new_location: int,
    new_uuid: str | None = None,
) -> int:
    values = {
        models.TagResource.resource: new_id,
        models.TagResource.resource_location: new_location,
    }
    if new_uuid is not None:
        values[models.TagResource.resource_uuid] = new_uuid
    return (
        db.query(models.TagResource)
        .filter(
            models.TagResource.resource_type == resource_type,
            models.TagResource.resource == old_id,
            models.TagResource.resource_location == _opposite(new_location),
        )
        .update(values, synchronize_session=False)
    )


def tags_remove_resource(db: Session, resource_type: str, resource_id: int, location: int) -> int:
    return (
        db.query(models.TagResource)
        .filter(
            models.TagResource.resource_type == resource_type,
            models.TagResource.resource == resource_id,
            models.TagResource.resource_location == location,
        )
        .delete(synchronize_session=False)
    )


def resource_predefined(db: Session, resource_type: str, resource_id: int) -> bool:
    return (
        db.query(models.ResourcePredefined.id)
        .filter(
            models.ResourcePredefined.resource_type == resource_type,
            models.ResourcePredefined.resource == resource_id,
        )
        .first()
        is not None
    )


def resource_set_predefined(db: Session, resource_type: str, resource_id: int, predefined: bool) -> None:
    query = db.query(models.ResourcePredefined).filter(
        models.ResourcePredefined.resource_type == resource_type,
        models.ResourcePredefined.resource == resource_id,
    )
    if not predefined:
        query.delete(synchronize_session=False)
        return
    if query.first() is None:
        db.add(models.ResourcePredefined(resource_type=resource_type, resource=resource_id))


def add_role_permission_resource(
    db: Session,
    role_uuid: str,
    permission: str,
    resource_type: str,
    resource_id: int,
    resource_uuid: str,
) -> None:
    """Grant ``permission`` on a resource to a role unless already granted."""

    role = db.query(models.Role).filter(models.Role.uuid == role_uuid).first()
    if role is None:
        return
    exists = (
        db.query(models.Permission.id)
        .filter(
            models.Permission.name == permission,
            models.Permission.resource_type == resource_type,
            models.Permission.resource_uuid == resource_uuid,
            models.Permission.resource_location == models.LOCATION_TABLE,
            models.Permission.subject_type == "role",
            models.Permission.subject == role.id,
        )
        .first()
    )
    if exists is not None:
        return
    db.add(
        models.Permission(
            name=permission,
            resource_type=resource_type,
            resource=resource_id,
            resource_uuid=resource_uuid,
            resource_location=models.LOCATION_TABLE,
            subject_type="role",
            subject=role.id,
        )
    )
