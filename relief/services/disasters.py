import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from relief import crud, models, schemas
from relief.database import transaction
from relief.errors import ConflictError, ValidationFailed
from relief.permissions import compute_permissions, require

logger = logging.getLogger(__name__)

VIEW_DENIED = "You are not allowed to view disasters."


def create_disaster(db: Session, identity: schemas.Identity, data: schemas.DisasterCreate) -> models.Disaster:
    permissions = compute_permissions(db, identity)
    require(permissions.can_create_disasters, "You must be signed in to report a disaster.")

    disaster = models.Disaster(
        name=data.name,
        location=data.location,
        description=data.description,
        disaster_type=data.disaster_type,
        severity_level=data.severity_level,
        estimated_affected=data.estimated_affected,
        status="Active",
        start_date=models.utcnow(),
        reported_by_id=identity.user_id,
    )
    with transaction(db):
        db.add(disaster)
    db.refresh(disaster)
    logger.info(f"Disaster {disaster.id} '{disaster.name}' reported by user {identity.user_id}")
    return disaster


def list_disasters(db: Session, identity: schemas.Identity, status: Optional[str] = None) -> List[models.Disaster]:
    require(compute_permissions(db, identity).can_view_disasters, VIEW_DENIED)
    query = select(models.Disaster).order_by(models.Disaster.start_date.desc(), models.Disaster.id.desc())
    if status:
        if status not in models.DISASTER_STATUSES:
            raise ValidationFailed({"status": f"Unknown disaster status '{status}'"})
        query = query.where(models.Disaster.status == status)
    return list(db.execute(query).scalars())


def get_disaster(db: Session, identity: schemas.Identity, disaster_id: int) -> schemas.DisasterDetail:
    disaster = crud.get_or_404(db, models.Disaster, disaster_id, "Disaster")
    permissions = compute_permissions(db, identity, disaster.reported_by_id)
    require(permissions.can_view_disasters, VIEW_DENIED)
    reporter = crud.find_user_by_id(db, disaster.reported_by_id)
    return schemas.DisasterDetail(
        disaster=schemas.DisasterOut.model_validate(disaster),
        reported_by_name=reporter.full_name if reporter else None,
        can_edit=permissions.can_edit_all_disasters or permissions.can_edit_own_disasters,
        can_resolve=permissions.can_resolve_disasters,
        can_delete=permissions.can_delete_disasters,
    )


def update_disaster(
    db: Session, identity: schemas.Identity, disaster_id: int, data: schemas.DisasterUpdate
) -> models.Disaster:
    disaster = crud.get_or_404(db, models.Disaster, disaster_id, "Disaster")
    # ownership always comes from the stored row
    permissions = compute_permissions(db, identity, disaster.reported_by_id)
    require(
        permissions.can_edit_all_disasters or permissions.can_edit_own_disasters,
        "You can only edit disasters that you reported.",
    )
    crud.check_version(disaster, data.version)

    with transaction(db):
        disaster.name = data.name
        disaster.location = data.location
        disaster.description = data.description
        disaster.disaster_type = data.disaster_type
        disaster.severity_level = data.severity_level
        disaster.estimated_affected = data.estimated_affected
        if data.status is not None:
            disaster.status = data.status
    db.refresh(disaster)
    logger.info(f"Disaster {disaster.id} updated by user {identity.user_id}")
    return disaster


def resolve_disaster(
    db: Session, identity: schemas.Identity, disaster_id: int, version: Optional[int] = None
) -> models.Disaster:
    disaster = crud.get_or_404(db, models.Disaster, disaster_id, "Disaster")
    permissions = compute_permissions(db, identity, disaster.reported_by_id)
    require(
        permissions.can_resolve_disasters,
        "Only admins, coordinators, or the reporting user can resolve disasters.",
    )
    crud.check_version(disaster, version)

    with transaction(db):
        disaster.status = "Resolved"
    db.refresh(disaster)
    logger.info(f"Disaster {disaster.id} resolved by user {identity.user_id}")
    return disaster


def delete_disaster(db: Session, identity: schemas.Identity, disaster_id: int) -> None:
    disaster = crud.get_or_404(db, models.Disaster, disaster_id, "Disaster")
    permissions = compute_permissions(db, identity, disaster.reported_by_id)
    require(permissions.can_delete_disasters, "Only administrators can delete disasters.")

    references = {
        "assignments": models.Assignment.disaster_id,
        "missions": models.Mission.disaster_id,
        "resource requests": models.ResourceRequest.disaster_id,
    }
    blocking = []
    for label, column in references.items():
        n = crud.count_where(db, column, disaster.id)
        if n:
            blocking.append(f"{n} {label}")
    if blocking:
        logger.warning(f"Refusing to delete disaster {disaster.id}: referenced by {', '.join(blocking)}")
        raise ConflictError(
            f"Disaster '{disaster.name}' cannot be deleted while it has {', '.join(blocking)}."
        )

    name = disaster.name
    with transaction(db, f"Disaster '{name}' is still referenced and cannot be deleted."):
        db.delete(disaster)
    logger.info(f"Disaster {disaster_id} '{name}' deleted by user {identity.user_id}")
