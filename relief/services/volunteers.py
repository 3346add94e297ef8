import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from relief import crud, models, schemas
from relief.database import transaction
from relief.errors import ConflictError, NotFoundError
from relief.permissions import compute_permissions, require

logger = logging.getLogger(__name__)


def get_volunteer_for_user(db: Session, user_id: int) -> Optional[models.Volunteer]:
    return db.execute(
        select(models.Volunteer).where(models.Volunteer.user_id == user_id)
    ).scalar_one_or_none()


def to_out(db: Session, identity: schemas.Identity, volunteer: models.Volunteer) -> schemas.VolunteerOut:
    """Serialize a profile, hiding contact details from callers who may not use them."""
    permissions = compute_permissions(db, identity, volunteer.user_id)
    out = schemas.VolunteerOut.model_validate(volunteer)
    user = crud.find_user_by_id(db, volunteer.user_id)
    out.full_name = user.full_name if user else None
    if not (permissions.can_contact_volunteers or permissions.can_edit_own_volunteer):
        out.address = None
        out.emergency_contact = None
    return out


def register_volunteer(
    db: Session, identity: schemas.Identity, data: schemas.VolunteerCreate
) -> schemas.VolunteerRegistration:
    permissions = compute_permissions(db, identity)
    require(permissions.can_register_as_volunteer, "You must be signed in to register as a volunteer.")

    existing = get_volunteer_for_user(db, identity.user_id)
    if existing is not None:
        logger.info(f"User {identity.user_id} already has volunteer profile {existing.id}")
        return schemas.VolunteerAlreadyExists(volunteer=to_out(db, identity, existing))

    volunteer = models.Volunteer(
        user_id=identity.user_id,
        skills=data.skills,
        availability_status=data.availability_status,
        address=data.address,
        emergency_contact=data.emergency_contact,
        date_registered=models.utcnow(),
    )
    try:
        with transaction(db):
            db.add(volunteer)
    except ConflictError:
        # a concurrent registration for the same user won the unique constraint
        existing = get_volunteer_for_user(db, identity.user_id)
        if existing is None:
            raise
        return schemas.VolunteerAlreadyExists(volunteer=to_out(db, identity, existing))

    db.refresh(volunteer)
    logger.info(f"Volunteer profile {volunteer.id} created for user {identity.user_id}")
    return schemas.VolunteerCreated(volunteer=to_out(db, identity, volunteer))


def list_volunteers(db: Session, identity: schemas.Identity) -> List[schemas.VolunteerOut]:
    permissions = compute_permissions(db, identity)
    require(permissions.can_view_volunteers, "You must be signed in to view volunteers.")
    volunteers = db.execute(
        select(models.Volunteer).order_by(models.Volunteer.date_registered.desc())
    ).scalars()
    return [to_out(db, identity, v) for v in volunteers]


def get_volunteer(db: Session, identity: schemas.Identity, volunteer_id: int) -> schemas.VolunteerOut:
    volunteer = crud.get_or_404(db, models.Volunteer, volunteer_id, "Volunteer")
    permissions = compute_permissions(db, identity, volunteer.user_id)
    require(permissions.can_view_volunteers, "You must be signed in to view volunteers.")
    return to_out(db, identity, volunteer)


def get_my_volunteer(db: Session, identity: schemas.Identity) -> models.Volunteer:
    volunteer = get_volunteer_for_user(db, identity.user_id)
    if volunteer is None:
        raise NotFoundError("You need to be registered as a volunteer.")
    return volunteer


def update_volunteer(
    db: Session, identity: schemas.Identity, volunteer_id: int, data: schemas.VolunteerUpdate
) -> models.Volunteer:
    volunteer = crud.get_or_404(db, models.Volunteer, volunteer_id, "Volunteer")
    permissions = compute_permissions(db, identity, volunteer.user_id)
    require(
        permissions.can_edit_all_volunteers or permissions.can_edit_own_volunteer,
        "You can only edit your own volunteer profile.",
    )
    crud.check_version(volunteer, data.version)

    with transaction(db):
        volunteer.skills = data.skills
        volunteer.availability_status = data.availability_status
        volunteer.address = data.address
        volunteer.emergency_contact = data.emergency_contact
    db.refresh(volunteer)
    logger.info(f"Volunteer {volunteer.id} updated by user {identity.user_id}")
    return volunteer


def delete_volunteer(db: Session, identity: schemas.Identity, volunteer_id: int) -> None:
    volunteer = crud.get_or_404(db, models.Volunteer, volunteer_id, "Volunteer")
    permissions = compute_permissions(db, identity, volunteer.user_id)
    require(permissions.can_edit_all_volunteers, "Only administrators can remove volunteer profiles.")

    if crud.count_where(db, models.Assignment.volunteer_id, volunteer.id) or \
            crud.count_where(db, models.Mission.assigned_to_id, volunteer.id):
        raise ConflictError("This volunteer still has assignments or missions and cannot be removed.")

    with transaction(db, "This volunteer is still referenced and cannot be removed."):
        db.delete(volunteer)
    logger.info(f"Volunteer {volunteer_id} deleted by user {identity.user_id}")
