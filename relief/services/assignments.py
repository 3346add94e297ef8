import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from relief import crud, models, schemas
from relief.database import transaction
from relief.errors import ConflictError, ValidationFailed
from relief.permissions import compute_permissions, require
from relief.services.volunteers import get_my_volunteer

logger = logging.getLogger(__name__)

MANAGE_DENIED = "Only administrators and coordinators can manage assignments."


def availability_for(status: str) -> str:
    return "Assigned" if status == "Assigned" else "Available"


def _set_availability(volunteer: models.Volunteer, availability: str) -> None:
    volunteer.availability_status = availability
    # always emit the versioned UPDATE so racing assignment writes on the
    # same volunteer collide instead of interleaving
    flag_modified(volunteer, "availability_status")


def _find_active(db: Session, volunteer_id: int, disaster_id: int, exclude_id: Optional[int] = None):
    query = select(models.Assignment).where(
        models.Assignment.volunteer_id == volunteer_id,
        models.Assignment.disaster_id == disaster_id,
        models.Assignment.status == "Assigned",
    )
    if exclude_id is not None:
        query = query.where(models.Assignment.id != exclude_id)
    return db.execute(query).scalars().first()


def create_assignment(
    db: Session, identity: schemas.Identity, data: schemas.AssignmentCreate
) -> models.Assignment:
    require(compute_permissions(db, identity).can_manage_assignments, MANAGE_DENIED)
    volunteer = crud.get_or_404(db, models.Volunteer, data.volunteer_id, "Volunteer")
    crud.get_or_404(db, models.Disaster, data.disaster_id, "Disaster")

    if data.status == "Assigned" and _find_active(db, data.volunteer_id, data.disaster_id):
        logger.warning(f"Duplicate assignment of volunteer {data.volunteer_id} to disaster {data.disaster_id}")
        raise ConflictError("This volunteer is already assigned to this disaster.")

    assignment = models.Assignment(
        volunteer_id=data.volunteer_id,
        disaster_id=data.disaster_id,
        role_in_assignment=data.role_in_assignment,
        status=data.status,
        assigned_by_id=identity.user_id,
        assignment_date=models.utcnow(),
    )
    with transaction(db):
        db.add(assignment)
        if data.status == "Assigned":
            _set_availability(volunteer, "Assigned")
    db.refresh(assignment)
    logger.info(
        f"Assignment {assignment.id}: volunteer {assignment.volunteer_id} -> disaster {assignment.disaster_id} "
        f"as {assignment.role_in_assignment}"
    )
    return assignment


def update_assignment(
    db: Session, identity: schemas.Identity, assignment_id: int, data: schemas.AssignmentUpdate
) -> models.Assignment:
    require(compute_permissions(db, identity).can_manage_assignments, MANAGE_DENIED)
    assignment = crud.get_or_404(db, models.Assignment, assignment_id, "Assignment")
    crud.check_version(assignment, data.version)
    return _apply(db, identity, assignment, data.status, data.role_in_assignment)


def update_assignment_status(
    db: Session, identity: schemas.Identity, assignment_id: int, status: str, version: Optional[int] = None
) -> models.Assignment:
    require(compute_permissions(db, identity).can_manage_assignments, MANAGE_DENIED)
    assignment = crud.get_or_404(db, models.Assignment, assignment_id, "Assignment")
    if status not in models.ASSIGNMENT_STATUSES:
        raise ValidationFailed({"status": f"Unknown assignment status '{status}'"})
    crud.check_version(assignment, version)
    return _apply(db, identity, assignment, status)


def _apply(db, identity, assignment, status, role=None):
    if status == "Assigned" and assignment.status != "Assigned" and \
            _find_active(db, assignment.volunteer_id, assignment.disaster_id, exclude_id=assignment.id):
        raise ConflictError("This volunteer is already assigned to this disaster.")

    volunteer = db.get(models.Volunteer, assignment.volunteer_id)
    with transaction(db):
        if status != assignment.status and volunteer is not None:
            _set_availability(volunteer, availability_for(status))
        assignment.status = status
        if role is not None:
            assignment.role_in_assignment = role
    db.refresh(assignment)
    logger.info(f"Assignment {assignment.id} now {assignment.status} (user {identity.user_id})")
    return assignment


def delete_assignment(db: Session, identity: schemas.Identity, assignment_id: int) -> None:
    require(compute_permissions(db, identity).can_manage_system, "Only administrators can delete assignments.")
    assignment = crud.get_or_404(db, models.Assignment, assignment_id, "Assignment")

    with transaction(db):
        if assignment.status == "Assigned":
            volunteer = db.get(models.Volunteer, assignment.volunteer_id)
            if volunteer is not None:
                _set_availability(volunteer, "Available")
        db.delete(assignment)
    logger.info(f"Assignment {assignment_id} deleted by user {identity.user_id}")


def get_assignment(db: Session, identity: schemas.Identity, assignment_id: int) -> models.Assignment:
    require(compute_permissions(db, identity).can_manage_assignments, MANAGE_DENIED)
    return crud.get_or_404(db, models.Assignment, assignment_id, "Assignment")


def list_assignments(db: Session, identity: schemas.Identity, disaster_id: Optional[int] = None) -> List[models.Assignment]:
    require(compute_permissions(db, identity).can_manage_assignments, MANAGE_DENIED)
    query = select(models.Assignment).order_by(models.Assignment.assignment_date.desc())
    if disaster_id is not None:
        query = query.where(models.Assignment.disaster_id == disaster_id)
    return list(db.execute(query).scalars())


def list_my_assignments(db: Session, identity: schemas.Identity) -> List[models.Assignment]:
    volunteer = get_my_volunteer(db, identity)
    return list(db.execute(
        select(models.Assignment)
        .where(models.Assignment.volunteer_id == volunteer.id)
        .order_by(models.Assignment.assignment_date.desc())
    ).scalars())
