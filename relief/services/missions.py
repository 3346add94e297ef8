import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from relief import crud, models, schemas
from relief.database import transaction
from relief.errors import ValidationFailed
from relief.permissions import compute_permissions, require
from relief.services.volunteers import get_my_volunteer

logger = logging.getLogger(__name__)

VIEW_DENIED = "You are not allowed to view missions."


def _check_references(db: Session, permissions: schemas.Permissions, data, current_assignee=None) -> None:
    crud.get_or_404(db, models.Disaster, data.disaster_id, "Disaster")
    if data.assigned_to_id is not None:
        crud.get_or_404(db, models.Volunteer, data.assigned_to_id, "Volunteer")
    if data.assigned_to_id != current_assignee:
        require(permissions.can_assign_missions, "You are not allowed to assign missions.")


def create_mission(db: Session, identity: schemas.Identity, data: schemas.MissionCreate) -> models.Mission:
    permissions = compute_permissions(db, identity)
    require(permissions.can_create_missions, "Only administrators and coordinators can create missions.")
    _check_references(db, permissions, data)

    mission = models.Mission(
        disaster_id=data.disaster_id,
        title=data.title,
        description=data.description,
        assigned_to_id=data.assigned_to_id,
        status=data.status,
        priority=data.priority,
        due_date=data.due_date,
        created_by_id=identity.user_id,
        created_date=models.utcnow(),
    )
    with transaction(db):
        db.add(mission)
    db.refresh(mission)
    logger.info(f"Mission {mission.id} '{mission.title}' created for disaster {mission.disaster_id}")
    return mission


def update_mission(
    db: Session, identity: schemas.Identity, mission_id: int, data: schemas.MissionUpdate
) -> models.Mission:
    permissions = compute_permissions(db, identity)
    require(permissions.can_manage_missions, "Only administrators and coordinators can edit missions.")
    mission = crud.get_or_404(db, models.Mission, mission_id, "Mission")
    crud.check_version(mission, data.version)
    _check_references(db, permissions, data, current_assignee=mission.assigned_to_id)

    with transaction(db):
        mission.disaster_id = data.disaster_id
        mission.title = data.title
        mission.description = data.description
        mission.assigned_to_id = data.assigned_to_id
        mission.status = data.status
        mission.priority = data.priority
        mission.due_date = data.due_date
    db.refresh(mission)
    logger.info(f"Mission {mission.id} updated by user {identity.user_id}")
    return mission


def update_mission_status(
    db: Session, identity: schemas.Identity, mission_id: int, status: str, version: Optional[int] = None
) -> models.Mission:
    require(
        compute_permissions(db, identity).can_manage_missions,
        "Only administrators and coordinators can change mission status.",
    )
    mission = crud.get_or_404(db, models.Mission, mission_id, "Mission")
    if status not in models.MISSION_STATUSES:
        raise ValidationFailed({"status": f"Unknown mission status '{status}'"})
    crud.check_version(mission, version)

    with transaction(db):
        mission.status = status
    db.refresh(mission)
    logger.info(f"Mission {mission.id} status set to {status}")
    return mission


def delete_mission(db: Session, identity: schemas.Identity, mission_id: int) -> None:
    require(
        compute_permissions(db, identity).can_manage_missions,
        "Only administrators and coordinators can delete missions.",
    )
    mission = crud.get_or_404(db, models.Mission, mission_id, "Mission")
    with transaction(db):
        db.delete(mission)
    logger.info(f"Mission {mission_id} deleted by user {identity.user_id}")


def list_missions(db: Session, identity: schemas.Identity, status: Optional[str] = None) -> List[models.Mission]:
    require(compute_permissions(db, identity).can_view_missions, VIEW_DENIED)
    query = select(models.Mission).order_by(models.Mission.created_date.desc())
    if status:
        if status not in models.MISSION_STATUSES:
            raise ValidationFailed({"status": f"Unknown mission status '{status}'"})
        query = query.where(models.Mission.status == status)
    return list(db.execute(query).scalars())


def get_mission(db: Session, identity: schemas.Identity, mission_id: int) -> models.Mission:
    require(compute_permissions(db, identity).can_view_missions, VIEW_DENIED)
    return crud.get_or_404(db, models.Mission, mission_id, "Mission")


def list_my_missions(db: Session, identity: schemas.Identity) -> List[models.Mission]:
    require(compute_permissions(db, identity).can_view_missions, VIEW_DENIED)
    volunteer = get_my_volunteer(db, identity)
    return list(db.execute(
        select(models.Mission)
        .where(models.Mission.assigned_to_id == volunteer.id)
        .order_by(models.Mission.created_date.desc())
    ).scalars())
