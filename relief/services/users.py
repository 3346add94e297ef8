import logging
from typing import List

from sqlalchemy.orm import Session

from relief import crud, models, schemas
from relief.database import transaction
from relief.errors import ConflictError
from relief.permissions import compute_permissions, require

logger = logging.getLogger(__name__)

MANAGE_DENIED = "Only administrators can manage users."


def _with_roles(db: Session, user: models.User) -> schemas.UserWithRoles:
    return schemas.UserWithRoles(
        id=user.id,
        full_name=user.full_name,
        email=user.email,
        created_at=user.created_at,
        roles=sorted(crud.get_roles_for_user(db, user)),
    )


def list_users_with_roles(db: Session, identity: schemas.Identity) -> List[schemas.UserWithRoles]:
    require(compute_permissions(db, identity).can_manage_users, MANAGE_DENIED)
    return [_with_roles(db, u) for u in crud.list_users(db)]


def update_user_roles(
    db: Session, identity: schemas.Identity, user_id: int, data: schemas.UserRolesUpdate
) -> schemas.UserWithRoles:
    require(compute_permissions(db, identity).can_manage_users, MANAGE_DENIED)
    user = crud.get_or_404(db, models.User, user_id, "User")
    roles = crud.set_user_roles(db, user, data.roles)
    logger.info(f"Roles for user {user.id} set to {sorted(roles)} by user {identity.user_id}")
    return _with_roles(db, user)


def delete_user(db: Session, identity: schemas.Identity, user_id: int) -> None:
    require(compute_permissions(db, identity).can_manage_users, MANAGE_DENIED)
    user = crud.get_or_404(db, models.User, user_id, "User")
    if user.id == identity.user_id:
        raise ConflictError("You cannot delete your own account.")

    full_name = user.full_name
    # the volunteer profile and role links cascade; anything the user
    # reported, donated, assigned or requested keeps the account alive
    with transaction(db, f"{full_name} still owns disasters, donations or other records and cannot be deleted."):
        db.delete(user)
    logger.info(f"User {user_id} ({full_name}) deleted by user {identity.user_id}")
