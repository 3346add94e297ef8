"""
Permission engine.

Turns the caller's identity, plus the owner of the resource being acted on,
into a flat set of capability flags. Roles are always re-read from the user
store, so a role change takes effect on the very next call.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from relief import crud, models, schemas
from relief.errors import AuthorizationError

logger = logging.getLogger(__name__)


def compute_permissions(
    db: Session,
    identity: Optional[schemas.Identity],
    resource_owner_id: Optional[int] = None,
) -> schemas.Permissions:
    """
    Returns the capability flags for ``identity``.

    An identity that does not resolve to a stored user gets the all-false
    ``Permissions()``; this function never raises for unknown callers.
    """
    if identity is None:
        return schemas.Permissions()
    current_user = crud.find_user_by_id(db, identity.user_id)
    if current_user is None:
        logger.debug(f"No user for identity {identity.user_id}; granting nothing")
        return schemas.Permissions()

    roles = crud.get_roles_for_user(db, current_user)
    is_admin = models.ROLE_ADMIN in roles
    is_coordinator = models.ROLE_COORDINATOR in roles
    is_staff = is_admin or is_coordinator
    is_owner = resource_owner_id is not None and resource_owner_id == current_user.id

    return schemas.Permissions(
        can_view_disasters=True,
        can_create_disasters=True,
        can_edit_own_disasters=is_owner,
        can_edit_all_disasters=is_staff,
        can_resolve_disasters=is_staff or is_owner,
        can_delete_disasters=is_admin,

        can_view_volunteers=True,
        can_register_as_volunteer=True,
        can_edit_own_volunteer=is_owner,
        can_edit_all_volunteers=is_admin,
        can_contact_volunteers=is_staff,

        can_view_donations=True,
        can_view_own_donation=is_owner,
        can_create_donations=True,
        can_manage_donations=is_staff,

        can_view_missions=True,
        can_create_missions=is_staff,
        can_assign_missions=is_staff,
        can_manage_missions=is_staff,

        can_manage_assignments=is_staff,
        can_manage_resources=is_staff,

        can_manage_users=is_admin,
        can_view_reports=is_staff,
        can_manage_system=is_admin,
    )


def require(allowed: bool, message: str) -> None:
    if not allowed:
        logger.warning(f"Denied: {message}")
        raise AuthorizationError(message)
