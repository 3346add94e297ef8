import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import select, delete, func
from sqlalchemy.orm import Session

from relief import models, schemas
from relief.auth import utils_auth as auth_utils
from relief.database import transaction
from relief.errors import ConcurrencyError, ConflictError, NotFoundError, ValidationFailed

logger = logging.getLogger(__name__)


def get_or_404(db: Session, model, obj_id, label: Optional[str] = None):
    obj = db.get(model, obj_id) if obj_id is not None else None
    if obj is None:
        raise NotFoundError(f"{label or model.__name__} {obj_id} not found")
    return obj


def check_version(obj, expected: Optional[int]) -> None:
    """Raise when the caller edited a copy older than the stored row."""
    if expected is not None and obj.version != expected:
        raise ConcurrencyError(
            f"{type(obj).__name__} {obj.id} was changed by someone else. Reload it and try again."
        )


def count_where(db: Session, column, value) -> int:
    return db.execute(select(func.count()).where(column == value)).scalar_one()


def create_user(db: Session, user: schemas.UserCreate, roles: Iterable[str] = ()):
    exists = get_user_by_email(db, user.email)
    if exists:
        raise ConflictError("User with this email already exists")

    db_user = models.User(
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        password_hash=auth_utils.hash_password(user.password),
    )
    with transaction(db, "User with this email already exists"):
        db.add(db_user)
        db.flush()
        _replace_roles(db, db_user, roles)
    db.refresh(db_user)
    logger.info(f"Created user {db_user.id}")
    return db_user


def find_user_by_id(db: Session, user_id) -> Optional[models.User]:
    if user_id is None:
        return None
    return db.get(models.User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.execute(
        select(models.User).where(models.User.email == email)
    ).scalar_one_or_none()


def list_users(db: Session) -> List[models.User]:
    return list(db.execute(
        select(models.User).order_by(models.User.first_name, models.User.last_name)
    ).scalars())


def get_roles_for_user(db: Session, user: models.User) -> Set[str]:
    rows = db.execute(
        select(models.Role.name)
        .join(models.UserRole, models.UserRole.role_id == models.Role.id)
        .where(models.UserRole.user_id == user.id)
    ).scalars()
    return set(rows)


def set_user_roles(db: Session, user: models.User, roles: Iterable[str]) -> Set[str]:
    with transaction(db):
        _replace_roles(db, user, roles)
    return get_roles_for_user(db, user)


def _get_or_create_role(db: Session, name: str) -> models.Role:
    role = db.execute(select(models.Role).where(models.Role.name == name)).scalar_one_or_none()
    if role is None:
        role = models.Role(name=name)
        db.add(role)
        db.flush()
    return role


def _replace_roles(db: Session, user: models.User, roles: Iterable[str]) -> None:
    wanted = set(roles)
    unknown = wanted - set(models.ROLES)
    if unknown:
        raise ValidationFailed({"roles": f"Unknown role(s): {', '.join(sorted(unknown))}"})
    db.execute(delete(models.UserRole).where(models.UserRole.user_id == user.id))
    for name in sorted(wanted):
        role = _get_or_create_role(db, name)
        db.add(models.UserRole(user_id=user.id, role_id=role.id))
    db.flush()


def ensure_admin(db: Session, email: str, password: str) -> models.User:
    """Create the bootstrap admin account, or make sure it still holds the Admin role."""
    user = get_user_by_email(db, email)
    if user is None:
        user = create_user(
            db,
            schemas.UserCreate(first_name="System", last_name="Administrator", email=email, password=password),
            roles=[models.ROLE_ADMIN],
        )
        logger.info(f"Seeded admin account {email}")
        return user
    roles = get_roles_for_user(db, user)
    if models.ROLE_ADMIN not in roles:
        set_user_roles(db, user, roles | {models.ROLE_ADMIN})
        logger.info(f"Restored Admin role on {email}")
    return user
