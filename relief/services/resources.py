import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from relief import crud, models, schemas
from relief.database import transaction
from relief.errors import ConflictError, NotFoundError
from relief.permissions import compute_permissions, require

logger = logging.getLogger(__name__)

MANAGE_DENIED = "Only administrators and coordinators can manage resources."
VIEW_DENIED = "You are not allowed to view resources."


def adjust_stock(db: Session, resource_id: int, delta: int, minimum: Optional[int] = None) -> bool:
    """
    Atomically add ``delta`` to a resource's stock in the current transaction.

    With ``minimum`` set, the row only changes when its stock is at least that
    much. Returns False when no row was changed.
    """
    stmt = (
        update(models.Resource)
        .where(models.Resource.id == resource_id)
        .values(
            current_quantity=models.Resource.current_quantity + delta,
            version=models.Resource.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if minimum is not None:
        stmt = stmt.where(models.Resource.current_quantity >= minimum)
    result = db.execute(stmt)
    return result.rowcount == 1


# --- Categories ---
def create_category(db: Session, identity: schemas.Identity, data: schemas.ResourceCategoryCreate):
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    category = models.ResourceCategory(category_name=data.category_name, description=data.description)
    with transaction(db, f"A category named '{data.category_name}' already exists."):
        db.add(category)
    db.refresh(category)
    logger.info(f"Resource category {category.id} '{category.category_name}' created")
    return category


def list_categories(db: Session, identity: schemas.Identity) -> List[models.ResourceCategory]:
    require(compute_permissions(db, identity).can_view_donations, VIEW_DENIED)
    return list(db.execute(
        select(models.ResourceCategory).order_by(models.ResourceCategory.category_name)
    ).scalars())


def update_category(db: Session, identity: schemas.Identity, category_id: int, data: schemas.ResourceCategoryCreate):
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    category = crud.get_or_404(db, models.ResourceCategory, category_id, "Resource category")
    with transaction(db, f"A category named '{data.category_name}' already exists."):
        category.category_name = data.category_name
        category.description = data.description
    db.refresh(category)
    return category


def delete_category(db: Session, identity: schemas.Identity, category_id: int) -> None:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    category = crud.get_or_404(db, models.ResourceCategory, category_id, "Resource category")
    in_use = crud.count_where(db, models.Resource.category_id, category.id)
    if in_use:
        raise ConflictError(f"Category '{category.category_name}' is used by {in_use} resource(s).")
    with transaction(db, "This category is still in use."):
        db.delete(category)
    logger.info(f"Resource category {category_id} deleted")


# --- Resources ---
def create_resource(db: Session, identity: schemas.Identity, data: schemas.ResourceCreate) -> models.Resource:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    crud.get_or_404(db, models.ResourceCategory, data.category_id, "Resource category")
    resource = models.Resource(
        name=data.name,
        category_id=data.category_id,
        description=data.description,
        unit_of_measure=data.unit_of_measure,
        current_quantity=data.current_quantity,
        threshold_quantity=data.threshold_quantity,
    )
    with transaction(db):
        db.add(resource)
    db.refresh(resource)
    logger.info(f"Resource {resource.id} '{resource.name}' added with {resource.current_quantity} in stock")
    return resource


def list_resources(db: Session, identity: schemas.Identity) -> List[models.Resource]:
    require(compute_permissions(db, identity).can_view_donations, VIEW_DENIED)
    return list(db.execute(select(models.Resource).order_by(models.Resource.name)).scalars())


def get_resource(db: Session, identity: schemas.Identity, resource_id: int) -> models.Resource:
    require(compute_permissions(db, identity).can_view_donations, VIEW_DENIED)
    return crud.get_or_404(db, models.Resource, resource_id, "Resource")


def list_low_stock(db: Session, identity: schemas.Identity) -> List[models.Resource]:
    require(compute_permissions(db, identity).can_view_donations, VIEW_DENIED)
    return list(db.execute(
        select(models.Resource)
        .where(models.Resource.current_quantity <= models.Resource.threshold_quantity)
        .order_by(models.Resource.current_quantity)
    ).scalars())


def update_resource(
    db: Session, identity: schemas.Identity, resource_id: int, data: schemas.ResourceUpdate
) -> models.Resource:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    resource = crud.get_or_404(db, models.Resource, resource_id, "Resource")
    crud.check_version(resource, data.version)
    if db.get(models.ResourceCategory, data.category_id) is None:
        raise NotFoundError(f"Resource category {data.category_id} not found")

    with transaction(db):
        resource.name = data.name
        resource.category_id = data.category_id
        resource.description = data.description
        resource.unit_of_measure = data.unit_of_measure
        resource.current_quantity = data.current_quantity
        resource.threshold_quantity = data.threshold_quantity
    db.refresh(resource)
    logger.info(f"Resource {resource.id} updated by user {identity.user_id}")
    return resource


def delete_resource(db: Session, identity: schemas.Identity, resource_id: int) -> None:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    resource = crud.get_or_404(db, models.Resource, resource_id, "Resource")
    if crud.count_where(db, models.Donation.resource_id, resource.id) or \
            crud.count_where(db, models.ResourceRequest.resource_id, resource.id):
        raise ConflictError(f"Resource '{resource.name}' has donations or requests and cannot be deleted.")
    with transaction(db, "This resource is still referenced and cannot be deleted."):
        db.delete(resource)
    logger.info(f"Resource {resource_id} deleted by user {identity.user_id}")
