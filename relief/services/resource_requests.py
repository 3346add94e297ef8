import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from relief import crud, models, schemas
from relief.database import transaction
from relief.errors import ConflictError, ValidationFailed
from relief.permissions import compute_permissions, require
from relief.services.resources import adjust_stock

logger = logging.getLogger(__name__)

MANAGE_DENIED = "Only administrators and coordinators can manage resource requests."


def create_resource_request(
    db: Session, identity: schemas.Identity, data: schemas.ResourceRequestCreate
) -> models.ResourceRequest:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    crud.get_or_404(db, models.Disaster, data.disaster_id, "Disaster")
    crud.get_or_404(db, models.Resource, data.resource_id, "Resource")

    request = models.ResourceRequest(
        disaster_id=data.disaster_id,
        resource_id=data.resource_id,
        quantity_requested=data.quantity_requested,
        urgency_level=data.urgency_level,
        date_required=data.date_required,
        status="Pending",
        requested_by_id=identity.user_id,
        date_requested=models.utcnow(),
    )
    with transaction(db):
        db.add(request)
    db.refresh(request)
    logger.info(
        f"Resource request {request.id}: {request.quantity_requested} of resource {request.resource_id} "
        f"for disaster {request.disaster_id} ({request.urgency_level})"
    )
    return request


def list_resource_requests(db: Session, identity: schemas.Identity, status: Optional[str] = None):
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    query = select(models.ResourceRequest).order_by(models.ResourceRequest.date_requested.desc())
    if status:
        if status not in models.REQUEST_STATUSES:
            raise ValidationFailed({"status": f"Unknown request status '{status}'"})
        query = query.where(models.ResourceRequest.status == status)
    return list(db.execute(query).scalars())


def get_resource_request(db: Session, identity: schemas.Identity, request_id: int) -> models.ResourceRequest:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    return crud.get_or_404(db, models.ResourceRequest, request_id, "Resource request")


def update_resource_request(
    db: Session, identity: schemas.Identity, request_id: int, data: schemas.ResourceRequestUpdate
) -> models.ResourceRequest:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    request = crud.get_or_404(db, models.ResourceRequest, request_id, "Resource request")
    if request.status == "Fulfilled":
        raise ConflictError("A fulfilled request can no longer be changed.")
    crud.check_version(request, data.version)
    crud.get_or_404(db, models.Disaster, data.disaster_id, "Disaster")
    crud.get_or_404(db, models.Resource, data.resource_id, "Resource")

    with transaction(db):
        request.disaster_id = data.disaster_id
        request.resource_id = data.resource_id
        request.quantity_requested = data.quantity_requested
        request.urgency_level = data.urgency_level
        request.date_required = data.date_required
    db.refresh(request)
    return request


def update_request_status(
    db: Session, identity: schemas.Identity, request_id: int, status: str, version: Optional[int] = None
) -> models.ResourceRequest:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    request = crud.get_or_404(db, models.ResourceRequest, request_id, "Resource request")
    if status not in models.REQUEST_STATUSES:
        raise ValidationFailed({"status": f"Unknown request status '{status}'"})
    if status == "Fulfilled":
        raise ValidationFailed({"status": "Use fulfill to mark a request Fulfilled; it also takes the stock."})
    if request.status == "Fulfilled":
        raise ConflictError("A fulfilled request can no longer be changed.")
    crud.check_version(request, version)

    with transaction(db):
        request.status = status
    db.refresh(request)
    logger.info(f"Resource request {request.id} status set to {status}")
    return request


def fulfill_request(
    db: Session, identity: schemas.Identity, request_id: int, version: Optional[int] = None
) -> schemas.FulfillResult:
    """
    Hand out the requested quantity from stock.

    The stock check and the decrement are one conditional UPDATE, so two
    fulfillments (or a fulfillment racing a donation) can never drive the
    quantity below zero or lose a write. Insufficient stock is reported in
    the result and leaves both rows untouched.
    """
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    request = crud.get_or_404(db, models.ResourceRequest, request_id, "Resource request")
    if request.status == "Fulfilled":
        raise ConflictError("This request has already been fulfilled.")
    crud.check_version(request, version)
    quantity = request.quantity_requested

    with transaction(db):
        fulfilled = adjust_stock(db, request.resource_id, -quantity, minimum=quantity)
        if fulfilled:
            request.status = "Fulfilled"

    db.refresh(request)
    resource = db.get(models.Resource, request.resource_id, populate_existing=True)
    if not fulfilled:
        logger.warning(
            f"Cannot fulfill request {request.id}: needs {quantity}, only {resource.current_quantity} in stock"
        )
        return schemas.FulfillResult(
            fulfilled=False,
            reason=(
                f"Insufficient resources to fulfill this request: {quantity} requested, "
                f"{resource.current_quantity} in stock."
            ),
            request=schemas.ResourceRequestOut.model_validate(request),
            remaining_quantity=resource.current_quantity,
        )

    logger.info(f"Resource request {request.id} fulfilled; {resource.current_quantity} left of resource {resource.id}")
    return schemas.FulfillResult(
        fulfilled=True,
        request=schemas.ResourceRequestOut.model_validate(request),
        remaining_quantity=resource.current_quantity,
    )


def delete_resource_request(db: Session, identity: schemas.Identity, request_id: int) -> None:
    require(compute_permissions(db, identity).can_manage_resources, MANAGE_DENIED)
    request = crud.get_or_404(db, models.ResourceRequest, request_id, "Resource request")
    with transaction(db):
        db.delete(request)
    logger.info(f"Resource request {request_id} deleted by user {identity.user_id}")
