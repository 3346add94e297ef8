import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from relief import crud, models, schemas
from relief.database import transaction
from relief.errors import NotFoundError, ValidationFailed
from relief.permissions import compute_permissions, require
from relief.services.resources import adjust_stock

logger = logging.getLogger(__name__)


def create_donation(db: Session, identity: schemas.Identity, data: schemas.DonationCreate) -> models.Donation:
    """
    Record a pledged donation and add its quantity to the resource's stock.

    Both writes share one transaction: an unknown resource leaves neither a
    donation row nor a stock change behind. Stock is counted at pledge time,
    before anyone confirms receipt.
    """
    permissions = compute_permissions(db, identity)
    require(permissions.can_create_donations, "You must be signed in to donate.")
    crud.get_or_404(db, models.Resource, data.resource_id, "Resource")

    donation = models.Donation(
        donor_id=identity.user_id,
        resource_id=data.resource_id,
        quantity=data.quantity,
        notes=data.notes,
        status="Pending",
        donation_date=models.utcnow(),
    )
    with transaction(db):
        db.add(donation)
        if not adjust_stock(db, data.resource_id, data.quantity):
            # removed between the lookup and the update
            raise NotFoundError(f"Resource {data.resource_id} not found")
    db.refresh(donation)
    logger.info(
        f"Donation {donation.id}: user {identity.user_id} gave {donation.quantity} of resource {donation.resource_id}"
    )
    return donation


def list_donations(db: Session, identity: schemas.Identity) -> List[models.Donation]:
    require(compute_permissions(db, identity).can_manage_donations, "Only administrators and coordinators can view all donations.")
    return list(db.execute(
        select(models.Donation).order_by(models.Donation.donation_date.desc())
    ).scalars())


def list_my_donations(db: Session, identity: schemas.Identity) -> List[models.Donation]:
    require(compute_permissions(db, identity).can_view_donations, "You are not allowed to view donations.")
    return list(db.execute(
        select(models.Donation)
        .where(models.Donation.donor_id == identity.user_id)
        .order_by(models.Donation.donation_date.desc())
    ).scalars())


def get_donation(db: Session, identity: schemas.Identity, donation_id: int) -> models.Donation:
    donation = crud.get_or_404(db, models.Donation, donation_id, "Donation")
    permissions = compute_permissions(db, identity, donation.donor_id)
    require(
        permissions.can_manage_donations or permissions.can_view_own_donation,
        "You can only view your own donations.",
    )
    return donation


def update_donation_status(
    db: Session, identity: schemas.Identity, donation_id: int, status: str, version=None
) -> models.Donation:
    donation = crud.get_or_404(db, models.Donation, donation_id, "Donation")
    require(
        compute_permissions(db, identity).can_manage_donations,
        "Only administrators and coordinators can change donation status.",
    )
    if status not in models.DONATION_STATUSES:
        raise ValidationFailed({"status": f"Unknown donation status '{status}'"})
    order = models.DONATION_STATUSES
    if order.index(status) < order.index(donation.status):
        raise ValidationFailed({"status": f"Cannot move a donation from {donation.status} back to {status}"})
    crud.check_version(donation, version)

    with transaction(db):
        donation.status = status
    db.refresh(donation)
    logger.info(f"Donation {donation.id} marked {status} by user {identity.user_id}")
    return donation
