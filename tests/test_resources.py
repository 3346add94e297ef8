"""
tests/test_resources.py - resource categories, stock items and the request
edits that sit beside fulfilment.
"""
import pytest

from relief import models, schemas
from relief.errors import AuthorizationError, ConcurrencyError, ConflictError, NotFoundError
from relief.services import donations, resource_requests, resources


def _resource_update(resource, **changes):
    fields = dict(
        name=resource.name,
        category_id=resource.category_id,
        description=resource.description,
        unit_of_measure=resource.unit_of_measure,
        current_quantity=resource.current_quantity,
        threshold_quantity=resource.threshold_quantity,
    )
    fields.update(changes)
    return schemas.ResourceUpdate(**fields)


def _add_resource(db, identity, category, name, quantity, threshold=10):
    return resources.create_resource(db, identity, schemas.ResourceCreate(
        name=name, category_id=category.id, unit_of_measure="units",
        current_quantity=quantity, threshold_quantity=threshold,
    ))


# --- Categories ---
def test_category_create_update_and_list(db, coordinator_id, donor_id, category):
    renamed = resources.update_category(
        db, coordinator_id, category.id, schemas.ResourceCategoryCreate(category_name="Drinking water")
    )
    assert renamed.category_name == "Drinking water"
    assert renamed.description is None
    resources.create_category(db, coordinator_id, schemas.ResourceCategoryCreate(category_name="Blankets"))
    names = [c.category_name for c in resources.list_categories(db, donor_id)]
    assert names == ["Blankets", "Drinking water"]


def test_duplicate_category_name_conflicts(db, coordinator_id, category):
    other = resources.create_category(db, coordinator_id, schemas.ResourceCategoryCreate(category_name="Food"))
    with pytest.raises(ConflictError, match="already exists"):
        resources.update_category(db, coordinator_id, other.id, schemas.ResourceCategoryCreate(category_name="Water"))
    with pytest.raises(ConflictError):
        resources.create_category(db, coordinator_id, schemas.ResourceCategoryCreate(category_name="Water"))


def test_category_in_use_cannot_be_deleted(db, coordinator_id, category, resource):
    with pytest.raises(ConflictError, match="used by 1 resource"):
        resources.delete_category(db, coordinator_id, category.id)
    assert db.get(models.ResourceCategory, category.id) is not None


def test_unused_category_is_deleted(db, coordinator_id, category):
    resources.delete_category(db, coordinator_id, category.id)
    assert db.get(models.ResourceCategory, category.id) is None


def test_donors_cannot_manage_categories(db, donor_id, category):
    with pytest.raises(AuthorizationError):
        resources.create_category(db, donor_id, schemas.ResourceCategoryCreate(category_name="Tents"))
    with pytest.raises(AuthorizationError):
        resources.delete_category(db, donor_id, category.id)


# --- Resources ---
def test_update_resource_sets_stock_and_bumps_version(db, coordinator_id, donor_id, resource):
    updated = resources.update_resource(db, coordinator_id, resource.id, _resource_update(
        resource, current_quantity=8, version=resource.version,
    ))
    assert updated.current_quantity == 8
    assert updated.version == 2
    assert resources.get_resource(db, donor_id, resource.id).is_low_stock


def test_update_resource_unknown_category(db, coordinator_id, resource):
    with pytest.raises(NotFoundError):
        resources.update_resource(db, coordinator_id, resource.id, _resource_update(resource, category_id=404))


def test_update_resource_with_version_older_than_a_donation(db, coordinator_id, donor_id, resource):
    seen = resource.version
    donations.create_donation(db, donor_id, schemas.DonationCreate(resource_id=resource.id, quantity=5))
    with pytest.raises(ConcurrencyError):
        resources.update_resource(db, coordinator_id, resource.id, _resource_update(
            resource, current_quantity=0, version=seen,
        ))
    assert db.get(models.Resource, resource.id, populate_existing=True).current_quantity == 105


def test_stale_session_cannot_overwrite_donated_stock(session_factory, db, coordinator_id, donor_id, resource):
    editor = session_factory()
    try:
        stale = editor.get(models.Resource, resource.id)
        assert stale.version == 1

        donations.create_donation(db, donor_id, schemas.DonationCreate(resource_id=resource.id, quantity=7))

        with pytest.raises(ConcurrencyError):
            resources.update_resource(editor, coordinator_id, resource.id, _resource_update(
                stale, current_quantity=50,
            ))
    finally:
        editor.close()

    fresh = db.get(models.Resource, resource.id, populate_existing=True)
    assert fresh.current_quantity == 107
    assert fresh.version == 2


def test_list_low_stock_orders_by_quantity(db, coordinator_id, donor_id, category, resource):
    low = _add_resource(db, coordinator_id, category, "Jerry cans", 8)
    lowest = _add_resource(db, coordinator_id, category, "Purification tablets", 3)
    _add_resource(db, coordinator_id, category, "Water bladders", 11)

    assert [r.id for r in resources.list_low_stock(db, donor_id)] == [lowest.id, low.id]
    assert len(resources.list_resources(db, donor_id)) == 4


def test_delete_resource_with_donations_conflicts(db, coordinator_id, donor_id, resource):
    donations.create_donation(db, donor_id, schemas.DonationCreate(resource_id=resource.id, quantity=1))
    with pytest.raises(ConflictError, match="cannot be deleted"):
        resources.delete_resource(db, coordinator_id, resource.id)
    assert db.get(models.Resource, resource.id) is not None


def test_delete_unreferenced_resource(db, coordinator_id, donor_id, resource):
    resources.delete_resource(db, coordinator_id, resource.id)
    with pytest.raises(NotFoundError):
        resources.get_resource(db, donor_id, resource.id)


# --- Resource request edits ---
def _request(db, identity, disaster, resource, quantity=10):
    return resource_requests.create_resource_request(db, identity, schemas.ResourceRequestCreate(
        disaster_id=disaster.id, resource_id=resource.id, quantity_requested=quantity,
    ))


def test_update_resource_request(db, coordinator_id, disaster, resource):
    request = _request(db, coordinator_id, disaster, resource)
    seen = request.version
    updated = resource_requests.update_resource_request(db, coordinator_id, request.id, schemas.ResourceRequestUpdate(
        disaster_id=disaster.id, resource_id=resource.id, quantity_requested=25,
        urgency_level="Critical", version=seen,
    ))
    assert updated.quantity_requested == 25
    assert updated.urgency_level == "Critical"
    assert updated.status == "Pending"
    assert updated.version == seen + 1


def test_fulfilled_request_cannot_be_edited(db, coordinator_id, disaster, resource):
    request = _request(db, coordinator_id, disaster, resource)
    resource_requests.fulfill_request(db, coordinator_id, request.id)
    with pytest.raises(ConflictError):
        resource_requests.update_resource_request(db, coordinator_id, request.id, schemas.ResourceRequestUpdate(
            disaster_id=disaster.id, resource_id=resource.id, quantity_requested=1,
        ))


def test_delete_resource_request_frees_the_resource(db, coordinator_id, disaster, resource):
    request = _request(db, coordinator_id, disaster, resource)
    with pytest.raises(ConflictError):
        resources.delete_resource(db, coordinator_id, resource.id)

    resource_requests.delete_resource_request(db, coordinator_id, request.id)
    with pytest.raises(NotFoundError):
        resource_requests.get_resource_request(db, coordinator_id, request.id)
    resources.delete_resource(db, coordinator_id, resource.id)
    assert db.get(models.Resource, resource.id) is None
