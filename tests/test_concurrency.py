"""
tests/test_concurrency.py - concurrent writers on shared rows.

Every worker uses its own session, the way separate requests would.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select

from relief import models, schemas
from relief.database import transaction
from relief.errors import ConcurrencyError, ConflictError
from relief.services import assignments, disasters, donations, resource_requests
from relief.services.resources import adjust_stock


def _run(session_factory, fn, *args):
    session = session_factory()
    try:
        return fn(session, *args)
    finally:
        session.close()


def _stock(db, resource_id):
    return db.get(models.Resource, resource_id, populate_existing=True).current_quantity


def test_parallel_donations_and_fulfillments_lose_no_updates(
    db, session_factory, donor_id, coordinator_id, disaster, resource
):
    requests = [
        resource_requests.create_resource_request(db, coordinator_id, schemas.ResourceRequestCreate(
            disaster_id=disaster.id, resource_id=resource.id, quantity_requested=10,
        ))
        for _ in range(8)
    ]
    pledge = schemas.DonationCreate(resource_id=resource.id, quantity=5)

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(_run, session_factory, donations.create_donation, donor_id, pledge) for _ in range(8)]
        futures += [
            pool.submit(_run, session_factory, resource_requests.fulfill_request, coordinator_id, r.id)
            for r in requests
        ]
        results = [f.result() for f in futures]

    fulfilled = [r for r in results if isinstance(r, schemas.FulfillResult)]
    assert all(r.fulfilled for r in fulfilled)
    # 100 + 8 * 5 - 8 * 10
    assert _stock(db, resource.id) == 60


def test_parallel_fulfillments_never_overdraw(db, session_factory, coordinator_id, disaster, resource):
    requests = [
        resource_requests.create_resource_request(db, coordinator_id, schemas.ResourceRequestCreate(
            disaster_id=disaster.id, resource_id=resource.id, quantity_requested=30,
        ))
        for _ in range(5)
    ]
    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(
            lambda r: _run(session_factory, resource_requests.fulfill_request, coordinator_id, r.id), requests
        ))

    assert sum(r.fulfilled for r in results) == 3
    assert _stock(db, resource.id) == 10


def test_conditional_stock_change_respects_minimum(db, resource):
    with transaction(db):
        assert adjust_stock(db, resource.id, -101, minimum=101) is False
    assert _stock(db, resource.id) == 100
    with transaction(db):
        assert adjust_stock(db, resource.id, -100, minimum=100) is True
    assert _stock(db, resource.id) == 0


def test_edit_of_a_stale_row_becomes_concurrency_error(session_factory, disaster, coordinator, admin):
    first, second = session_factory(), session_factory()
    try:
        stale = second.get(models.Disaster, disaster.id)
        assert stale.version == 1

        def _edit(name):
            return schemas.DisasterUpdate(
                name=name, location="Lowtown", description="Levee breach",
                disaster_type="Flood", severity_level="High",
            )

        disasters.update_disaster(first, schemas.Identity(user_id=coordinator.id), disaster.id, _edit("First"))
        with pytest.raises(ConcurrencyError):
            disasters.update_disaster(second, schemas.Identity(user_id=admin.id), disaster.id, _edit("Second"))

        second.expire_all()
        assert second.get(models.Disaster, disaster.id).name == "First"
    finally:
        first.close()
        second.close()


def _assigned_rows(db, volunteer_id, disaster_id):
    return db.execute(
        select(func.count()).select_from(models.Assignment).where(
            models.Assignment.volunteer_id == volunteer_id,
            models.Assignment.disaster_id == disaster_id,
            models.Assignment.status == "Assigned",
        )
    ).scalar_one()


def _assign_all_at_once(session_factory, identity, data, workers, barrier):
    def attempt():
        session = session_factory()
        try:
            barrier.wait(timeout=10)
            assignments.create_assignment(session, identity, data)
            return "created"
        except (ConflictError, ConcurrencyError) as e:
            return type(e).__name__
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return [f.result() for f in [pool.submit(attempt) for _ in range(workers)]]


def test_racing_assignments_create_one_row(db, session_factory, coordinator_id, disaster, volunteer_profile):
    data = schemas.AssignmentCreate(
        volunteer_id=volunteer_profile.id, disaster_id=disaster.id, role_in_assignment="Medic",
    )
    outcomes = _assign_all_at_once(session_factory, coordinator_id, data, 4, threading.Barrier(4))

    assert outcomes.count("created") == 1
    assert set(outcomes) <= {"created", "ConflictError", "ConcurrencyError"}
    assert _assigned_rows(db, volunteer_profile.id, disaster.id) == 1
    assert db.get(models.Volunteer, volunteer_profile.id, populate_existing=True).availability_status == "Assigned"


def test_assignments_that_all_passed_the_duplicate_check(
    db, session_factory, coordinator_id, disaster, volunteer_profile, monkeypatch
):
    # hold every worker after its duplicate check until all four have made it
    checked = threading.Barrier(4)
    find_active = assignments._find_active

    def find_then_wait(*args, **kwargs):
        found = find_active(*args, **kwargs)
        checked.wait(timeout=10)
        return found

    monkeypatch.setattr(assignments, "_find_active", find_then_wait)
    data = schemas.AssignmentCreate(
        volunteer_id=volunteer_profile.id, disaster_id=disaster.id, role_in_assignment="Medic",
    )
    outcomes = _assign_all_at_once(session_factory, coordinator_id, data, 4, threading.Barrier(4))

    assert sorted(outcomes) == ["ConcurrencyError"] * 3 + ["created"]
    assert _assigned_rows(db, volunteer_profile.id, disaster.id) == 1
