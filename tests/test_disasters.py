"""
tests/test_disasters.py - reporting, editing, resolving and deleting disasters.
"""
import pytest

from relief import models, schemas
from relief.errors import AuthorizationError, ConcurrencyError, ConflictError, NotFoundError, ValidationFailed
from relief.services import assignments, disasters, missions


def _update(disaster, **changes):
    fields = dict(
        name=disaster.name,
        location=disaster.location,
        description=disaster.description,
        disaster_type=disaster.disaster_type,
        severity_level=disaster.severity_level,
        estimated_affected=disaster.estimated_affected,
        status=disaster.status,
    )
    fields.update(changes)
    return schemas.DisasterUpdate(**fields)


def test_create_sets_reporter_status_and_start(disaster, volunteer_user):
    assert disaster.reported_by_id == volunteer_user.id
    assert disaster.status == "Active"
    assert disaster.start_date is not None
    assert disaster.version == 1


def test_client_supplied_owner_is_ignored(db, donor_id, volunteer_user):
    data = schemas.DisasterCreate.model_validate({
        "name": "Quake",
        "location": "Ridge",
        "description": "Aftershocks",
        "disaster_type": "Earthquake",
        "severity_level": "Critical",
        "reported_by_id": volunteer_user.id,
    })
    disaster = disasters.create_disaster(db, donor_id, data)
    assert disaster.reported_by_id == donor_id.user_id


def test_owner_can_edit(db, disaster, volunteer_id):
    updated = disasters.update_disaster(db, volunteer_id, disaster.id, _update(disaster, severity_level="Critical"))
    assert updated.severity_level == "Critical"
    assert updated.version == 2


@pytest.mark.parametrize("who", ["admin_id", "coordinator_id"])
def test_staff_can_edit_any_disaster(request, db, disaster, who):
    identity = request.getfixturevalue(who)
    updated = disasters.update_disaster(db, identity, disaster.id, _update(disaster, location="Midtown"))
    assert updated.location == "Midtown"


def test_non_owner_cannot_edit(db, disaster, donor_id):
    with pytest.raises(AuthorizationError):
        disasters.update_disaster(db, donor_id, disaster.id, _update(disaster, name="Hijacked"))
    db.expire_all()
    assert db.get(models.Disaster, disaster.id).name == "River flood"


def test_detail_exposes_denied_state(db, disaster, donor_id, volunteer_user):
    detail = disasters.get_disaster(db, donor_id, disaster.id)
    assert detail.disaster.id == disaster.id
    assert detail.reported_by_name == volunteer_user.full_name
    assert (detail.can_edit, detail.can_resolve, detail.can_delete) == (False, False, False)


def test_resolve_by_owner_and_denied_for_others(db, disaster, volunteer_id, donor_id):
    with pytest.raises(AuthorizationError):
        disasters.resolve_disaster(db, donor_id, disaster.id)
    resolved = disasters.resolve_disaster(db, volunteer_id, disaster.id)
    assert resolved.status == "Resolved"
    assert [d.id for d in disasters.list_disasters(db, donor_id, "Resolved")] == [disaster.id]
    assert disasters.list_disasters(db, donor_id, "Active") == []


def test_edit_without_status_keeps_resolved(db, disaster, volunteer_id):
    disasters.resolve_disaster(db, volunteer_id, disaster.id)
    fields = _update(disaster).model_dump(exclude={"status", "version"})
    updated = disasters.update_disaster(
        db, volunteer_id, disaster.id, schemas.DisasterUpdate(**dict(fields, name="River flood (final)"))
    )
    assert updated.name == "River flood (final)"
    assert updated.status == "Resolved"


def test_edit_with_explicit_status_reopens(db, disaster, volunteer_id):
    disasters.resolve_disaster(db, volunteer_id, disaster.id)
    updated = disasters.update_disaster(db, volunteer_id, disaster.id, _update(disaster, status="Active"))
    assert updated.status == "Active"


def test_list_rejects_unknown_status(db, donor_id):
    with pytest.raises(ValidationFailed):
        disasters.list_disasters(db, donor_id, "Smouldering")


def test_stale_version_is_rejected(db, disaster, volunteer_id, coordinator_id):
    disasters.update_disaster(db, coordinator_id, disaster.id, _update(disaster, name="Flood v2", version=1))
    with pytest.raises(ConcurrencyError):
        disasters.update_disaster(db, volunteer_id, disaster.id, _update(disaster, name="Flood v1b", version=1))
    assert db.get(models.Disaster, disaster.id).name == "Flood v2"


def test_only_admin_deletes(db, disaster, coordinator_id, admin_id):
    with pytest.raises(AuthorizationError):
        disasters.delete_disaster(db, coordinator_id, disaster.id)
    disasters.delete_disaster(db, admin_id, disaster.id)
    with pytest.raises(NotFoundError):
        disasters.get_disaster(db, admin_id, disaster.id)


def test_delete_is_restricted_while_referenced(db, disaster, admin_id, coordinator_id, volunteer_profile):
    assignments.create_assignment(db, coordinator_id, schemas.AssignmentCreate(
        volunteer_id=volunteer_profile.id, disaster_id=disaster.id, role_in_assignment="Medic",
    ))
    missions.create_mission(db, coordinator_id, schemas.MissionCreate(
        disaster_id=disaster.id, title="Sandbags", description="Reinforce the levee",
    ))
    with pytest.raises(ConflictError) as exc:
        disasters.delete_disaster(db, admin_id, disaster.id)
    assert "1 assignments" in exc.value.message
    assert "1 missions" in exc.value.message
    assert db.get(models.Disaster, disaster.id) is not None
