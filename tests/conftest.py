"""
tests/conftest.py - shared fixtures.

Every test gets its own sqlite file database with the full schema, a user
for each role, and an HTTP client whose sessions point at that database.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from relief import crud, models, schemas
from relief.auth import utils_auth
from relief.database import Base, build_engine, get_db
from relief.main import app
from relief.services import disasters, resources, volunteers

# lowest bcrypt cost; hashing dominates fixture time otherwise
utils_auth.pwd_context.update(bcrypt__rounds=4)

PASSWORD = "secret123"


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'relief.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(email, *roles, first_name="Test", last_name="User"):
        data = schemas.UserCreate(first_name=first_name, last_name=last_name, email=email, password=PASSWORD)
        return crud.create_user(db, data, roles=roles)
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin@reliefhq.org", models.ROLE_ADMIN, first_name="Ada")


@pytest.fixture
def coordinator(make_user):
    return make_user("coord@reliefhq.org", models.ROLE_COORDINATOR, first_name="Cora")


@pytest.fixture
def volunteer_user(make_user):
    return make_user("vol@reliefhq.org", models.ROLE_VOLUNTEER, first_name="Val")


@pytest.fixture
def donor(make_user):
    return make_user("donor@reliefhq.org", models.ROLE_DONOR, first_name="Don")


def as_identity(user):
    return schemas.Identity(user_id=user.id)


@pytest.fixture
def admin_id(admin):
    return as_identity(admin)


@pytest.fixture
def coordinator_id(coordinator):
    return as_identity(coordinator)


@pytest.fixture
def volunteer_id(volunteer_user):
    return as_identity(volunteer_user)


@pytest.fixture
def donor_id(donor):
    return as_identity(donor)


@pytest.fixture
def disaster(db, volunteer_id):
    data = schemas.DisasterCreate(
        name="River flood",
        location="Lowtown",
        description="Levee breach on the east bank",
        disaster_type="Flood",
        severity_level="High",
        estimated_affected=1200,
    )
    return disasters.create_disaster(db, volunteer_id, data)


@pytest.fixture
def category(db, coordinator_id):
    return resources.create_category(
        db, coordinator_id, schemas.ResourceCategoryCreate(category_name="Water", description="Drinking water")
    )


@pytest.fixture
def resource(db, coordinator_id, category):
    data = schemas.ResourceCreate(
        name="Bottled water",
        category_id=category.id,
        unit_of_measure="liters",
        current_quantity=100,
        threshold_quantity=10,
    )
    return resources.create_resource(db, coordinator_id, data)


@pytest.fixture
def volunteer_profile(db, volunteer_id):
    data = schemas.VolunteerCreate(
        skills="First aid, driving",
        address="12 Hill Road",
        emergency_contact="+27 82 555 0101",
    )
    result = volunteers.register_volunteer(db, volunteer_id, data)
    return db.get(models.Volunteer, result.volunteer.id)


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    def _header(user):
        return {"Authorization": f"Bearer {utils_auth.create_access_token(user.id)}"}
    return _header
