import logging
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, status, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from relief import config, crud, schemas
from relief.auth import utils_auth as auth_utils
from relief.database import engine, get_db, Base, SessionLocal
from relief.errors import ReliefError, StoreUnavailableError
from relief.permissions import compute_permissions
from relief.services import (
    assignments, disasters, donations, missions, reports, resource_requests, resources, users, volunteers,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Relief Coordination API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    if config.ADMIN_EMAIL and config.ADMIN_PASSWORD:
        db = SessionLocal()
        try:
            crud.ensure_admin(db, config.ADMIN_EMAIL, config.ADMIN_PASSWORD)
        finally:
            db.close()


@app.exception_handler(ReliefError)
def relief_error_handler(request: Request, exc: ReliefError):
    headers = None
    if isinstance(exc, StoreUnavailableError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "errors": getattr(exc, "errors", None)},
        headers=headers,
    )


@app.exception_handler(OperationalError)
@app.exception_handler(PoolTimeoutError)
def store_unavailable_handler(request: Request, exc: Exception):
    logger.error(f"Store unavailable during {request.method} {request.url.path}: {exc}")
    return relief_error_handler(
        request, StoreUnavailableError("The database is busy or unreachable. Please try again shortly.")
    )


def get_current_identity(authorization: Optional[str] = Header(None)) -> schemas.Identity:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")
    payload = auth_utils.decode_token(authorization[len("Bearer "):])
    if not payload or payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    return schemas.Identity(user_id=user_id, roles=payload.get("roles", []))


# --- Users ---
@app.post("/users/signup", response_model=schemas.UserOut, status_code=status.HTTP_201_CREATED)
def signup(user: schemas.UserCreate, db: Session = Depends(get_db)):
    return crud.create_user(db, user)


@app.post("/users/login", response_model=schemas.TokenOut)
def user_login(payload: schemas.LoginSchema, db: Session = Depends(get_db)):
    user = crud.get_user_by_email(db, payload.email)
    if not user or not auth_utils.verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    roles = crud.get_roles_for_user(db, user)
    return schemas.TokenOut(access_token=auth_utils.create_access_token(user.id, roles))


@app.get("/users/me/permissions", response_model=schemas.Permissions)
def my_permissions(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return compute_permissions(db, identity)


# --- Disasters ---
@app.get("/disasters", response_model=List[schemas.DisasterOut])
def list_disasters(status: Optional[str] = None, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return disasters.list_disasters(db, identity, status)


@app.post("/disasters", response_model=schemas.DisasterOut, status_code=status.HTTP_201_CREATED)
def create_disaster(data: schemas.DisasterCreate, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return disasters.create_disaster(db, identity, data)


@app.get("/disasters/{disaster_id}", response_model=schemas.DisasterDetail)
def get_disaster(disaster_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return disasters.get_disaster(db, identity, disaster_id)


@app.put("/disasters/{disaster_id}", response_model=schemas.DisasterOut)
def update_disaster(
    disaster_id: int, data: schemas.DisasterUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return disasters.update_disaster(db, identity, disaster_id, data)


@app.post("/disasters/{disaster_id}/resolve", response_model=schemas.DisasterOut)
def resolve_disaster(
    disaster_id: int, version: Optional[int] = None, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return disasters.resolve_disaster(db, identity, disaster_id, version)


@app.delete("/disasters/{disaster_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_disaster(disaster_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    disasters.delete_disaster(db, identity, disaster_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Volunteers ---
@app.post("/volunteers/register", response_model=schemas.VolunteerRegistration)
def register_volunteer(
    data: schemas.VolunteerCreate, response: Response,
    identity=Depends(get_current_identity), db: Session = Depends(get_db),
):
    result = volunteers.register_volunteer(db, identity, data)
    if isinstance(result, schemas.VolunteerCreated):
        response.status_code = status.HTTP_201_CREATED
    return result


@app.get("/volunteers", response_model=List[schemas.VolunteerOut])
def list_volunteers(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return volunteers.list_volunteers(db, identity)


@app.get("/volunteers/me", response_model=schemas.VolunteerOut)
def my_volunteer(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return volunteers.to_out(db, identity, volunteers.get_my_volunteer(db, identity))


@app.get("/volunteers/{volunteer_id}", response_model=schemas.VolunteerOut)
def get_volunteer(volunteer_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return volunteers.get_volunteer(db, identity, volunteer_id)


@app.put("/volunteers/{volunteer_id}", response_model=schemas.VolunteerOut)
def update_volunteer(
    volunteer_id: int, data: schemas.VolunteerUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return volunteers.to_out(db, identity, volunteers.update_volunteer(db, identity, volunteer_id, data))


@app.delete("/volunteers/{volunteer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_volunteer(volunteer_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    volunteers.delete_volunteer(db, identity, volunteer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Resource categories & resources ---
@app.get("/categories", response_model=List[schemas.ResourceCategoryOut])
def list_categories(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return resources.list_categories(db, identity)


@app.post("/categories", response_model=schemas.ResourceCategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    data: schemas.ResourceCategoryCreate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return resources.create_category(db, identity, data)


@app.put("/categories/{category_id}", response_model=schemas.ResourceCategoryOut)
def update_category(
    category_id: int, data: schemas.ResourceCategoryCreate,
    identity=Depends(get_current_identity), db: Session = Depends(get_db),
):
    return resources.update_category(db, identity, category_id, data)


@app.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    resources.delete_category(db, identity, category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/resources", response_model=List[schemas.ResourceOut])
def list_resources(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return resources.list_resources(db, identity)


@app.get("/resources/low-stock", response_model=List[schemas.ResourceOut])
def low_stock(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return resources.list_low_stock(db, identity)


@app.post("/resources", response_model=schemas.ResourceOut, status_code=status.HTTP_201_CREATED)
def create_resource(data: schemas.ResourceCreate, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return resources.create_resource(db, identity, data)


@app.get("/resources/{resource_id}", response_model=schemas.ResourceOut)
def get_resource(resource_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return resources.get_resource(db, identity, resource_id)


@app.put("/resources/{resource_id}", response_model=schemas.ResourceOut)
def update_resource(
    resource_id: int, data: schemas.ResourceUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return resources.update_resource(db, identity, resource_id, data)


@app.delete("/resources/{resource_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_resource(resource_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    resources.delete_resource(db, identity, resource_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Donations ---
@app.post("/donations", response_model=schemas.DonationOut, status_code=status.HTTP_201_CREATED)
def create_donation(data: schemas.DonationCreate, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return donations.create_donation(db, identity, data)


@app.get("/donations", response_model=List[schemas.DonationOut])
def list_donations(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return donations.list_donations(db, identity)


@app.get("/donations/mine", response_model=List[schemas.DonationOut])
def my_donations(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return donations.list_my_donations(db, identity)


@app.get("/donations/{donation_id}", response_model=schemas.DonationOut)
def get_donation(donation_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return donations.get_donation(db, identity, donation_id)


@app.patch("/donations/{donation_id}/status", response_model=schemas.DonationOut)
def update_donation_status(
    donation_id: int, data: schemas.StatusUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return donations.update_donation_status(db, identity, donation_id, data.status, data.version)


# --- Assignments ---
@app.get("/assignments", response_model=List[schemas.AssignmentOut])
def list_assignments(
    disaster_id: Optional[int] = None, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return assignments.list_assignments(db, identity, disaster_id)


@app.get("/assignments/mine", response_model=List[schemas.AssignmentOut])
def my_assignments(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return assignments.list_my_assignments(db, identity)


@app.get("/assignments/{assignment_id}", response_model=schemas.AssignmentOut)
def get_assignment(assignment_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return assignments.get_assignment(db, identity, assignment_id)


@app.post("/assignments", response_model=schemas.AssignmentOut, status_code=status.HTTP_201_CREATED)
def create_assignment(
    data: schemas.AssignmentCreate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return assignments.create_assignment(db, identity, data)


@app.put("/assignments/{assignment_id}", response_model=schemas.AssignmentOut)
def update_assignment(
    assignment_id: int, data: schemas.AssignmentUpdate,
    identity=Depends(get_current_identity), db: Session = Depends(get_db),
):
    return assignments.update_assignment(db, identity, assignment_id, data)


@app.patch("/assignments/{assignment_id}/status", response_model=schemas.AssignmentOut)
def update_assignment_status(
    assignment_id: int, data: schemas.StatusUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return assignments.update_assignment_status(db, identity, assignment_id, data.status, data.version)


@app.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_assignment(assignment_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    assignments.delete_assignment(db, identity, assignment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Missions ---
@app.get("/missions", response_model=List[schemas.MissionOut])
def list_missions(status: Optional[str] = None, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return missions.list_missions(db, identity, status)


@app.get("/missions/mine", response_model=List[schemas.MissionOut])
def my_missions(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return missions.list_my_missions(db, identity)


@app.post("/missions", response_model=schemas.MissionOut, status_code=201)
def create_mission(data: schemas.MissionCreate, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return missions.create_mission(db, identity, data)


@app.get("/missions/{mission_id}", response_model=schemas.MissionOut)
def get_mission(mission_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return missions.get_mission(db, identity, mission_id)


@app.put("/missions/{mission_id}", response_model=schemas.MissionOut)
def update_mission(
    mission_id: int, data: schemas.MissionUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return missions.update_mission(db, identity, mission_id, data)


@app.patch("/missions/{mission_id}/status", response_model=schemas.MissionOut)
def update_mission_status(
    mission_id: int, data: schemas.StatusUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return missions.update_mission_status(db, identity, mission_id, data.status, data.version)


@app.delete("/missions/{mission_id}", status_code=204)
def delete_mission(mission_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    missions.delete_mission(db, identity, mission_id)
    return Response(status_code=204)


# --- Resource requests ---
@app.get("/requests", response_model=List[schemas.ResourceRequestOut])
def list_requests(status: Optional[str] = None, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return resource_requests.list_resource_requests(db, identity, status)


@app.post("/requests", response_model=schemas.ResourceRequestOut, status_code=201)
def create_request(
    data: schemas.ResourceRequestCreate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return resource_requests.create_resource_request(db, identity, data)


@app.get("/requests/{request_id}", response_model=schemas.ResourceRequestOut)
def get_request(request_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return resource_requests.get_resource_request(db, identity, request_id)


@app.put("/requests/{request_id}", response_model=schemas.ResourceRequestOut)
def update_request(
    request_id: int, data: schemas.ResourceRequestUpdate,
    identity=Depends(get_current_identity), db: Session = Depends(get_db),
):
    return resource_requests.update_resource_request(db, identity, request_id, data)


@app.patch("/requests/{request_id}/status", response_model=schemas.ResourceRequestOut)
def update_request_status(
    request_id: int, data: schemas.StatusUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return resource_requests.update_request_status(db, identity, request_id, data.status, data.version)


@app.post("/requests/{request_id}/fulfill", response_model=schemas.FulfillResult)
def fulfill_request(
    request_id: int, version: Optional[int] = None, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return resource_requests.fulfill_request(db, identity, request_id, version)


@app.delete("/requests/{request_id}", status_code=204)
def delete_request(request_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    resource_requests.delete_resource_request(db, identity, request_id)
    return Response(status_code=204)


# --- Admin & reports ---
@app.get("/admin/users", response_model=List[schemas.UserWithRoles])
def admin_list_users(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return users.list_users_with_roles(db, identity)


@app.put("/admin/users/{user_id}/roles", response_model=schemas.UserWithRoles)
def admin_set_roles(
    user_id: int, data: schemas.UserRolesUpdate, identity=Depends(get_current_identity), db: Session = Depends(get_db)
):
    return users.update_user_roles(db, identity, user_id, data)


@app.delete("/admin/users/{user_id}", status_code=204)
def admin_delete_user(user_id: int, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    users.delete_user(db, identity, user_id)
    return Response(status_code=204)


@app.get("/admin/dashboard", response_model=schemas.AdminDashboard)
def admin_dashboard(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return reports.admin_dashboard(db, identity)


@app.get("/dashboard", response_model=schemas.DashboardSummary)
def dashboard(identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return reports.dashboard_summary(db, identity)


@app.post("/reports", response_model=schemas.ReportResult)
def generate_report(query: schemas.ReportQuery, identity=Depends(get_current_identity), db: Session = Depends(get_db)):
    return reports.generate_report(db, identity, query)


@app.get("/")
def root():
    return {"message": "Relief Coordination API"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
