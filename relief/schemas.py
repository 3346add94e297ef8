from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field

RoleName = Literal["Admin", "Coordinator", "Volunteer", "Donor"]
Severity = Literal["Low", "Medium", "High", "Critical"]
DisasterStatus = Literal["Active", "Resolved"]
Availability = Literal["Available", "Busy", "Unavailable", "Assigned"]
DonationStatus = Literal["Pending", "Received", "Distributed"]
AssignmentStatus = Literal["Assigned", "Completed", "Cancelled"]
MissionStatus = Literal["Open", "In Progress", "Completed"]
Priority = Literal["Low", "Medium", "High", "Critical"]
Urgency = Literal["Low", "Normal", "High", "Critical"]
RequestStatus = Literal["Pending", "Approved", "Fulfilled"]

PHONE_PATTERN = r'^\+?[0-9][0-9 ()\-]{6,19}$'


# --- Identity & permissions ---
class Identity(BaseModel):
    """Authenticated caller as seen by the services. Roles are informational only."""
    user_id: int
    roles: List[str] = []


class Permissions(BaseModel):
    # Disasters
    can_view_disasters: bool = False
    can_create_disasters: bool = False
    can_edit_all_disasters: bool = False
    can_edit_own_disasters: bool = False
    can_resolve_disasters: bool = False
    can_delete_disasters: bool = False

    # Volunteers
    can_view_volunteers: bool = False
    can_register_as_volunteer: bool = False
    can_edit_all_volunteers: bool = False
    can_edit_own_volunteer: bool = False
    can_contact_volunteers: bool = False

    # Donations
    can_view_donations: bool = False
    can_view_own_donation: bool = False
    can_create_donations: bool = False
    can_manage_donations: bool = False

    # Missions
    can_view_missions: bool = False
    can_create_missions: bool = False
    can_assign_missions: bool = False
    can_manage_missions: bool = False

    # Assignments & stock
    can_manage_assignments: bool = False
    can_manage_resources: bool = False

    # Administration
    can_manage_users: bool = False
    can_view_reports: bool = False
    can_manage_system: bool = False


# --- Users ---
class UserCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)


class UserOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    created_at: datetime

    class Config:
        from_attributes = True


class UserWithRoles(BaseModel):
    id: int
    full_name: str
    email: str
    created_at: datetime
    roles: List[str]


class UserRolesUpdate(BaseModel):
    roles: List[RoleName]


class LoginSchema(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


# --- Disasters ---
class DisasterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    location: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    disaster_type: str = Field(..., min_length=1, max_length=50)
    severity_level: Severity
    estimated_affected: Optional[int] = Field(None, ge=0)


class DisasterUpdate(DisasterCreate):
    status: Optional[DisasterStatus] = None
    version: Optional[int] = None


class DisasterOut(BaseModel):
    id: int
    name: str
    location: str
    description: Optional[str] = None
    disaster_type: str
    severity_level: str
    status: str
    start_date: datetime
    estimated_affected: Optional[int] = None
    reported_by_id: int
    version: int

    class Config:
        from_attributes = True


class DisasterDetail(BaseModel):
    disaster: DisasterOut
    reported_by_name: Optional[str] = None
    can_edit: bool
    can_resolve: bool
    can_delete: bool


# --- Volunteers ---
class VolunteerCreate(BaseModel):
    skills: str = Field(..., min_length=1)
    availability_status: Literal["Available", "Busy", "Unavailable"] = "Available"
    address: Optional[str] = Field(None, max_length=255)
    emergency_contact: str = Field(..., pattern=PHONE_PATTERN)


class VolunteerUpdate(BaseModel):
    skills: str = Field(..., min_length=1)
    availability_status: Availability
    address: Optional[str] = Field(None, max_length=255)
    emergency_contact: str = Field(..., pattern=PHONE_PATTERN)
    version: Optional[int] = None


class VolunteerOut(BaseModel):
    id: int
    user_id: int
    full_name: Optional[str] = None
    skills: str
    availability_status: str
    address: Optional[str] = None
    emergency_contact: Optional[str] = None
    date_registered: datetime
    version: int

    class Config:
        from_attributes = True


class VolunteerCreated(BaseModel):
    outcome: Literal["created"] = "created"
    volunteer: VolunteerOut


class VolunteerAlreadyExists(BaseModel):
    outcome: Literal["already_exists"] = "already_exists"
    volunteer: VolunteerOut


VolunteerRegistration = Union[VolunteerCreated, VolunteerAlreadyExists]


# --- Resources ---
class ResourceCategoryCreate(BaseModel):
    category_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)


class ResourceCategoryOut(BaseModel):
    id: int
    category_name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class ResourceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category_id: int
    description: Optional[str] = Field(None, max_length=500)
    unit_of_measure: str = Field(..., min_length=1, max_length=50)
    current_quantity: int = Field(0, ge=0)
    threshold_quantity: int = Field(5, ge=1)


class ResourceUpdate(ResourceCreate):
    version: Optional[int] = None


class ResourceOut(BaseModel):
    id: int
    name: str
    category_id: int
    description: Optional[str] = None
    unit_of_measure: str
    current_quantity: int
    threshold_quantity: int
    is_low_stock: bool
    version: int

    class Config:
        from_attributes = True


# --- Donations ---
class DonationCreate(BaseModel):
    resource_id: int
    quantity: int = Field(..., ge=1)
    notes: Optional[str] = None


class DonationOut(BaseModel):
    id: int
    donor_id: int
    resource_id: int
    quantity: int
    donation_date: datetime
    status: str
    notes: Optional[str] = None
    version: int

    class Config:
        from_attributes = True


# --- Assignments ---
class AssignmentCreate(BaseModel):
    volunteer_id: int
    disaster_id: int
    role_in_assignment: str = Field(..., min_length=1, max_length=50)
    status: AssignmentStatus = "Assigned"


class AssignmentUpdate(BaseModel):
    role_in_assignment: str = Field(..., min_length=1, max_length=50)
    status: AssignmentStatus
    version: Optional[int] = None


class AssignmentOut(BaseModel):
    id: int
    volunteer_id: int
    disaster_id: int
    assignment_date: datetime
    role_in_assignment: str
    status: str
    assigned_by_id: int
    version: int

    class Config:
        from_attributes = True


# --- Missions ---
class MissionCreate(BaseModel):
    disaster_id: int
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    assigned_to_id: Optional[int] = None
    status: MissionStatus = "Open"
    priority: Priority = "Medium"
    due_date: Optional[datetime] = None


class MissionUpdate(MissionCreate):
    version: Optional[int] = None


class MissionOut(BaseModel):
    id: int
    disaster_id: int
    title: str
    description: Optional[str] = None
    assigned_to_id: Optional[int] = None
    status: str
    priority: str
    due_date: Optional[datetime] = None
    created_date: datetime
    created_by_id: int
    version: int

    class Config:
        from_attributes = True


# --- Resource requests ---
class ResourceRequestCreate(BaseModel):
    disaster_id: int
    resource_id: int
    quantity_requested: int = Field(..., ge=1)
    urgency_level: Urgency = "Normal"
    date_required: Optional[datetime] = None


class ResourceRequestUpdate(ResourceRequestCreate):
    version: Optional[int] = None


class ResourceRequestOut(BaseModel):
    id: int
    disaster_id: int
    resource_id: int
    quantity_requested: int
    urgency_level: str
    status: str
    requested_by_id: int
    date_requested: datetime
    date_required: Optional[datetime] = None
    version: int

    class Config:
        from_attributes = True


class FulfillResult(BaseModel):
    fulfilled: bool
    reason: Optional[str] = None
    request: ResourceRequestOut
    remaining_quantity: int


# --- Status changes ---
class StatusUpdate(BaseModel):
    status: str
    version: Optional[int] = None


# --- Dashboards & reports ---
class DashboardSummary(BaseModel):
    disaster_count: int
    volunteer_count: int
    active_missions: int
    total_donations: int


class RecentUser(BaseModel):
    full_name: str
    email: str
    created_at: datetime


class AdminDashboard(BaseModel):
    total_users: int
    total_volunteers: int
    total_disasters: int
    active_disasters: int
    recent_users: List[RecentUser]


class ReportQuery(BaseModel):
    report_type: Literal["disasters", "donations", "volunteers"]
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    disaster_type: Optional[str] = None
    status: Optional[str] = None


class ReportData(BaseModel):
    category: str
    count: int
    amount: int = 0
    description: Optional[str] = None


class ReportSummary(BaseModel):
    total_records: int
    total_amount: int
    time_period: str


class ReportResult(BaseModel):
    report_title: str
    generated_date: datetime
    data: List[ReportData]
    summary: ReportSummary
