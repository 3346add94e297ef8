from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, CheckConstraint, UniqueConstraint, Index,
)

from relief.database import Base

ROLE_ADMIN = "Admin"
ROLE_COORDINATOR = "Coordinator"
ROLE_VOLUNTEER = "Volunteer"
ROLE_DONOR = "Donor"
ROLES = (ROLE_ADMIN, ROLE_COORDINATOR, ROLE_VOLUNTEER, ROLE_DONOR)

SEVERITY_LEVELS = ("Low", "Medium", "High", "Critical")
DISASTER_STATUSES = ("Active", "Resolved")
DISASTER_TYPES = ("Flood", "Earthquake", "Fire", "Drought", "Storm", "Epidemic", "Other")

AVAILABILITY_STATUSES = ("Available", "Busy", "Unavailable", "Assigned")

DONATION_STATUSES = ("Pending", "Received", "Distributed")

ASSIGNMENT_STATUSES = ("Assigned", "Completed", "Cancelled")
ASSIGNMENT_ROLES = ("Team Lead", "Medic", "Distributor", "Logistics", "Assessor", "Driver", "General")

MISSION_STATUSES = ("Open", "In Progress", "Completed")
PRIORITIES = ("Low", "Medium", "High", "Critical")

URGENCY_LEVELS = ("Low", "Normal", "High", "Critical")
REQUEST_STATUSES = ("Pending", "Approved", "Fulfilled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Disaster(Base):
    __tablename__ = "disasters"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    location = Column(String(255), nullable=False)
    description = Column(Text)
    disaster_type = Column(String(50), nullable=False)
    severity_level = Column(String(20), nullable=False)  # Low | Medium | High | Critical
    status = Column(String(20), nullable=False, default="Active")  # Active | Resolved
    start_date = Column(DateTime, default=utcnow, nullable=False)
    estimated_affected = Column(Integer, nullable=True)
    reported_by_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Volunteer(Base):
    __tablename__ = "volunteers"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    skills = Column(Text, nullable=False)
    availability_status = Column(String(20), nullable=False, default="Available")
    address = Column(String(255))
    emergency_contact = Column(String(50))
    date_registered = Column(DateTime, default=utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", name="uq_volunteers_user"),)
    __mapper_args__ = {"version_id_col": version}


class ResourceCategory(Base):
    __tablename__ = "resource_categories"
    id = Column(Integer, primary_key=True, index=True)
    category_name = Column(String(100), unique=True, nullable=False)
    description = Column(String(500))


class Resource(Base):
    __tablename__ = "resources"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    category_id = Column(Integer, ForeignKey("resource_categories.id", ondelete="RESTRICT"), nullable=False)
    description = Column(String(500))
    unit_of_measure = Column(String(50), nullable=False)  # kg, liters, boxes, pieces
    current_quantity = Column(Integer, nullable=False, default=0)
    threshold_quantity = Column(Integer, nullable=False, default=5)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("current_quantity >= 0", name="ck_resources_quantity_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_low_stock(self) -> bool:
        return self.current_quantity <= self.threshold_quantity


class Donation(Base):
    __tablename__ = "donations"
    id = Column(Integer, primary_key=True, index=True)
    donor_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    resource_id = Column(Integer, ForeignKey("resources.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, nullable=False)
    donation_date = Column(DateTime, default=utcnow, nullable=False)
    status = Column(String(20), nullable=False, default="Pending")  # Pending | Received | Distributed
    notes = Column(Text)
    version = Column(Integer, nullable=False)

    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_donations_quantity_positive"),)
    __mapper_args__ = {"version_id_col": version}


class Assignment(Base):
    __tablename__ = "assignments"
    id = Column(Integer, primary_key=True, index=True)
    volunteer_id = Column(Integer, ForeignKey("volunteers.id", ondelete="RESTRICT"), nullable=False)
    disaster_id = Column(Integer, ForeignKey("disasters.id", ondelete="RESTRICT"), nullable=False)
    assignment_date = Column(DateTime, default=utcnow, nullable=False)
    role_in_assignment = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="Assigned")  # Assigned | Completed | Cancelled
    assigned_by_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    version = Column(Integer, nullable=False)

    __table_args__ = (Index("ix_assignments_volunteer_disaster", "volunteer_id", "disaster_id"),)
    __mapper_args__ = {"version_id_col": version}


class Mission(Base):
    __tablename__ = "missions"
    id = Column(Integer, primary_key=True, index=True)
    disaster_id = Column(Integer, ForeignKey("disasters.id", ondelete="RESTRICT"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    description = Column(String(500))
    assigned_to_id = Column(Integer, ForeignKey("volunteers.id", ondelete="RESTRICT"), nullable=True)
    status = Column(String(20), nullable=False, default="Open")  # Open | In Progress | Completed
    priority = Column(String(20), nullable=False, default="Medium")
    due_date = Column(DateTime, nullable=True)
    created_date = Column(DateTime, default=utcnow, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class ResourceRequest(Base):
    __tablename__ = "resource_requests"
    id = Column(Integer, primary_key=True, index=True)
    disaster_id = Column(Integer, ForeignKey("disasters.id", ondelete="RESTRICT"), nullable=False, index=True)
    resource_id = Column(Integer, ForeignKey("resources.id", ondelete="RESTRICT"), nullable=False)
    quantity_requested = Column(Integer, nullable=False)
    urgency_level = Column(String(20), nullable=False, default="Normal")
    status = Column(String(20), nullable=False, default="Pending")  # Pending | Approved | Fulfilled
    requested_by_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    date_requested = Column(DateTime, default=utcnow, nullable=False)
    date_required = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __table_args__ = (CheckConstraint("quantity_requested >= 1", name="ck_requests_quantity_positive"),)
    __mapper_args__ = {"version_id_col": version}
