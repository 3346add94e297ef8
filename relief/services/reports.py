"""
Read-only aggregates for the dashboards and the reports page.
"""
import logging

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from relief import models, schemas
from relief.permissions import compute_permissions, require

logger = logging.getLogger(__name__)


def _count(db: Session, model, *criteria) -> int:
    return db.execute(select(func.count()).select_from(model).where(*criteria)).scalar_one()


def dashboard_summary(db: Session, identity: schemas.Identity) -> schemas.DashboardSummary:
    require(compute_permissions(db, identity).can_view_disasters, "You are not allowed to view the dashboard.")
    return schemas.DashboardSummary(
        disaster_count=_count(db, models.Disaster),
        volunteer_count=_count(db, models.Volunteer),
        active_missions=_count(
            db, models.Mission, or_(models.Mission.status == "Open", models.Mission.status == "In Progress")
        ),
        total_donations=db.execute(select(func.coalesce(func.sum(models.Donation.quantity), 0))).scalar_one(),
    )


def admin_dashboard(db: Session, identity: schemas.Identity) -> schemas.AdminDashboard:
    require(compute_permissions(db, identity).can_manage_system, "Only administrators can open the admin dashboard.")
    recent = list(db.execute(
        select(models.User).order_by(models.User.created_at.desc(), models.User.id.desc()).limit(5)
    ).scalars())
    return schemas.AdminDashboard(
        total_users=_count(db, models.User),
        total_volunteers=_count(db, models.Volunteer),
        total_disasters=_count(db, models.Disaster),
        active_disasters=_count(db, models.Disaster, models.Disaster.status == "Active"),
        recent_users=[
            schemas.RecentUser(full_name=u.full_name, email=u.email, created_at=u.created_at) for u in recent
        ],
    )


def _period(query: schemas.ReportQuery) -> str:
    start = query.start_date.date().isoformat() if query.start_date else "beginning"
    end = query.end_date.date().isoformat() if query.end_date else "now"
    return f"{start} to {end}"


def _between(column, query: schemas.ReportQuery):
    criteria = []
    if query.start_date:
        criteria.append(column >= query.start_date)
    if query.end_date:
        criteria.append(column <= query.end_date)
    return criteria


def generate_report(db: Session, identity: schemas.Identity, query: schemas.ReportQuery) -> schemas.ReportResult:
    require(compute_permissions(db, identity).can_view_reports, "Only administrators and coordinators can view reports.")

    if query.report_type == "disasters":
        criteria = _between(models.Disaster.start_date, query)
        if query.disaster_type:
            criteria.append(models.Disaster.disaster_type == query.disaster_type)
        if query.status:
            criteria.append(models.Disaster.status == query.status)
        rows = db.execute(
            select(models.Disaster.disaster_type, func.count(), func.coalesce(func.sum(models.Disaster.estimated_affected), 0))
            .where(*criteria)
            .group_by(models.Disaster.disaster_type)
            .order_by(models.Disaster.disaster_type)
        ).all()
        data = [
            schemas.ReportData(category=t, count=n, amount=affected, description="people affected (estimated)")
            for t, n, affected in rows
        ]
        title = "Disaster Report"

    elif query.report_type == "donations":
        criteria = _between(models.Donation.donation_date, query)
        if query.status:
            criteria.append(models.Donation.status == query.status)
        rows = db.execute(
            select(models.ResourceCategory.category_name, func.count(models.Donation.id), func.sum(models.Donation.quantity))
            .select_from(models.Donation)
            .join(models.Resource, models.Resource.id == models.Donation.resource_id)
            .join(models.ResourceCategory, models.ResourceCategory.id == models.Resource.category_id)
            .where(*criteria)
            .group_by(models.ResourceCategory.category_name)
            .order_by(models.ResourceCategory.category_name)
        ).all()
        data = [
            schemas.ReportData(category=c, count=n, amount=total or 0, description="units donated")
            for c, n, total in rows
        ]
        title = "Donation Report"

    else:
        criteria = _between(models.Volunteer.date_registered, query)
        if query.status:
            criteria.append(models.Volunteer.availability_status == query.status)
        rows = db.execute(
            select(models.Volunteer.availability_status, func.count())
            .where(*criteria)
            .group_by(models.Volunteer.availability_status)
            .order_by(models.Volunteer.availability_status)
        ).all()
        data = [schemas.ReportData(category=s, count=n) for s, n in rows]
        title = "Volunteer Report"

    logger.info(f"{title} generated for user {identity.user_id} ({len(data)} rows)")
    return schemas.ReportResult(
        report_title=title,
        generated_date=models.utcnow(),
        data=data,
        summary=schemas.ReportSummary(
            total_records=sum(d.count for d in data),
            total_amount=sum(d.amount for d in data),
            time_period=_period(query),
        ),
    )
