from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from flask import Blueprint, request
from sqlalchemy import func, select

from app.portal.db import db_session
from app.portal.http import ok, page_meta, pagination_args
from app.portal.models import CourseEnrollment, PaymentRecord, User, money
from app.portal.modules.members import service as members
from app.portal.rbac import admin_user

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

bp = Blueprint("admin", __name__)


@bp.before_request
def _admins_only():
    if request.method != "OPTIONS":
        admin_user()


def _growth(current: int, previous: int) -> float:
    if previous == 0:
        return 100.0 if current else 0.0
    return round((current - previous) * 100.0 / previous, 1)


def dashboard_stats(s: "Session", now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    users = members.user_stats(s, now)

    last_30 = users["newLast30Days"]
    previous_30 = s.scalar(
        select(func.count(User.id)).where(
            User.created_at >= now - timedelta(days=60), User.created_at < now - timedelta(days=30)
        )
    ) or 0

    by_course = s.execute(
        select(CourseEnrollment.course_id, CourseEnrollment.course_name, func.count(CourseEnrollment.id))
        .where(CourseEnrollment.status != "cancelled")
        .group_by(CourseEnrollment.course_id, CourseEnrollment.course_name)
    ).all()

    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    revenue_total = s.scalar(select(func.coalesce(func.sum(PaymentRecord.amount), 0))) or 0
    revenue_month = s.scalar(
        select(func.coalesce(func.sum(PaymentRecord.amount), 0)).where(PaymentRecord.paid_at >= month_start)
    ) or 0
    payments_count = s.scalar(select(func.count(PaymentRecord.id))) or 0

    return {
        "users": users,
        "enrollments": {
            "total": sum(n for _, _, n in by_course),
            "byCourse": [{"courseId": cid, "courseName": name, "count": n} for cid, name, n in by_course],
        },
        "revenue": {
            "total": money(revenue_total),
            "currentMonth": money(revenue_month),
            "payments": payments_count,
        },
        "growth": {
            "newUsersLast30Days": last_30,
            "newUsersPrevious30Days": previous_30,
            "percent": _growth(last_30, previous_30),
        },
    }


@bp.get("/stats")
def stats():
    return ok({"stats": dashboard_stats(db_session())})


@bp.get("/users")
def users_list():
    page, limit = pagination_args()
    users, total = members.list_users(
        db_session(),
        page=page,
        limit=limit,
        search=request.args.get("search"),
        role=request.args.get("role"),
        status=request.args.get("status"),
        sort=request.args.get("sort"),
    )
    return ok({"users": [u.to_public_dict() for u in users], "pagination": page_meta(total, page, limit)})


@bp.get("/users/<int:user_id>")
def user_detail(user_id: int):
    user = members.get_user_or_404(db_session(), user_id)
    return ok({"user": user.to_public_dict(include_history=True)})


@bp.get("/enrollments")
def enrollments():
    page, limit = pagination_args(default_limit=50)
    s = db_session()
    stmt = select(CourseEnrollment, User).join(User, User.id == CourseEnrollment.user_id)
    course_id = request.args.get("courseId")
    if course_id:
        stmt = stmt.where(CourseEnrollment.course_id == course_id)
    total = s.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = s.execute(
        stmt.order_by(CourseEnrollment.enrolled_at.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    data = [
        {**enrollment.to_dict(), "user": {"id": user.id, "name": user.name, "email": user.email}}
        for enrollment, user in rows
    ]
    return ok({"enrollments": data, "pagination": page_meta(total, page, limit)})


@bp.get("/recent")
def recent():
    s = db_session()
    limit = min(50, max(1, request.args.get("limit", 10, type=int)))
    users = s.scalars(select(User).order_by(User.created_at.desc(), User.id.desc()).limit(limit)).all()
    payments = s.execute(
        select(PaymentRecord, User)
        .join(User, User.id == PaymentRecord.user_id)
        .order_by(PaymentRecord.paid_at.desc())
        .limit(limit)
    ).all()
    return ok(
        {
            "users": [u.to_public_dict() for u in users],
            "payments": [
                {**p.to_dict(), "user": {"id": u.id, "name": u.name, "email": u.email}} for p, u in payments
            ],
        }
    )
