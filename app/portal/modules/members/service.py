from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select

from app.portal.audit import record_event
from app.portal.http import BadRequest, Conflict, NotFound, Unauthorized
from app.portal.models import (
    MEMBERSHIP_ACTIVE,
    MEMBERSHIP_PENDING,
    MEMBERSHIP_STATUSES,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLES,
    CourseEnrollment,
    RefreshToken,
    User,
)
from app.portal.security import check_password, hash_password
from app.portal.validation import MAX_PHOTO_LENGTH, PHOTO_DATA_URL_RE, password_strength_errors

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def find_user_by_email(s: "Session", email: str) -> User | None:
    email = (email or "").strip().lower()
    if not email:
        return None
    return s.query(User).filter(User.email == email).one_or_none()


def get_user_or_404(s: "Session", user_id: int) -> User:
    user = s.get(User, user_id)
    if user is None:
        raise NotFound("Usuario no encontrado")
    return user


def register_user(
    s: "Session",
    data: dict[str, Any],
    *,
    ip: str | None = None,
    user_agent: str | None = None,
    membership_status: str = MEMBERSHIP_PENDING,
) -> User:
    """Create an affiliate account. Raises Conflict when the email is taken."""
    email = data["email"].strip().lower()
    if find_user_by_email(s, email) is not None:
        raise Conflict("El email ya está registrado")

    user = User(
        email=email,
        password_hash=hash_password(data["password"]),
        name=data["name"],
        phone=data.get("phone"),
        department=data.get("department"),
        role=ROLE_MEMBER,
        is_active=True,
        membership_status=membership_status,
        ip_address=ip,
        user_agent=(user_agent or "")[:512] or None,
        login_count=0,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="user.register", entity_type="User", entity_id=user.id)
    return user


def update_profile(s: "Session", user: User, data: dict[str, Any]) -> User:
    changed = {}
    for field in ("name", "phone", "department"):
        if field in data and getattr(user, field) != data[field]:
            changed[field] = data[field]
            setattr(user, field, data[field])
    if changed:
        user.updated_at = datetime.utcnow()
        record_event(
            s, actor=user, action="user.profile_update", entity_type="User", entity_id=user.id,
            metadata={"fields": sorted(changed)},
        )
    return user


def set_profile_photo(s: "Session", user: User, photo: str) -> User:
    if not isinstance(photo, str) or not PHOTO_DATA_URL_RE.match(photo):
        raise BadRequest(
            "Formato de imagen inválido",
            details=[{"field": "photo", "message": "Debe ser una imagen en base64 (png, jpg, jpeg, gif, webp)"}],
        )
    if len(photo) > MAX_PHOTO_LENGTH:
        raise BadRequest("La imagen es demasiado grande (máximo 2MB)")
    user.profile_photo = photo
    record_event(s, actor=user, action="user.photo_update", entity_type="User", entity_id=user.id)
    return user


def remove_profile_photo(s: "Session", user: User) -> User:
    user.profile_photo = None
    record_event(s, actor=user, action="user.photo_delete", entity_type="User", entity_id=user.id)
    return user


def change_password(s: "Session", user: User, current_password: str, new_password: str) -> None:
    """
    Re-verify the current password, reject a no-op change, enforce strength, then
    revoke every refresh token so other sessions must log in again.
    """
    if new_password == current_password:
        raise BadRequest(
            "La nueva contraseña debe ser diferente a la actual",
            details=[{"field": "newPassword", "message": "La nueva contraseña debe ser diferente a la actual"}],
        )
    if not check_password(current_password, user.password_hash):
        record_event(
            s, actor=user, action="user.password_change_failed", entity_type="User", entity_id=user.id,
            reason="Wrong current password",
        )
        s.commit()
        raise Unauthorized("Contraseña actual incorrecta")
    weak = password_strength_errors(new_password)
    if weak:
        raise BadRequest("Datos inválidos", details=weak)

    user.password_hash = hash_password(new_password)
    s.query(RefreshToken).filter(RefreshToken.user_id == user.id).delete(synchronize_session=False)
    s.expire(user, ["refresh_tokens"])
    record_event(s, actor=user, action="user.password_change", entity_type="User", entity_id=user.id)


def enroll_in_course(s: "Session", user: User, course_id: str, course_name: str) -> CourseEnrollment:
    try:
        enrollment = user.enroll_in_course(course_id, course_name)
    except ValueError as e:
        raise Conflict(str(e)) from e
    s.flush()
    record_event(
        s, actor=user, action="user.enroll", entity_type="CourseEnrollment", entity_id=enrollment.id,
        metadata={"course_id": course_id},
    )
    return enrollment


def membership_summary(user: User) -> dict[str, Any]:
    return {
        "status": user.membership_status,
        "startDate": user.membership_start_date.isoformat() if user.membership_start_date else None,
        "expiryDate": user.membership_expiry_date.isoformat() if user.membership_expiry_date else None,
        "isActive": user.is_membership_active(),
        "daysUntilExpiry": user.days_until_expiry(),
    }


def renew_membership(s: "Session", user: User, months: int = 12) -> User:
    user.renew_membership(months)
    record_event(
        s, actor=user, action="user.membership_renew", entity_type="User", entity_id=user.id,
        metadata={"months": months, "expiry": user.membership_expiry_date.isoformat()},
    )
    return user


# Admin operations

SORTABLE_USER_FIELDS = {
    "createdAt": User.created_at,
    "name": User.name,
    "email": User.email,
    "lastLogin": User.last_login,
}


def list_users(
    s: "Session",
    *,
    page: int,
    limit: int,
    search: str | None = None,
    role: str | None = None,
    status: str | None = None,
    is_active: bool | None = None,
    sort: str | None = None,
) -> tuple[list[User], int]:
    stmt = select(User)
    if search:
        like = f"%{search.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(User.name).like(like), User.email.like(like)))
    if role:
        stmt = stmt.where(User.role == role)
    if status:
        stmt = stmt.where(User.membership_status == status)
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))

    total = s.scalar(select(func.count()).select_from(stmt.subquery())) or 0

    sort = sort or "-createdAt"
    column = SORTABLE_USER_FIELDS.get(sort.lstrip("-"), User.created_at)
    stmt = stmt.order_by(column.desc() if sort.startswith("-") else column.asc(), User.id.desc())
    users = s.scalars(stmt.offset((page - 1) * limit).limit(limit)).all()
    return list(users), total


def user_stats(s: "Session", now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    total = s.scalar(select(func.count(User.id))) or 0
    by_role = dict(s.execute(select(User.role, func.count(User.id)).group_by(User.role)).all())
    by_status = dict(
        s.execute(select(User.membership_status, func.count(User.id)).group_by(User.membership_status)).all()
    )
    active_accounts = s.scalar(select(func.count(User.id)).where(User.is_active.is_(True))) or 0
    last_7 = s.scalar(select(func.count(User.id)).where(User.created_at >= now - timedelta(days=7))) or 0
    last_30 = s.scalar(select(func.count(User.id)).where(User.created_at >= now - timedelta(days=30))) or 0
    return {
        "total": total,
        "activeAccounts": active_accounts,
        "byRole": {r: by_role.get(r, 0) for r in ROLES},
        "byMembershipStatus": {st: by_status.get(st, 0) for st in MEMBERSHIP_STATUSES},
        "activeMembers": by_status.get(MEMBERSHIP_ACTIVE, 0),
        "newLast7Days": last_7,
        "newLast30Days": last_30,
    }


def set_role(s: "Session", actor: User, target: User, role: str) -> User:
    if role not in ROLES:
        raise BadRequest("Rol inválido", details=[{"field": "role", "message": f"Debe ser {ROLE_MEMBER} o {ROLE_ADMIN}"}])
    if target.id == actor.id and role != ROLE_ADMIN:
        raise BadRequest("No puedes quitarte tu propio rol de administrador")
    old = target.role
    target.role = role
    record_event(
        s, actor=actor, action="user.role_change", entity_type="User", entity_id=target.id,
        metadata={"from": old, "to": role},
    )
    return target


def set_status(
    s: "Session", actor: User, target: User, *, is_active: bool | None = None, membership_status: str | None = None
) -> User:
    if is_active is None and membership_status is None:
        raise BadRequest("Debes indicar isActive o membershipStatus")
    if target.id == actor.id and is_active is False:
        raise BadRequest("No puedes desactivar tu propia cuenta")
    changes: dict[str, Any] = {}
    if is_active is not None:
        changes["is_active"] = [target.is_active, is_active]
        target.is_active = is_active
        if not is_active:
            s.query(RefreshToken).filter(RefreshToken.user_id == target.id).delete(synchronize_session=False)
    if membership_status is not None:
        if membership_status not in MEMBERSHIP_STATUSES:
            raise BadRequest("Estado de afiliación inválido")
        changes["membership_status"] = [target.membership_status, membership_status]
        target.membership_status = membership_status
    record_event(s, actor=actor, action="user.status_change", entity_type="User", entity_id=target.id, metadata=changes)
    return target


def delete_user(s: "Session", actor: User, target: User) -> None:
    if target.id == actor.id:
        raise BadRequest("No puedes eliminar tu propia cuenta")
    record_event(
        s, actor=actor, action="user.delete", entity_type="User", entity_id=target.id,
        metadata={"email": target.email},
    )
    s.delete(target)
