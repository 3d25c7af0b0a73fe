from __future__ import annotations

from flask import Blueprint, current_app, request

from app.portal.db import db_session
from app.portal.http import BadRequest, get_json_body, ok, page_meta, pagination_args
from app.portal.modules.members import service
from app.portal.rbac import authenticated_user, require_admin, require_auth
from app.portal.validation import CHANGE_PASSWORD_RULES, PROFILE_RULES, Field, require_valid

bp = Blueprint("members", __name__)

ENROLL_RULES = (
    Field("courseId", max_len=64),
    Field("courseName", max_len=255),
)


@bp.get("/profile")
@require_auth
def profile_get():
    user = authenticated_user()
    return ok({"user": user.to_public_dict(include_history=True)})


@bp.put("/profile")
@require_auth
def profile_update():
    user = authenticated_user()
    data = require_valid(get_json_body(), PROFILE_RULES)
    s = db_session()
    service.update_profile(s, user, data)
    s.commit()
    return ok({"user": user.to_public_dict()}, message="Perfil actualizado correctamente")


@bp.post("/photo")
@require_auth
def photo_upload():
    user = authenticated_user()
    payload = get_json_body()
    s = db_session()
    service.set_profile_photo(s, user, payload.get("photo") or payload.get("profilePhoto"))
    s.commit()
    return ok({"profilePhoto": user.profile_photo}, message="Foto de perfil actualizada")


@bp.delete("/photo")
@require_auth
def photo_delete():
    user = authenticated_user()
    s = db_session()
    service.remove_profile_photo(s, user)
    s.commit()
    return ok(message="Foto de perfil eliminada")


@bp.put("/password")
@require_auth
def password_change():
    return change_password_response()


def change_password_response():
    """Shared by PUT /api/user/password and POST /api/auth/change-password."""
    user = authenticated_user()
    data = require_valid(get_json_body(), CHANGE_PASSWORD_RULES)
    s = db_session()
    service.change_password(s, user, data["currentPassword"], data["newPassword"])
    s.commit()
    current_app.logger.info("Password changed for user_id=%s", user.id)
    return ok(message="Contraseña actualizada. Vuelve a iniciar sesión en tus otros dispositivos.")


@bp.get("/courses")
@require_auth
def courses_list():
    user = authenticated_user()
    return ok({"courses": [e.to_dict() for e in user.enrollments]})


@bp.post("/enroll")
@require_auth
def course_enroll():
    user = authenticated_user()
    data = require_valid(get_json_body(), ENROLL_RULES)
    s = db_session()
    enrollment = service.enroll_in_course(s, user, data["courseId"], data["courseName"])
    s.commit()
    return ok({"enrollment": enrollment.to_dict()}, message="Inscripción realizada correctamente", status=201)


@bp.get("/membership")
@require_auth
def membership_get():
    return ok({"membership": service.membership_summary(authenticated_user())})


@bp.post("/renew-membership")
@require_auth
def membership_renew():
    user = authenticated_user()
    data = require_valid(get_json_body(), (Field("months", kind="int", required=False, min_value=1, max_value=36),))
    s = db_session()
    service.renew_membership(s, user, data.get("months", 12))
    s.commit()
    return ok({"membership": service.membership_summary(user)}, message="Afiliación renovada")


# Admin: user management


@bp.get("/all")
@require_admin
def users_all():
    page, limit = pagination_args()
    is_active = request.args.get("isActive")
    users, total = service.list_users(
        db_session(),
        page=page,
        limit=limit,
        search=request.args.get("search"),
        role=request.args.get("role"),
        status=request.args.get("status"),
        is_active=None if is_active is None else is_active.lower() == "true",
        sort=request.args.get("sort"),
    )
    return ok({"users": [u.to_public_dict() for u in users], "pagination": page_meta(total, page, limit)})


@bp.get("/stats")
@require_admin
def users_stats():
    return ok({"stats": service.user_stats(db_session())})


@bp.put("/<int:user_id>/role")
@require_admin
def user_set_role(user_id: int):
    data = require_valid(get_json_body(), (Field("role"),))
    s = db_session()
    target = service.get_user_or_404(s, user_id)
    service.set_role(s, authenticated_user(), target, data["role"])
    s.commit()
    return ok({"user": target.to_public_dict()}, message="Rol actualizado")


@bp.put("/<int:user_id>/status")
@require_admin
def user_set_status(user_id: int):
    data = require_valid(
        get_json_body(),
        (
            Field("isActive", kind="bool", required=False),
            Field("membershipStatus", required=False),
        ),
    )
    if not data:
        raise BadRequest("Debes indicar isActive o membershipStatus")
    s = db_session()
    target = service.get_user_or_404(s, user_id)
    service.set_status(
        s,
        authenticated_user(),
        target,
        is_active=data.get("isActive"),
        membership_status=data.get("membershipStatus"),
    )
    s.commit()
    return ok({"user": target.to_public_dict()}, message="Estado actualizado")


@bp.delete("/<int:user_id>")
@require_admin
def user_delete(user_id: int):
    s = db_session()
    target = service.get_user_or_404(s, user_id)
    service.delete_user(s, authenticated_user(), target)
    s.commit()
    return ok(message="Usuario eliminado")
