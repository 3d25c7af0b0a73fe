import logging
import os
import uuid

from flask import Flask, g, request
from dotenv import load_dotenv
from flask_cors import CORS
from flask_limiter import RateLimitExceeded
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from app.portal.config import load_config
from app.portal.db import init_db, teardown_db_session
from app.portal.http import ApiError, TooManyRequests, error
from app.portal.ratelimit import init_limiter
from app.portal.routes import bp as routes_bp
from app.portal.auth import bp as auth_bp, load_current_user
from app.portal.admin import bp as admin_bp
from app.portal.modules.members.routes import bp as members_bp
from app.portal.modules.documents.routes import bp as documents_bp
from app.portal.modules.events.routes import bp as events_bp
from app.portal.modules.content.routes import bp as content_bp
from app.portal.modules.suggestions.routes import bp as suggestions_bp
from app.portal.modules.captcha.routes import bp as captcha_bp
from app.portal.modules.captcha.store import captcha_store_from_config
from app.portal.modules.payments.routes import bp as payments_bp
from app.portal.modules.payments.stripe_client import gateway_from_settings
from app.portal.modules.accounting.routes import bp as accounting_bp

DEV_ORIGINS = ["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:3000"]

TOKENLESS_PATHS = ("/api/webhook", "/api/health")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates")
    app.config.from_mapping(load_config())
    app.json.sort_keys = False
    settings = app.config["SETTINGS"]
    if settings.trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=settings.trusted_proxy_hops,
            x_proto=settings.trusted_proxy_hops,
            x_host=settings.trusted_proxy_hops,
        )

    origins = list(settings.allowed_origins) or (DEV_ORIGINS if not settings.is_production else [])
    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )

    init_db(app)
    init_limiter(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.extensions["captcha_store"] = captcha_store_from_config(app)
    app.extensions["stripe_gateway"] = gateway_from_settings(settings)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(members_bp, url_prefix="/api/user")
    app.register_blueprint(documents_bp, url_prefix="/api")
    app.register_blueprint(events_bp, url_prefix="/api")
    app.register_blueprint(content_bp, url_prefix="/api")
    app.register_blueprint(suggestions_bp, url_prefix="/api")
    app.register_blueprint(captcha_bp, url_prefix="/api")
    app.register_blueprint(payments_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(accounting_bp, url_prefix="/api/accounting")

    @app.before_request
    def _request_context():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    def _load_user_wrapper():
        if request.path.startswith(TOKENLESS_PATHS) or request.path == "/healthz":
            g.current_user = None
            g.auth_failure = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _tag_response(response):
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

    @app.errorhandler(ApiError)
    def _err_api(e: ApiError):  # type: ignore[no-redef]
        if e.status == 403 and getattr(g, "missing_permission", None):
            app.logger.warning(
                "Forbidden: missing_permission=%s request_id=%s", g.missing_permission, getattr(g, "request_id", None)
            )
        return e.to_response()

    @app.errorhandler(RateLimitExceeded)
    def _err_429(e: RateLimitExceeded):  # type: ignore[no-redef]
        app.logger.warning("Rate limit %s exceeded for %s on %s", e.description, get_remote_address(), request.path)
        return TooManyRequests(e.description if e.limit.error_message else None).to_response()

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return error("Ruta no encontrada", 404, code="NOT_FOUND")

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return error("Método no permitido", 405)

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return error("El cuerpo de la petición es demasiado grande", 413)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return error(e.description or e.name, e.code or 500)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return error("Error interno del servidor", 500)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve (env=%s)", settings.env)

    return app
