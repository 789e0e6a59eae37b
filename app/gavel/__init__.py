import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request, session
from werkzeug.exceptions import HTTPException

from app.gavel.auth import bp as auth_bp, load_current_user
from app.gavel.config import load_config
from app.gavel.db import init_db, teardown_db_session
from app.gavel.errors import GavelError
from app.gavel.modules.committees.routes import bp as committees_bp
from app.gavel.modules.motions.routes import bp as motions_bp
from app.gavel.routes import bp as routes_bp

# Mutating endpoints reachable before a CSRF token has been issued.
_CSRF_EXEMPT = frozenset({"auth.login_post", "auth.register", "auth.logout"})


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO"), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    root.setLevel(level)
    app.logger.setLevel(level)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    _configure_logging(app)

    from app.gavel.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if (request.endpoint or "") in _CSRF_EXEMPT:
                return None
            if not validate_csrf(request):
                return {"error": "csrf", "message": "CSRF token missing or invalid."}, 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(committees_bp, url_prefix="/committees")
    app.register_blueprint(motions_bp, url_prefix="/committees/<int:committee_id>/motions")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(GavelError)
    def _err_domain(e: GavelError):  # type: ignore[no-redef]
        app.logger.warning(
            "%s on %s %s: %s (request_id=%s)",
            e.code,
            request.method,
            request.path,
            e.message,
            getattr(g, "request_id", None),
        )
        return e.to_dict(), e.status_code

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return {"error": (e.name or "error").lower().replace(" ", "_"), "message": e.description}, e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return {"error": "internal", "message": "Internal server error."}, 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
