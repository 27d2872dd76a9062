import logging
import os
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from app.apc.config import load_config
from app.apc.db import init_db, teardown_db_session
from app.apc.errors import ApiError, integrity_error_kind
from app.apc.logging_cfg import configure_logging
from app.apc.routes import bp as routes_bp
from app.apc.auth import bp as auth_bp, load_current_user
from app.apc.modules.geografia.api import bp as geografia_bp
from app.apc.modules.empresas.api import bp as empresas_bp
from app.apc.modules.tickets.api import bp as tickets_bp
from app.apc.modules.equipos.api import bp as equipos_bp

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False
    configure_logging(app.config["LOG_LEVEL"])

    from app.apc.security import validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
            return None
        # Login/logout/register carry no session to protect yet
        if (request.endpoint or "").startswith("auth."):
            return None
        # Anonymous callers are answered with 401 by the handlers
        if not session.get("user_id"):
            return None
        if not validate_csrf(request):
            return jsonify({"message": "Token CSRF ausente o inválido."}), 400
        return None

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
    app.register_blueprint(geografia_bp, url_prefix="/api")
    app.register_blueprint(empresas_bp, url_prefix="/api")
    app.register_blueprint(tickets_bp, url_prefix="/api")
    app.register_blueprint(equipos_bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    def _run_schema_health_check() -> None:
        from app.apc.models import Base

        engine = app.extensions["sqlalchemy_engine"]
        try:
            existing = set(sa_inspect(engine).get_table_names())
        except Exception as e:
            app.logger.error("Schema health check failed: %s", e)
            return
        missing = sorted(t for t in Base.metadata.tables if t not in existing)
        app.config["_schema_health_missing"] = missing
        if missing:
            app.logger.warning("DB schema out of date; run `alembic upgrade head`. Missing tables: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.errorhandler(ApiError)
    def _err_api(e: ApiError):  # type: ignore[no-redef]
        # Discard anything the failed operation already flushed
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        if e.status_code >= 500:
            app.logger.error("API error %s: %s", e.status_code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(IntegrityError)
    def _err_integrity(e: IntegrityError):  # type: ignore[no-redef]
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        kind = integrity_error_kind(e)
        app.logger.warning("Integrity error (%s) request_id=%s: %s", kind, getattr(g, "request_id", None), e.orig)
        if kind == "unique":
            return jsonify({"message": "El registro ya existe."}), 409
        if kind == "foreign_key":
            return jsonify({"message": "El registro referenciado no existe o tiene dependencias."}), 400
        return jsonify({"message": "Datos inválidos."}), 400

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 500:
            return _err_500(e)
        messages = {
            400: "Solicitud inválida.",
            401: "No autorizado",
            403: "Acceso prohibido",
            404: "Recurso no encontrado.",
            405: "Método no permitido.",
            413: "El archivo es demasiado grande.",
        }
        return jsonify({"message": messages.get(e.code or 0, e.description)}), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        original = getattr(e, "original_exception", None)
        if original is not None:
            app.logger.error("Unhandled 500 (request_id=%s)", rid, exc_info=original)
        else:
            app.logger.error("Unhandled 500 (request_id=%s): %s", rid, e)
        return jsonify({"message": "Error interno del servidor"}), 500

    logger.info("create_app() complete; app ready to serve")

    return app
