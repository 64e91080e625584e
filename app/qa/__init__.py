import logging
from datetime import timedelta

from flask import Flask, g, jsonify, render_template
from dotenv import load_dotenv

from app.qa.config import load_config
from app.qa.db import ENGINE_KEY, init_db, teardown_db_session
from app.qa.errors import AuthorizationError, NotFoundError, ValidationError
from app.qa.routes import bp as routes_bp
from app.qa.auth import bp as auth_bp, load_current_user
from app.qa.modules.questions.routes import bp as questions_bp
from app.qa.modules.tags.routes import bp as tags_bp
from app.qa.modules.questions.utils import render_markdown


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.qa.security import csrf_protect, ensure_csrf_token, wants_json

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_policy() -> dict:
        from app.qa.policy import can as _can

        def can(action: str, entity) -> bool:
            return _can(getattr(g, "current_user", None), action, entity)

        return {"can": can, "current_user": getattr(g, "current_user", None)}

    @app.template_filter("markdown")
    def _markdown_filter(value) -> str:
        from markupsafe import Markup

        return Markup(render_markdown(value))

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d %H:%M") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    app.before_request(csrf_protect)

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
                engine = app.extensions.get(ENGINE_KEY)
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(questions_bp, url_prefix="/questions")
    app.register_blueprint(tags_bp, url_prefix="/tags")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(AuthorizationError)
    def _err_forbidden(e: AuthorizationError):  # type: ignore[no-redef]
        user = getattr(g, "current_user", None)
        app.logger.warning(
            "Forbidden: action=%s user_id=%s request_id=%s",
            e.action,
            user.id if user else None,
            getattr(g, "request_id", None),
        )
        if wants_json():
            return jsonify({"ok": False, "error": str(e)}), 403
        return render_template("errors/403.html", message=str(e)), 403

    @app.errorhandler(NotFoundError)
    def _err_not_found(e: NotFoundError):  # type: ignore[no-redef]
        if wants_json():
            return jsonify({"ok": False, "error": str(e)}), 404
        return render_template("errors/404.html", message=str(e)), 404

    @app.errorhandler(ValidationError)
    def _err_validation(e: ValidationError):  # type: ignore[no-redef]
        if wants_json():
            return jsonify({"ok": False, "errors": e.errors}), 400
        return render_template("errors/400.html", message="; ".join(e.messages())), 400

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html", message="The requested page does not exist."), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
