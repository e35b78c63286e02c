import logging
import os
from flask import Flask

# Same logger as app.logger for an app created from this package
logger = logging.getLogger(__name__)


def _log_auth_event(event, _session):
    logger.info("Auth state changed: %s", event)


def create_app():
    app = Flask(__name__)

    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        raise RuntimeError(
            "DATABASE_URL is required. Point it at the backend's PostgreSQL database."
        )
    if not os.environ.get("SUPABASE_URL"):
        app.logger.warning("SUPABASE_URL is not set; sign-in and uploads will fail")

    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY") or os.urandom(32).hex()
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=os.environ.get("SESSION_COOKIE_SECURE", "0").lower() in ("1", "true"),
    )

    # Pool is optional; datastore_pg falls back to direct connections
    try:
        from . import datastore_pg as _pg
        try:
            minconn = int(os.environ.get("DB_POOL_MIN", "1"))
        except ValueError:
            minconn = 1
        try:
            maxconn = int(os.environ.get("DB_POOL_MAX", "10"))
        except ValueError:
            maxconn = 10
        _pg.init_pool(minconn=minconn, maxconn=maxconn)
    except Exception:
        app.logger.exception("PostgreSQL pool initialization failed; continuing without pool")

    from . import admin, public, realtime, ui
    app.register_blueprint(ui.bp)
    app.register_blueprint(public.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(realtime.bp)

    from . import auth
    app.extensions["auth_listener"] = auth.on_auth_state_change(_log_auth_event)

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port)
