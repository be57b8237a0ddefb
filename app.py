import os
import logging
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify

from config import Config
from extensions import db, login_manager, init_extensions
from models import User
from ledger.cli import register_cli
from ledger.commission_config import CommissionConfigHelper
from ledger.clock import clock
from ledger.errors import LedgerError
from ledger.otp import init_otp_service


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    # ------------------------------------------------------------------------------------------
    # LOGGING
    # ------------------------------------------------------------------------------------------
    setup_logging(app)

    # ------------------------------------------------------------------------------------------
    # DATABASE URI
    # ------------------------------------------------------------------------------------------
    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if database_uri.startswith("sqlite:///"):
        os.makedirs(os.path.dirname(database_uri[len("sqlite:///"):]) or ".", exist_ok=True)

    # ------------------------------------------------------------------------------------------
    # Initialize extensions
    # ------------------------------------------------------------------------------------------
    check_commission_schedules(app)
    init_extensions(app)
    login_manager.login_view = None
    init_otp_service(app)

    register_blueprints(app)
    register_error_handlers(app)
    register_cli(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"success": False, "error": "Authentication required"}), 401

    @app.route("/healthz")
    def healthz():
        return {"status": "ok", "timestamp": clock.now.isoformat()}, 200

    return app


def setup_logging(app):
    """File logging for app.logger, console too in debug."""
    logs_dir = app.config.get("LOG_DIR", "logs")
    os.makedirs(logs_dir, exist_ok=True)

    file_handler = RotatingFileHandler(
        os.path.join(logs_dir, "app.log"),
        maxBytes=1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    ))
    file_handler.setLevel(logging.INFO)

    app.logger.handlers.clear()
    app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)
    app.logger.propagate = False

    if app.debug:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(console_handler)


def check_commission_schedules(app):
    """Refuse to start on a commission table that would misallocate the base."""
    for name in CommissionConfigHelper.SCHEDULES:
        ok, message = CommissionConfigHelper.validate_schedule(CommissionConfigHelper.get_schedule(name))
        if not ok:
            raise ValueError(f"Invalid {name} commission schedule: {message}")
        app.logger.info(f"Commission schedule {name}: {message}")


def register_blueprints(app):
    from blueprints.auth import bp as auth_bp
    from blueprints.wallet import bp as wallet_bp
    from blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(admin_bp)


def register_error_handlers(app):

    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.__class__.__name__}: {error.message}")
        else:
            app.logger.info(f"{error.__class__.__name__}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({"success": False, "error": "Admin access required"}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.error(f"Unhandled server error: {error}")
        return jsonify({"success": False, "error": "Internal server error"}), 500


if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    debug = app.config.get("DEBUG", False)
    app.run(debug=debug, host="0.0.0.0", port=port, use_reloader=debug)
