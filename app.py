import os
import logging
from flask import Flask, jsonify
from config import Config
from extensions import db, login_manager, init_extensions
from commission.errors import CommissionError
from logger import app_logger


# --------------------------------------------------------------------------------------------------------
#       Application factory
# --------------------------------------------------------------------------------------------------------
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

    setup_logging(app)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        os.makedirs(os.path.join(app.root_path, "instance"), exist_ok=True)

    # --------------------------------------------------------------------------------------------------------------------------
    # Initialize extensions
    # ----------------------------------------------------------------------------------------------------------------------------
    init_extensions(app)

    register_blueprints(app)
    register_error_handlers(app)

    from cli import register_commands
    register_commands(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Flask-Login
    # ------------------------------------------------------------------------------------------------------------------------
    @login_manager.user_loader
    def load_user(user_id):
        from models import Account
        return db.session.get(Account, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"success": False, "error": "unauthorized", "message": "Login required"}), 401

    @app.route("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    if app.config.get("SCHEDULER_ENABLED"):
        from leaderboard.scheduler import start_scheduler
        start_scheduler(app)

    app_logger.info(f"Application created ({app.config.get('FLASK_ENV')})")
    return app


def setup_logging(app):
    """Route Flask's logger through the shared app logger handlers"""
    level = logging.DEBUG if app.debug else logging.INFO
    app.logger.handlers.clear()
    for handler in app_logger.handlers:
        app.logger.addHandler(handler)
    app.logger.setLevel(level)
    app.logger.propagate = False

    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def register_blueprints(app):
    """Register all blueprints"""
    from blueprints.auth import bp as auth_bp
    from blueprints.requests import bp as requests_bp
    from blueprints.upgrades import bp as upgrades_bp
    from blueprints.withdraw import bp as withdraw_bp
    from blueprints.admin import admin_bp
    from blueprints.leaderboard import bp as leaderboard_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(upgrades_bp)
    app.register_blueprint(withdraw_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(leaderboard_bp)


def register_error_handlers(app):

    @app.errorhandler(CommissionError)
    def handle_commission_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.kind}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"success": False, "error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(500)
    def internal(error):
        db.session.rollback()
        return jsonify({"success": False, "error": "internal", "message": "Server error"}), 500


# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    debug_mode = app.config.get("DEBUG", False)
    app.run(debug=debug_mode, host="0.0.0.0", port=port)
