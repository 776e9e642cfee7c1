import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from config import Config
from routes import (
    health_bp,
    auth_bp,
    cars_bp,
    booking_bp,
    admin_bp,
    payments_bp,
    webhook_bp,
)
from models import db
from models.user import User, Role
from services.errors import BookingAppError
from utils.seed import seed_roles
from utils.auth_context import load_current_user

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)
    app.logger.setLevel(level)


def register_error_handlers(app):
    @app.errorhandler(BookingAppError)
    def _domain_error(exc):
        db.session.rollback()
        if exc.status_code >= 500:
            app.logger.error("%s: %s", type(exc).__name__, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def _http_error(exc):
        return jsonify(error=exc.description), exc.code

    @app.errorhandler(Exception)
    def _unexpected(exc):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify(error="Internal server error"), 500


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(cars_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Seed default roles at startup (safe & idempotent)
    with app.app_context():
        if app.config.get("AUTO_CREATE_TABLES"):
            db.create_all()
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        return resp

    register_error_handlers(app)
    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name="ADMIN").first()
        if not admin_role:
            admin_role = Role(name="ADMIN")
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("init-db")
    def init_db():
        """Create all tables and seed roles (without migrations)."""
        db.create_all()
        seed_roles()
        click.echo("Database initialised")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5000)
