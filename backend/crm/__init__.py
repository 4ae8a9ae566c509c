# backend/crm/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Outbound integrations
    from .services.mailer import Mailer
    from .services.pdf_service import DocumentPdfRenderer
    from .services.google_calendar import GoogleCalendarClient
    from .services.reminder_service import ReminderDispatcher, ReminderPoller

    app.extensions["crm.mailer"] = Mailer.from_config(app.config)
    app.extensions["crm.pdf"] = DocumentPdfRenderer.from_config(app.config)
    app.extensions["crm.calendar"] = GoogleCalendarClient.from_config(app.config)
    app.extensions["crm.reminder_poller"] = ReminderPoller(
        app,
        ReminderDispatcher(app.extensions["crm.mailer"]),
        interval=app.config["REMINDER_POLL_INTERVAL_SECONDS"],
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.customers import customers_bp
    from .routes.interactions import interactions_bp
    from .routes.proposals import proposals_bp
    from .routes.invoices import invoices_bp
    from .routes.events import events_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(interactions_bp)
    app.register_blueprint(proposals_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(events_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in set(app.config["CORS_ALLOWED_ORIGINS"]):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config["REMINDER_POLLER_ENABLED"]:
        app.extensions["crm.reminder_poller"].start()

    return app
