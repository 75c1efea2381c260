# backend/orderflow/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # External collaborators (replaceable per app, e.g. by test fakes)
    from .services.payment_service import init_payment_gateway
    from .services.geocoding_service import init_geocoder
    from .services.notification_service import init_sms_client

    init_payment_gateway(app)
    init_geocoder(app)
    init_sms_client(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.checkout import checkout_bp
    from .routes.orders import orders_bp
    from .routes.schedule import schedule_bp
    from .routes.payouts import payouts_bp
    from .routes.payments import payments_bp
    from .routes.traces import traces_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(schedule_bp)
    app.register_blueprint(payouts_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(traces_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
