"""
CultureKart Escrow Service — Flask application
Orders, payment capture, delivery verification codes, escrow release
and artisan withdrawals.
"""

import logging
from datetime import datetime, timezone

import click
from flasgger import Swagger
from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError

from src.config import Config
from src.errors import MarketplaceError
from src.extensions import BLOCKLIST, db, jwt
from src.services.payment_gateway import StripeGateway

logger = logging.getLogger(__name__)


def _configure_logging(app):
    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _register_jwt_handlers():
    @jwt.token_in_blocklist_loader
    def check_if_token_in_blocklist(jwt_header, jwt_payload):
        return jwt_payload["jti"] in BLOCKLIST

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({"success": False, "message": reason}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({"success": False, "message": reason}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({"success": False, "message": "Token has expired"}), 401

    @jwt.revoked_token_loader
    def revoked_token(jwt_header, jwt_payload):
        return jsonify({"success": False, "message": "Token has been revoked"}), 401


def _register_error_handlers(app):
    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        db.session.rollback()
        logger.exception("Database error")
        return jsonify({"success": False, "message": "Database error"}), 500

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "message": "Method not allowed"}), 405


def _register_blueprints(app):
    prefix = app.config["API_PREFIX"].rstrip("/")

    from src.routes.auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix=f"{prefix}/auth")

    from src.routes.products import products_bp
    app.register_blueprint(products_bp, url_prefix=f"{prefix}/products")

    from src.routes.orders import orders_bp
    app.register_blueprint(orders_bp, url_prefix=f"{prefix}/orders")

    from src.routes.payments import mock_confirm_intent, payments_bp
    app.register_blueprint(payments_bp, url_prefix=f"{prefix}/payments")

    from src.routes.verification import verification_bp
    app.register_blueprint(verification_bp, url_prefix=f"{prefix}/verification")

    from src.routes.delivery import delivery_bp
    app.register_blueprint(delivery_bp, url_prefix=f"{prefix}/delivery")

    from src.routes.escrow import escrow_bp
    app.register_blueprint(escrow_bp, url_prefix=f"{prefix}/admin/escrow")

    from src.routes.withdrawals import admin_withdrawals_bp, artisan_withdrawals_bp
    app.register_blueprint(artisan_withdrawals_bp, url_prefix=f"{prefix}/artisan/withdrawals")
    app.register_blueprint(admin_withdrawals_bp, url_prefix=f"{prefix}/admin/withdrawals")

    from src.routes.commission import commission_bp
    app.register_blueprint(commission_bp, url_prefix=f"{prefix}/admin/commission")

    if app.extensions["payment_gateway"].use_mock:
        from src.decorators import role_required
        app.add_url_rule(
            f"{prefix}/payments/mock/confirm/<intent_id>",
            endpoint="mock_confirm_intent",
            view_func=role_required("buyer")(mock_confirm_intent),
            methods=["POST"],
        )


def _register_commands(app):
    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("password")
    @click.option("--name", default="Admin")
    def create_admin(email, password, name):
        """Create an admin account (admins cannot self-register)."""
        from src.models.user import User

        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            raise click.ClickException(f"User {email} already exists")
        user = User(email=email, name=name, role="admin")
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Admin {email} created ({user.user_id})")


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    _configure_logging(app)

    # Initialize Extensions
    db.init_app(app)
    jwt.init_app(app)
    _register_jwt_handlers()

    app.extensions["payment_gateway"] = StripeGateway.from_config(app.config)
    if app.extensions["payment_gateway"].use_mock:
        logger.warning("Stripe gateway running in mock mode")

    Swagger(app)

    _register_error_handlers(app)
    _register_blueprints(app)
    _register_commands(app)

    @app.route("/health")
    def health():
        try:
            db.session.execute(db.text("SELECT 1"))
        except SQLAlchemyError as e:
            return jsonify({"service": "escrow-service", "status": "unhealthy", "error": str(e)}), 503
        return jsonify({
            "service": "escrow-service",
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }), 200

    with app.app_context():
        from src import models  # noqa: F401  (register tables)
        db.create_all()

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=5000)
