"""
API gateway: combines the auth, events, groupings, teams and activity blueprints.
This is the local entrypoint for development.
"""

from datetime import date, datetime
from typing import Optional

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
import os
import logging
import psycopg2
from dotenv import load_dotenv

from teamcal.activity_service.routes import activity_bp
from teamcal.auth_service.routes import auth_bp
from teamcal.errors import CalendarError
from teamcal.events_service.routes import events_bp
from teamcal.groupings_service.routes import groupings_bp
from teamcal.security.keys import KeyVault, load_key_vault
from teamcal.teams_service.routes import teams_bp

load_dotenv()

# Basic console logging during API requests
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="[%(levelname)s] %(asctime)s - %(message)s",
)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5500",  # Local development (some editors)
    "http://localhost:5050",  # Local development gateway (if served from same host)
    "http://localhost:8080",  # Local static server
]


class CalendarJSONProvider(DefaultJSONProvider):
    """Render timestamps as ISO-8601 instead of HTTP dates."""

    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


def _cors_origins():
    raw = os.getenv("CORS_ORIGINS")
    if not raw:
        return DEFAULT_CORS_ORIGINS
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(key_vault: Optional[KeyVault] = None, testing: bool = False) -> Flask:
    """
    Application factory for creating the Flask app.

    Args:
        key_vault (KeyVault, optional): Vault to use instead of the one built
            from SYSTEM_MASTER_KEY. Tests pass a throwaway vault here.
        testing (bool): Enable Flask testing mode.

    Returns:
        Flask: The configured Flask application.

    Raises:
        ConfigurationError: Master key missing or malformed in production.
    """
    app = Flask(__name__)
    app.json = CalendarJSONProvider(app)
    app.config["TESTING"] = testing

    CORS(app, resources={
        r"/*": {
            "origins": _cors_origins(),
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization"],
            "expose_headers": ["Content-Type", "Authorization"],
            "supports_credentials": True
        }
    })

    # The master key is read once here and lives for the life of the process
    app.extensions["key_vault"] = key_vault if key_vault is not None else load_key_vault()

    # --- REGISTER BLUEPRINTS ---
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(events_bp, url_prefix="/events")
    app.register_blueprint(groupings_bp, url_prefix="/groupings")
    app.register_blueprint(teams_bp, url_prefix="/teams")
    app.register_blueprint(activity_bp, url_prefix="/activity")
    logging.info("All blueprints registered successfully.")

    # --- ERROR HANDLERS ---
    @app.errorhandler(CalendarError)
    def handle_calendar_error(e: CalendarError):
        body = {"error": e.message}
        if e.details:
            body["details"] = e.details
        if e.status_code >= 500:
            logging.error(f"[Gateway] {type(e).__name__}: {e.message}")
        return jsonify(body), e.status_code

    @app.errorhandler(psycopg2.Error)
    def handle_database_error(e: psycopg2.Error):
        logging.error("[Gateway] Database error", exc_info=e)
        return jsonify({"error": "Database error"}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        if isinstance(e, HTTPException):
            return e
        logging.error("[Gateway] Unhandled error", exc_info=e)
        return jsonify({"error": "Internal server error"}), 500

    # --- BASIC HEALTH CHECKPOINTS ---
    @app.route("/")
    def ping():
        """
        Root URL for simple 'online' check.
        """
        return jsonify({"status": "gateway_ok"}), 200

    @app.route("/health")
    def health():
        """
        Health check endpoint. Reports whether private events can be served.
        """
        return jsonify({
            "status": "ok",
            "master_key_loaded": app.extensions["key_vault"] is not None,
        }), 200

    return app


if __name__ == "__main__":
    app = create_app()
    port = int(os.getenv("GATEWAY_PORT", 5050))
    app.run(host="0.0.0.0", port=port, debug=os.getenv("APP_ENV", "development") != "production")
