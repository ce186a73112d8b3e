"""
API gateway: combines the auth, workshops, freelance and jobs blueprints.
This is the local entrypoint for development.
"""

from flask import Flask, jsonify
from flask_cors import CORS
import os
import logging
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Basic console logging during API requests
logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(asctime)s - %(message)s")


def create_app(extensions: Optional[dict] = None) -> Flask:
    """
    Application factory for creating the Flask app.

    Args:
        extensions (dict, optional): Pre-built collaborators to install in
            app.extensions (e.g. "otp_flow", "registration_flow"). Anything
            not supplied is built from the environment on first use.

    Returns:
        Flask: The configured Flask application.
    """
    app = Flask(__name__)

    frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
    CORS(app, resources={
        r"/*": {
            "origins": [
                frontend_url,
                "http://localhost:3000",  # React dev server
                "http://localhost:5050",  # Gateway itself
            ],
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization"],
            "expose_headers": ["Content-Type", "Authorization"],
            "supports_credentials": True
        }
    })

    # --- REGISTER BLUEPRINTS ---
    from backend.auth_service.routes import auth_bp
    from backend.workshops_service.routes import workshops_bp
    from backend.freelance_service.routes import freelance_bp
    from backend.jobs_service.routes import jobs_bp, applications_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(workshops_bp, url_prefix="/workshops")
    app.register_blueprint(freelance_bp, url_prefix="/student-entries")
    app.register_blueprint(jobs_bp, url_prefix="/jobs")
    app.register_blueprint(applications_bp, url_prefix="/job-applications")

    app.extensions.update(extensions or {})
    logging.info("All blueprints registered successfully.")

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
        Health check endpoint.
        """
        return jsonify({"status": "ok"}), 200

    return app


if __name__ == "__main__":
    app = create_app()
    port = int(os.getenv("GATEWAY_PORT", 5050))
    app.run(host="0.0.0.0", port=port, debug=os.getenv("FLASK_DEBUG") == "1")
