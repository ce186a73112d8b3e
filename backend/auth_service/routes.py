"""
Authentication service route handlers.

Provides routes for:
- User registration
- User login
- Profile retrieval (/me)
- Profile update (/me PUT)
- Password reset by emailed one-time code
  (/forgot-password, /resend-otp, /verify-otp)

JWT logic lives in `auth_service.utils`; the reset flow in `auth_service.otp`.
"""

import logging
from typing import Tuple, Dict, Any

import psycopg2
import psycopg2.errors
from flask import Blueprint, current_app, request, jsonify, Response

from backend.auth_service.ledger import ResetLedger
from backend.auth_service.otp import OtpFlow
from backend.auth_service.users import UserStore, normalize_email
from backend.auth_service.utils import (
    VALID_ROLES,
    create_token,
    verify_password,
    verify_token_from_request,
)
from backend.config import ResetSettings
from backend.errors import DomainError
from backend.notifications.email_service import EmailNotifier

auth_bp = Blueprint("auth", __name__)

PROFILE_FIELDS = [
    "bio",
    "phone_number",
    "department",
    "graduation_year",
    "company",
    "job_title",
    "skills",
    "linkedin",
    "github",
    "profile_picture",
]


def user_store() -> UserStore:
    store = current_app.extensions.get("user_store")
    if store is None:
        store = current_app.extensions["user_store"] = UserStore()
    return store


def otp_flow() -> OtpFlow:
    """Return the app's OTP controller, building the default one on first use."""
    flow = current_app.extensions.get("otp_flow")
    if flow is None:
        settings = ResetSettings.from_env()
        flow = OtpFlow(settings, ResetLedger(), user_store(), EmailNotifier(settings.platform_name))
        current_app.extensions["otp_flow"] = flow
    return flow


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _serialize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    user = {k: v for k, v in user.items() if k != "password_hash"}
    for key in ("created_at", "updated_at"):
        if user.get(key):
            user[key] = user[key].isoformat()
    return user


# --- REQUEST LOGGING ---
@auth_bp.before_request
def before_request() -> None:
    """
    Log every incoming request method and path to the authentication service.
    """
    logging.info(f"[Auth] Incoming {request.method} {request.path}")


@auth_bp.after_request
def after_request(response: Response) -> Response:
    """
    Log the response status code for every request.
    """
    logging.info(f"[Auth] Response {response.status}")
    return response


# --- REGISTER ---
@auth_bp.route("/register", methods=["POST"])
def register() -> Tuple[Response, int]:
    """
    Register a new user in the system.

    Expects a JSON body with:
    - name (str)
    - email (str): Unique email address.
    - password (str): Minimum 8 characters.
    - role (str, optional): "student" (default) or "alumni".

    Returns:
        201: JSON with user_id, role, and a new JWT token.
        400: Missing fields, invalid input, or email already exists.
        500: Server-side error (hashing or database).
    """
    data: Dict[str, Any] = request.get_json() or {}
    email: str = normalize_email(data.get("email"))
    password: str = data.get("password", "")
    name: str = _text(data.get("name"))
    role: str = data.get("role") or "student"

    # Validate input
    if not email or not password:
        return jsonify({"error": "Email and password required"}), 400
    if not isinstance(password, str):
        return jsonify({"error": "Password must be a string"}), 400
    if not name:
        return jsonify({"error": "Name required"}), 400
    if len(password) < 8:
        return jsonify({"error": "Password must be at least 8 characters"}), 400
    if role not in VALID_ROLES:
        return jsonify({"error": f"role must be one of: {', '.join(VALID_ROLES)}"}), 400

    try:
        user = user_store().create(email, password, name, role)
    except psycopg2.errors.UniqueViolation:
        return jsonify({"error": "Email already exists"}), 400
    except Exception as e:
        logging.error(f"[Auth] Registration failed: {e}")
        return jsonify({"error": "Registration failed"}), 500

    # Generate initial token for immediate login
    token = create_token(user["user_id"], user["role"])

    return jsonify({"user_id": user["user_id"], "role": user["role"], "token": token}), 201


# --- LOGIN ---
@auth_bp.route("/login", methods=["POST"])
def login() -> Tuple[Response, int]:
    """
    Authenticate a user and return a JWT.

    Returns:
        200: JSON with user_id, role, and JWT token.
        400: Missing credentials.
        401: Invalid credentials (wrong password or email).
        500: Database error.
    """
    data: Dict[str, Any] = request.get_json() or {}
    email: str = normalize_email(data.get("email"))
    password: str = data.get("password", "")

    if not email or not password:
        return jsonify({"error": "Email and password required"}), 400
    if not isinstance(password, str):
        return jsonify({"error": "Password must be a string"}), 400

    try:
        user = user_store().find_by_email(email)
    except Exception as e:
        logging.error(f"[Auth] Login lookup failed: {e}")
        return jsonify({"error": "Login failed"}), 500

    if not user or not verify_password(user["password_hash"], password):
        return jsonify({"error": "Invalid credentials"}), 401

    token = create_token(user["user_id"], user["role"])

    return jsonify({
        "user_id": user["user_id"],
        "role": user["role"],
        "name": user["name"],
        "token": token
    }), 200


# --- GET CURRENT USER ---
@auth_bp.route("/me", methods=["GET"])
def get_current_user() -> Tuple[Response, int]:
    """
    Retrieve the current user's profile.

    Returns:
        200: User profile object.
        401/403: Authentication failure.
        404: User not found in DB (edge case).
        500: Database error.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        user = user_store().find_by_id(user_id)
    except Exception as e:
        logging.error(f"[Auth] Could not retrieve user {user_id}: {e}")
        return jsonify({"error": "Could not retrieve user"}), 500

    if not user:
        return jsonify({"error": "User not found"}), 404

    return jsonify(_serialize_user(user)), 200


# --- UPDATE CURRENT USER ---
@auth_bp.route("/me", methods=["PUT"])
def update_current_user() -> Tuple[Response, int]:
    """
    Update the display name and whitelisted profile fields.

    Expects JSON: { "name": "...", "profile": { "bio": "...", ... } }

    Returns:
        200: Updated user object.
        400: No valid fields provided.
        401/403: Authentication failure.
        500: Update failed.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = request.get_json() or {}
    name = _text(data.get("name")) or None
    profile_in = data.get("profile") if isinstance(data.get("profile"), dict) else {}
    profile = {k: v for k, v in profile_in.items() if k in PROFILE_FIELDS}

    if not name and not profile:
        return jsonify({"error": "No valid fields provided"}), 400

    try:
        user = user_store().update_profile(user_id, name, profile)
    except Exception as e:
        logging.error(f"[Auth] Profile update failed for {user_id}: {e}")
        return jsonify({"error": "Update failed"}), 500

    if not user:
        return jsonify({"error": "User not found"}), 404

    return jsonify(_serialize_user(user)), 200


# --- FORGOT PASSWORD ---
@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password() -> Tuple[Response, int]:
    """
    Start a password reset by emailing a 6-digit code.

    Always answers {"ok": true} so callers cannot discover which emails have
    accounts or whether they were rate limited.

    Returns:
        200: {"ok": true, "message": ...}
        500: Infrastructure failure.
    """
    data: Dict[str, Any] = request.get_json() or {}
    email = data.get("email")
    if not email:
        return jsonify({"ok": True}), 200

    try:
        outcome = otp_flow().request_code(
            email, ip=request.remote_addr, user_agent=request.headers.get("User-Agent", "")
        )
    except Exception as e:
        logging.error(f"[Auth] forgot-password failed: {e}")
        return jsonify({"ok": False, "message": "Server error"}), 500

    logging.info(f"[Auth] forgot-password outcome: {outcome.value}")
    return jsonify({"ok": True, "message": "If an account exists, an OTP has been sent."}), 200


# --- RESEND OTP ---
@auth_bp.route("/resend-otp", methods=["POST"])
def resend_otp() -> Tuple[Response, int]:
    """
    Resend (rotate) the reset code. Same uniform response as forgot-password.
    """
    data: Dict[str, Any] = request.get_json() or {}
    email = data.get("email")
    if not email:
        return jsonify({"ok": True}), 200

    try:
        outcome = otp_flow().resend_code(
            email, ip=request.remote_addr, user_agent=request.headers.get("User-Agent", "")
        )
    except Exception as e:
        logging.error(f"[Auth] resend-otp failed: {e}")
        return jsonify({"ok": False}), 500

    logging.info(f"[Auth] resend-otp outcome: {outcome.value}")
    return jsonify({"ok": True}), 200


# --- VERIFY OTP ---
@auth_bp.route("/verify-otp", methods=["POST"])
def verify_otp() -> Tuple[Response, int]:
    """
    Verify a reset code and set the new password.

    Expects JSON: { "email": "...", "otp": "123456", "newPassword": "..." }

    Returns:
        200: {"ok": true, "message": "Password reset successful"}
        400: {"ok": false, "message": ...} for missing fields, a short
             password, or "Invalid code or expired" for every other failure.
        500: Infrastructure failure.
    """
    data: Dict[str, Any] = request.get_json() or {}

    try:
        otp_flow().verify_code(data.get("email"), data.get("otp"), data.get("newPassword"))
    except DomainError as e:
        return jsonify({"ok": False, "message": e.message}), e.status_code
    except Exception as e:
        logging.error(f"[Auth] verify-otp failed: {e}")
        return jsonify({"ok": False, "message": "Server error"}), 500

    return jsonify({"ok": True, "message": "Password reset successful"}), 200
