"""
Workshops service routes: create, read, update, delete workshops, plus the
student registration flow (register, token join, cancel, list).
"""

import logging
from datetime import datetime
from typing import Tuple, Dict, Any, Optional
from urllib.parse import urlparse

from flask import Blueprint, current_app, redirect, request, jsonify, Response

from backend.auth_service.users import UserStore
from backend.auth_service.utils import verify_token_from_request
from backend.config import RegistrationSettings
from backend.database.db_connection import get_db
from backend.errors import DomainError, InvalidLinkError
from backend.notifications.email_service import EmailNotifier
from backend.workshops_service.ledger import RegistrationLedger, WORKSHOP_COLUMNS, WORKSHOP_RETURNING
from backend.workshops_service.registration import RegistrationFlow

workshops_bp = Blueprint("workshops", __name__)

# --- CONSTANTS FOR VALIDATION ---
TITLE_MAX_LENGTH = 200
VALID_MODES = ["online", "offline"]
VALID_REGISTRATION_MODES = ["email-only", "public-link", "external-form"]
VALID_STATUSES = ["upcoming", "ongoing", "completed", "cancelled"]
REQUIRED_FIELDS = ["title", "description", "date", "mode", "target_audience", "duration"]


def registration_flow() -> RegistrationFlow:
    """Return the app's registration controller, building the default one on first use."""
    flow = current_app.extensions.get("registration_flow")
    if flow is None:
        flow = RegistrationFlow(
            RegistrationSettings.from_env(), RegistrationLedger(), UserStore(), EmailNotifier()
        )
        current_app.extensions["registration_flow"] = flow
    return flow


def parse_dt(val: Optional[str]) -> Optional[datetime]:
    """
    Safely parse an ISO-8601 or datetime-local string to a datetime object.

    Returns:
        datetime: The parsed datetime, or None if invalid.
    """
    if not val or not isinstance(val, str):
        return None
    try:
        # Handles 'YYYY-MM-DDTHH:MM' and '...Z' or '...+00:00'
        if val.endswith('Z'):
            val = val[:-1] + '+00:00'
        return datetime.fromisoformat(val)
    except ValueError:
        return None


def is_valid_url(val: Any) -> bool:
    if not isinstance(val, str):
        return False
    parsed = urlparse(val.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def check_location(mode: str, meeting_link: Any, location: Any) -> Optional[str]:
    """
    Online workshops need a valid meeting link, offline ones a location.

    Returns:
        str: An error message, or None when the combination is valid.
    """
    if mode == "online":
        if not meeting_link or not str(meeting_link).strip():
            return "meetingLink is required for online workshops"
        if not is_valid_url(meeting_link):
            return "meetingLink must be a valid URL"
    elif mode == "offline":
        if not isinstance(location, str) or not location.strip():
            return "Location is required for offline workshops"
    return None


def serialize(row: Dict[str, Any]) -> Dict[str, Any]:
    item = dict(row)
    for key in ("date", "created_at", "updated_at"):
        if isinstance(item.get(key), datetime):
            item[key] = item[key].isoformat()
    return item


# --- REQUEST LOGGING ---
@workshops_bp.before_request
def before_request() -> None:
    logging.info(f"[Workshops] Incoming {request.method} {request.path}")


@workshops_bp.after_request
def after_request(response: Response) -> Response:
    logging.info(f"[Workshops] Response {response.status}")
    return response


@workshops_bp.route("/", methods=["GET"])
def list_workshops() -> Tuple[Response, int]:
    """
    Return all workshops, newest date first, with organizer name and the
    number of active registrations.
    """
    _, _, err, code = verify_token_from_request()
    if err:
        return err, code

    sql = f"""
        SELECT {WORKSHOP_COLUMNS},
            u.name AS organizer_name, u.email AS organizer_email,
            (SELECT COUNT(*) FROM workshop_rsvps r
             WHERE r.workshop_id = w.workshop_id AND r.status <> 'cancelled') AS registration_count
        FROM workshops w
        LEFT JOIN users u ON u.user_id = w.organizer_id
        ORDER BY w.date DESC;
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql)
                rows = [serialize(r) for r in cur.fetchall()]
    except Exception as e:
        logging.error(f"[Workshops] Database error listing workshops: {e}")
        return jsonify({"message": "Server error"}), 500

    return jsonify(rows), 200


@workshops_bp.route("/alumni/<int:alumni_id>", methods=["GET"])
def list_alumni_workshops(alumni_id: int) -> Tuple[Response, int]:
    """
    Workshops organized by one alumnus.
    """
    sql = f"""
        SELECT {WORKSHOP_COLUMNS},
            (SELECT COUNT(*) FROM workshop_rsvps r
             WHERE r.workshop_id = w.workshop_id AND r.status <> 'cancelled') AS registration_count
        FROM workshops w
        WHERE w.organizer_id = %s
        ORDER BY w.date DESC;
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (alumni_id,))
                rows = [serialize(r) for r in cur.fetchall()]
    except Exception as e:
        logging.error(f"[Workshops] Database error listing workshops for {alumni_id}: {e}")
        return jsonify({"message": "Error fetching alumni workshops"}), 500

    return jsonify(rows), 200


@workshops_bp.route("/", methods=["POST"])
def create_workshop() -> Tuple[Response, int]:
    """
    Create a workshop (alumni only).

    Validations:
    - Required fields present, title length.
    - Date parses as ISO-8601.
    - mode is online (needs a valid meetingLink) or offline (needs a location).
    - registrationMode is one of the supported modes.

    Returns:
        201: The created workshop.
        400: Validation error.
        401/403: Authentication / role failure.
        500: Server error.
    """
    user_id, _, err, code = verify_token_from_request(required_roles=["alumni"])
    if err:
        return err, code

    data: Dict[str, Any] = request.get_json() or {}

    # Accept the frontend's camelCase names as well
    fields = {
        "title": data.get("title"),
        "description": data.get("description"),
        "date": data.get("date"),
        "mode": data.get("mode"),
        "target_audience": data.get("target_audience") or data.get("targetAudience"),
        "duration": data.get("duration"),
    }
    meeting_link = data.get("meeting_link") or data.get("meetingLink")
    location = data.get("location")
    registration_mode = data.get("registration_mode") or data.get("registrationMode") or "email-only"

    # --- START VALIDATION ---
    if not all(fields[f] for f in REQUIRED_FIELDS):
        return jsonify({"message": "Missing required fields"}), 400

    not_text = [f for f in REQUIRED_FIELDS if not isinstance(fields[f], str) or not fields[f].strip()]
    if not_text:
        return jsonify({"message": f"{not_text[0]} must be a non-empty string"}), 400

    if len(fields["title"]) > TITLE_MAX_LENGTH:
        return jsonify({"message": f"Title must be {TITLE_MAX_LENGTH} characters or less."}), 400

    if fields["mode"] not in VALID_MODES:
        return jsonify({"message": 'Mode must be either "online" or "offline"'}), 400

    location_error = check_location(fields["mode"], meeting_link, location)
    if location_error:
        return jsonify({"message": location_error}), 400

    if registration_mode not in VALID_REGISTRATION_MODES:
        return jsonify({"message": f"registrationMode must be one of: {', '.join(VALID_REGISTRATION_MODES)}"}), 400

    date = parse_dt(fields["date"])
    if not date:
        return jsonify({"message": "Invalid date format. Use ISO-8601."}), 400
    # --- END VALIDATION ---

    online = fields["mode"] == "online"

    sql = f"""
        INSERT INTO workshops (
            title, description, date, mode, location, meeting_link,
            target_audience, duration, organizer_id, registration_mode, status
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 'upcoming')
        RETURNING {WORKSHOP_RETURNING};
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    fields["title"].strip(), fields["description"], date, fields["mode"],
                    None if online else location.strip(),
                    meeting_link.strip() if online else None,
                    fields["target_audience"], fields["duration"], user_id, registration_mode,
                ))
                workshop = cur.fetchone()
                conn.commit()
    except Exception as e:
        logging.error(f"[Workshops] Database error creating workshop: {e}")
        return jsonify({"message": "Server error"}), 500

    logging.info(f"[Workshops] Workshop {workshop['workshop_id']} created by {user_id}")
    return jsonify(serialize(workshop)), 201


@workshops_bp.route("/<int:workshop_id>", methods=["GET"])
def get_workshop(workshop_id: int) -> Tuple[Response, int]:
    _, _, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        workshop = registration_flow().ledger.find_workshop(workshop_id)
    except Exception as e:
        logging.error(f"[Workshops] Database error getting workshop {workshop_id}: {e}")
        return jsonify({"message": "Server error"}), 500

    if not workshop:
        return jsonify({"message": "Workshop not found"}), 404

    return jsonify(serialize(workshop)), 200


@workshops_bp.route("/<int:workshop_id>", methods=["PUT"])
def update_workshop(workshop_id: int) -> Tuple[Response, int]:
    """
    Update a workshop. Only its organizer may do so.

    Switching mode clears the field that no longer applies (location for
    online, meeting link for offline).

    Returns:
        200: The updated workshop.
        400: Validation error.
        403: Not the organizer.
        404: Workshop not found.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = request.get_json() or {}
    if not data:
        return jsonify({"message": "No update data provided"}), 400

    try:
        current = registration_flow().ledger.find_workshop(workshop_id)
    except Exception as e:
        logging.error(f"[Workshops] Database error loading workshop {workshop_id}: {e}")
        return jsonify({"message": "Server error"}), 500

    if not current:
        return jsonify({"message": "Workshop not found"}), 404
    if current["organizer_id"] != user_id:
        return jsonify({"message": "Not authorized to update this workshop"}), 403

    updates: Dict[str, Any] = {}

    # --- VALIDATION BLOCK ---
    if "title" in data:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            return jsonify({"message": "Title cannot be empty"}), 400
        if len(title) > TITLE_MAX_LENGTH:
            return jsonify({"message": f"Title must be {TITLE_MAX_LENGTH} characters or less."}), 400
        updates["title"] = title.strip()

    for key, alias in (("description", None), ("duration", None), ("target_audience", "targetAudience")):
        value = data.get(key) or (data.get(alias) if alias else None)
        if isinstance(value, str) and value.strip():
            updates[key] = value

    if "date" in data:
        date = parse_dt(data.get("date"))
        if not date:
            return jsonify({"message": "Invalid date format. Use ISO-8601."}), 400
        updates["date"] = date

    if "status" in data:
        if data["status"] not in VALID_STATUSES:
            return jsonify({"message": f"status must be one of: {', '.join(VALID_STATUSES)}"}), 400
        updates["status"] = data["status"]

    registration_mode = data.get("registration_mode") or data.get("registrationMode")
    if registration_mode:
        if registration_mode not in VALID_REGISTRATION_MODES:
            return jsonify({"message": f"registrationMode must be one of: {', '.join(VALID_REGISTRATION_MODES)}"}), 400
        updates["registration_mode"] = registration_mode

    # --- MODE / LOCATION LOGIC ---
    mode = data.get("mode")
    if mode:
        if mode not in VALID_MODES:
            return jsonify({"message": 'Mode must be either "online" or "offline"'}), 400
        meeting_link = data.get("meeting_link") or data.get("meetingLink")
        location = data.get("location")
        location_error = check_location(mode, meeting_link, location)
        if location_error:
            return jsonify({"message": location_error}), 400
        updates["mode"] = mode
        updates["meeting_link"] = meeting_link.strip() if mode == "online" else None
        updates["location"] = location.strip() if mode == "offline" else None

    if not updates:
        return jsonify({"message": "No valid fields to update"}), 400

    set_clause = ", ".join(f"{k} = %s" for k in updates)
    set_clause += ", updated_at = CURRENT_TIMESTAMP"
    values = list(updates.values()) + [workshop_id]

    sql = f"UPDATE workshops SET {set_clause} WHERE workshop_id = %s RETURNING {WORKSHOP_RETURNING};"

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, values)
                workshop = cur.fetchone()
                conn.commit()
    except Exception as e:
        logging.error(f"[Workshops] Database error updating workshop {workshop_id}: {e}")
        return jsonify({"message": "Server error"}), 500

    return jsonify(serialize(workshop)), 200


@workshops_bp.route("/<int:workshop_id>", methods=["DELETE"])
def delete_workshop(workshop_id: int) -> Tuple[Response, int]:
    """
    Delete a workshop if the caller is its organizer. RSVPs cascade.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT organizer_id FROM workshops WHERE workshop_id = %s;", (workshop_id,))
                workshop = cur.fetchone()
                if not workshop:
                    return jsonify({"message": "Workshop not found"}), 404

                if workshop["organizer_id"] != user_id:
                    return jsonify({"message": "Not authorized to delete this workshop"}), 403

                cur.execute("DELETE FROM workshops WHERE workshop_id = %s;", (workshop_id,))
                conn.commit()
    except Exception as e:
        logging.error(f"[Workshops] Database error deleting workshop {workshop_id}: {e}")
        return jsonify({"message": "Server error"}), 500

    return jsonify({"message": "Workshop deleted successfully"}), 200


# --- REGISTRATION FLOW ---

@workshops_bp.route("/<int:workshop_id>/register", methods=["POST"])
def register(workshop_id: int) -> Tuple[Response, int]:
    """
    Register the current student for a workshop.

    Accepts {"email": ...} or {"registeredEmail": ...}.

    Returns:
        200: {"redirect": url} | {"link": url, "message": ...} | {"status": "ok", "message": ...}
        400: Bad email, or workshop not online/upcoming.
        403: Not a student.
        404: Workshop not found.
        409: Already registered.
        500: Server error.
    """
    user_id, role, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = request.get_json() or {}
    email = data.get("registeredEmail") or data.get("email")

    try:
        result = registration_flow().register(workshop_id, user_id, role, email)
    except DomainError as e:
        return jsonify({"message": e.message}), e.status_code
    except Exception as e:
        logging.error(f"[Workshops] Error registering user {user_id} for workshop {workshop_id}: {e}")
        return jsonify({"message": "Error registering for workshop"}), 500

    if result.kind == "redirect":
        return jsonify({"redirect": result.link}), 200
    if result.kind == "link":
        return jsonify({"link": result.link, "message": result.message}), 200
    return jsonify({"status": "ok", "message": result.message}), 200


@workshops_bp.route("/join/<token>", methods=["GET"])
def join(token: str):
    """
    Redeem an emailed join token.

    Links opened from an email are redirected straight to the meeting.
    The frontend asks for JSON instead (?format=json or an
    Accept: application/json header) and gets {"meetingLink": url}.
    """
    try:
        meeting_link = registration_flow().redeem(token)
    except InvalidLinkError as e:
        return jsonify({"error": e.message}), e.status_code
    except Exception as e:
        logging.error(f"[Workshops] Error validating join token: {e}")
        return jsonify({"error": InvalidLinkError.default_message}), 500

    wants_json = (
        request.args.get("format") == "json"
        or "application/json" in request.headers.get("Accept", "")
    )
    if wants_json:
        return jsonify({"meetingLink": meeting_link}), 200
    return redirect(meeting_link)


@workshops_bp.route("/student/<int:student_id>/registrations", methods=["GET"])
def student_registrations(student_id: int) -> Tuple[Response, int]:
    """
    Active registrations of a student; only the student may list them.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        rows = registration_flow().list_registrations(student_id, user_id)
    except DomainError as e:
        return jsonify({"message": e.message}), e.status_code
    except Exception as e:
        logging.error(f"[Workshops] Error fetching registrations for {student_id}: {e}")
        return jsonify({"message": "Error fetching registrations"}), 500

    return jsonify([serialize(r) for r in rows]), 200


@workshops_bp.route("/<int:workshop_id>/cancel", methods=["POST"])
def cancel(workshop_id: int) -> Tuple[Response, int]:
    """
    Cancel the current user's registration for a workshop.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        registration_flow().cancel(workshop_id, user_id)
    except DomainError as e:
        return jsonify({"message": e.message}), e.status_code
    except Exception as e:
        logging.error(f"[Workshops] Error cancelling registration for workshop {workshop_id}: {e}")
        return jsonify({"message": "Error cancelling registration"}), 500

    return jsonify({"message": "Registration cancelled successfully"}), 200
