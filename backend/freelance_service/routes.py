"""
Freelance "show & tell" routes: students share projects they built.

Every endpoint is student-only. Entries can be posted anonymously, in
which case the author is shown as "Anonymous" to everyone.
"""

import logging
from datetime import datetime
from typing import Tuple, Dict, Any, List, Optional

from flask import Blueprint, request, jsonify, Response

from backend.auth_service.utils import verify_token_from_request
from backend.database.db_connection import get_db

freelance_bp = Blueprint("freelance", __name__)

SUMMARY_MAX_LENGTH = 200
TITLE_MAX_LENGTH = 200
VALID_ROLES = ["Developer", "Designer", "PM", "Other"]
REQUIRED_FIELDS = ["title", "short_summary", "role", "problem_solved", "implementation_details"]
TEXT_FIELDS = ["title", "short_summary", "role", "problem_solved", "implementation_details",
               "github_link", "demo_link", "figma_link"]
LIST_FIELDS = ["technologies", "attachments"]
UPDATABLE_FIELDS = TEXT_FIELDS + LIST_FIELDS + ["is_anonymous"]

STUDENT_ONLY_MESSAGE = "Access denied. This feature is only available to students."

ENTRY_SQL = """
    SELECT f.entry_id, f.student_id, f.title, f.short_summary, f.role, f.technologies,
           f.problem_solved, f.implementation_details, f.github_link, f.demo_link,
           f.figma_link, f.attachments, f.is_anonymous, f.created_at, f.updated_at,
           u.name AS student_name, u.email AS student_email
    FROM freelance_entries f
    LEFT JOIN users u ON u.user_id = f.student_id AND u.role = 'student'
"""


def require_student() -> Tuple[Optional[int], Optional[Response], Optional[int]]:
    user_id, role, err, code = verify_token_from_request()
    if err:
        return None, err, code
    if role != "student":
        return None, jsonify({"message": STUDENT_ONLY_MESSAGE}), 403
    return user_id, None, None


def clean_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item and str(item).strip()]


def format_entry(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shape an entry for the API, hiding the author of anonymous entries.
    """
    entry = dict(row)
    for key in ("created_at", "updated_at"):
        if isinstance(entry.get(key), datetime):
            entry[key] = entry[key].isoformat()

    name = entry.pop("student_name", None)
    email = entry.pop("student_email", None)
    if entry.get("is_anonymous"):
        entry["student"] = {"name": "Anonymous", "email": ""}
    else:
        entry["student"] = {"name": name or "Unknown Student", "email": email or ""}
    entry.pop("student_id", None)
    entry.pop("is_anonymous", None)
    return entry


def _fetch_entry(cur, entry_id: int) -> Optional[Dict[str, Any]]:
    cur.execute(ENTRY_SQL + " WHERE f.entry_id = %s;", (entry_id,))
    row = cur.fetchone()
    return dict(row) if row else None


@freelance_bp.route("/", methods=["POST"])
def create_entry() -> Tuple[Response, int]:
    """
    Create a freelance entry for the current student.

    Returns:
        201: {"message": ..., "entry": {...}}
        400: Missing fields, summary too long, or invalid role.
        403: Not a student.
        500: Database error.
    """
    user_id, err, code = require_student()
    if err:
        return err, code

    data: Dict[str, Any] = request.get_json() or {}

    if not all(isinstance(data.get(f), str) and data.get(f).strip() for f in REQUIRED_FIELDS):
        return jsonify({
            "message": f"Missing required fields: {', '.join(REQUIRED_FIELDS)}"
        }), 400

    if len(data["title"].strip()) > TITLE_MAX_LENGTH:
        return jsonify({"message": f"Title must be {TITLE_MAX_LENGTH} characters or less"}), 400

    if len(data["short_summary"].strip()) > SUMMARY_MAX_LENGTH:
        return jsonify({"message": f"Short summary must be {SUMMARY_MAX_LENGTH} characters or less"}), 400

    if data["role"] not in VALID_ROLES:
        return jsonify({"message": f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}"}), 400

    values = {f: (data.get(f) or "").strip() for f in TEXT_FIELDS}
    values["technologies"] = clean_list(data.get("technologies"))
    values["attachments"] = clean_list(data.get("attachments"))
    values["is_anonymous"] = data.get("is_anonymous") is True

    columns = ["student_id"] + list(values)
    sql = f"""
        INSERT INTO freelance_entries ({', '.join(columns)})
        VALUES ({', '.join(['%s'] * len(columns))})
        RETURNING entry_id;
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, [user_id] + list(values.values()))
                entry_id = cur.fetchone()["entry_id"]
                entry = _fetch_entry(cur, entry_id)
                conn.commit()
    except Exception as e:
        logging.error(f"[Freelance] Error creating entry for {user_id}: {e}")
        return jsonify({"message": "Error creating freelance entry"}), 500

    return jsonify({
        "message": "Freelance entry created successfully",
        "entry": format_entry(entry)
    }), 201


@freelance_bp.route("/", methods=["GET"])
def list_entries() -> Tuple[Response, int]:
    """
    All entries, newest first.
    """
    _, err, code = require_student()
    if err:
        return err, code

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(ENTRY_SQL + " ORDER BY f.created_at DESC;")
                entries = [format_entry(r) for r in cur.fetchall()]
    except Exception as e:
        logging.error(f"[Freelance] Error listing entries: {e}")
        return jsonify({"message": "Error fetching freelance entries"}), 500

    return jsonify({"count": len(entries), "entries": entries}), 200


@freelance_bp.route("/<int:entry_id>", methods=["GET"])
def get_entry(entry_id: int) -> Tuple[Response, int]:
    _, err, code = require_student()
    if err:
        return err, code

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                entry = _fetch_entry(cur, entry_id)
    except Exception as e:
        logging.error(f"[Freelance] Error fetching entry {entry_id}: {e}")
        return jsonify({"message": "Error fetching freelance entry"}), 500

    if not entry:
        return jsonify({"message": "Freelance entry not found"}), 404

    return jsonify(format_entry(entry)), 200


@freelance_bp.route("/<int:entry_id>", methods=["PUT"])
def update_entry(entry_id: int) -> Tuple[Response, int]:
    """
    Update an entry. Only its author may do so.

    Returns:
        200: {"message": ..., "entry": {...}}
        400: Summary too long, invalid role, or nothing to update.
        403: Not a student, or not the author.
        404: Entry not found.
    """
    user_id, err, code = require_student()
    if err:
        return err, code

    data: Dict[str, Any] = request.get_json() or {}

    if isinstance(data.get("short_summary"), str) and len(data["short_summary"].strip()) > SUMMARY_MAX_LENGTH:
        return jsonify({"message": f"Short summary must be {SUMMARY_MAX_LENGTH} characters or less"}), 400
    if "role" in data and data["role"] not in VALID_ROLES:
        return jsonify({"message": f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}"}), 400

    updates: Dict[str, Any] = {}
    for field in UPDATABLE_FIELDS:
        if field not in data or data[field] is None:
            continue
        value = data[field]
        if field in LIST_FIELDS:
            updates[field] = clean_list(value)
        elif field == "is_anonymous":
            updates[field] = value is True
        elif isinstance(value, str):
            updates[field] = value.strip()

    for field in REQUIRED_FIELDS:
        if field in updates and not updates[field]:
            return jsonify({"message": f"{field} cannot be empty"}), 400

    if not updates:
        return jsonify({"message": "No valid fields to update"}), 400

    set_clause = ", ".join(f"{k} = %s" for k in updates) + ", updated_at = CURRENT_TIMESTAMP"

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT student_id FROM freelance_entries WHERE entry_id = %s;", (entry_id,))
                owner = cur.fetchone()
                if not owner:
                    return jsonify({"message": "Freelance entry not found"}), 404
                if owner["student_id"] != user_id:
                    return jsonify({"message": "You can only update your own entries"}), 403

                cur.execute(
                    f"UPDATE freelance_entries SET {set_clause} WHERE entry_id = %s;",
                    list(updates.values()) + [entry_id],
                )
                entry = _fetch_entry(cur, entry_id)
                conn.commit()
    except Exception as e:
        logging.error(f"[Freelance] Error updating entry {entry_id}: {e}")
        return jsonify({"message": "Error updating freelance entry"}), 500

    return jsonify({
        "message": "Freelance entry updated successfully",
        "entry": format_entry(entry)
    }), 200


@freelance_bp.route("/<int:entry_id>", methods=["DELETE"])
def delete_entry(entry_id: int) -> Tuple[Response, int]:
    user_id, err, code = require_student()
    if err:
        return err, code

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT student_id FROM freelance_entries WHERE entry_id = %s;", (entry_id,))
                owner = cur.fetchone()
                if not owner:
                    return jsonify({"message": "Freelance entry not found"}), 404
                if owner["student_id"] != user_id:
                    return jsonify({"message": "You can only delete your own entries"}), 403

                cur.execute("DELETE FROM freelance_entries WHERE entry_id = %s;", (entry_id,))
                conn.commit()
    except Exception as e:
        logging.error(f"[Freelance] Error deleting entry {entry_id}: {e}")
        return jsonify({"message": "Error deleting freelance entry"}), 500

    return jsonify({"message": "Freelance entry deleted successfully"}), 200
