"""
Jobs service routes: alumni post opportunities, students apply.

Two blueprints share this module:
- jobs_bp           mounted at /jobs
- applications_bp   mounted at /job-applications
"""

import logging
from datetime import datetime
from typing import Tuple, Dict, Any

import psycopg2.errors
from flask import Blueprint, request, jsonify, Response

from backend.auth_service.utils import verify_token_from_request
from backend.database.db_connection import get_db

jobs_bp = Blueprint("jobs", __name__)
applications_bp = Blueprint("job_applications", __name__)

VALID_JOB_TYPES = ["full-time", "part-time", "internship", "contract", "freelance"]


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


def _iso(row: Dict[str, Any]) -> Dict[str, Any]:
    item = dict(row)
    if isinstance(item.get("created_at"), datetime):
        item["created_at"] = item["created_at"].isoformat()
    return item


@jobs_bp.route("/", methods=["GET"])
def list_jobs() -> Tuple[Response, int]:
    """
    All job postings, newest first, with the poster's name.
    """
    _, _, err, code = verify_token_from_request()
    if err:
        return err, code

    sql = """
        SELECT j.job_id, j.title, j.company, j.location, j.job_type, j.description,
               j.apply_link, j.posted_by, j.created_at, u.name AS posted_by_name
        FROM jobs j
        LEFT JOIN users u ON u.user_id = j.posted_by
        ORDER BY j.created_at DESC;
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql)
                jobs = [_iso(r) for r in cur.fetchall()]
    except Exception as e:
        logging.error(f"[Jobs] Database error listing jobs: {e}")
        return jsonify({"message": "Failed to retrieve jobs"}), 500

    return jsonify(jobs), 200


@jobs_bp.route("/", methods=["POST"])
def create_job() -> Tuple[Response, int]:
    """
    Alumni-only: post a job.

    Returns:
        201: {"job_id": int}
        400: Missing fields or invalid job_type.
        401/403: Authentication / role failure.
    """
    user_id, _, err, code = verify_token_from_request(required_roles=["alumni"])
    if err:
        return err, code

    data: Dict[str, Any] = request.get_json() or {}
    title, company, description = (_text(data, f) for f in ("title", "company", "description"))
    job_type = data.get("job_type") or "full-time"

    if not title or not company or not description:
        return jsonify({"message": "title, company and description are required"}), 400
    for optional in ("location", "apply_link"):
        if data.get(optional) is not None and not isinstance(data[optional], str):
            return jsonify({"message": f"{optional} must be a string"}), 400
    if job_type not in VALID_JOB_TYPES:
        return jsonify({"message": f"job_type must be one of: {', '.join(VALID_JOB_TYPES)}"}), 400

    sql = """
        INSERT INTO jobs (title, company, location, job_type, description, apply_link, posted_by)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING job_id;
    """

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    title, company, data.get("location"), job_type,
                    description, data.get("apply_link"), user_id
                ))
                job = cur.fetchone()
                conn.commit()
    except Exception as e:
        logging.error(f"[Jobs] Database error creating job: {e}")
        return jsonify({"message": "Failed to create job"}), 500

    return jsonify({"job_id": job["job_id"]}), 201


@applications_bp.route("/<int:job_id>/apply", methods=["POST"])
def apply(job_id: int) -> Tuple[Response, int]:
    """
    Student-only: apply to a job once.

    Returns:
        201: {"message": ...}
        403: Not a student.
        404: Job not found.
        409: Already applied.
    """
    user_id, _, err, code = verify_token_from_request(required_roles=["student"])
    if err:
        return err, code

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT job_id FROM jobs WHERE job_id = %s;", (job_id,))
                if not cur.fetchone():
                    return jsonify({"message": "Job not found"}), 404

                cur.execute(
                    "INSERT INTO job_applications (job_id, user_id) VALUES (%s, %s);",
                    (job_id, user_id),
                )
                conn.commit()
    except psycopg2.errors.UniqueViolation:
        return jsonify({"message": "You have already applied for this job"}), 409
    except Exception as e:
        logging.error(f"[Jobs] Database error applying to job {job_id}: {e}")
        return jsonify({"message": "Failed to submit application"}), 500

    return jsonify({"message": "Application submitted successfully"}), 201


@applications_bp.route("/<int:job_id>/check-application", methods=["GET"])
def check_application(job_id: int) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT status FROM job_applications WHERE job_id = %s AND user_id = %s;",
                    (job_id, user_id),
                )
                application = cur.fetchone()
    except Exception as e:
        logging.error(f"[Jobs] Database error checking application for job {job_id}: {e}")
        return jsonify({"message": "Failed to check application"}), 500

    return jsonify({
        "applied": application is not None,
        "status": application["status"] if application else None
    }), 200
