from __future__ import annotations

from typing import Any

from flask import Blueprint

from mentacare.auth import Authenticator
from mentacare.http import json_body, ok, query_params
from mentacare.models import SessionCreate, SessionStatusChange, SessionUpdate
from mentacare.repos import SessionRepo

READERS = ("admin", "super_admin", "therapist")
MANAGERS = ("admin", "super_admin")


def build_sessions_blueprint(repo: SessionRepo, auth: Authenticator) -> Blueprint:
    bp = Blueprint("sessions", __name__, url_prefix="/api/sessions")

    @bp.route("", methods=["POST"])
    @auth.require(*MANAGERS)
    def create_session() -> Any:
        return ok(repo.create(SessionCreate.model_validate(json_body())), 201, "Session created successfully")

    @bp.route("", methods=["GET"])
    @auth.require(*READERS)
    def list_sessions() -> Any:
        return ok(repo.list(query_params()))

    @bp.route("/<session_id>", methods=["GET"])
    @auth.require(*READERS)
    def get_session(session_id: str) -> Any:
        return ok(repo.get(session_id))

    @bp.route("/<session_id>", methods=["PUT"])
    @auth.require(*READERS)
    def update_session(session_id: str) -> Any:
        session = repo.update(session_id, SessionUpdate.model_validate(json_body()))
        return ok(session, message="Session updated successfully")

    @bp.route("/<session_id>", methods=["DELETE"])
    @auth.require(*MANAGERS)
    def delete_session(session_id: str) -> Any:
        repo.delete(session_id)
        return ok(None, message="Session removed")

    @bp.route("/<session_id>/notes-attachments", methods=["PUT"])
    @auth.require(*READERS)
    def notes_attachments(session_id: str) -> Any:
        return ok(repo.attach_notes(session_id, json_body()), message="Session notes updated")

    @bp.route("/<session_id>/mark-attendance", methods=["PUT"])
    @auth.require(*READERS)
    def mark_attendance(session_id: str) -> Any:
        return ok(repo.mark_attendance(session_id, json_body().get("attended")), message="Attendance marked")

    @bp.route("/<session_id>/status", methods=["PUT"])
    @auth.require(*READERS)
    def update_status(session_id: str) -> Any:
        session = repo.update_status(session_id, SessionStatusChange.model_validate(json_body()))
        return ok(session, message="Session status updated")

    return bp
