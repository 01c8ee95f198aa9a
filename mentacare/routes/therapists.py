from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint

from mentacare.auth import Authenticator
from mentacare.cache import TTLCache
from mentacare.config import TTL_DETAIL, TTL_LIST, TTL_SPECIALIZATIONS, TTL_SUMMARY
from mentacare.http import cache_key, json_body, ok, query_params
from mentacare.models import TherapistCreate, TherapistUpdate
from mentacare.repos import TherapistRepo

logger = logging.getLogger(__name__)

MANAGERS = ("admin", "super_admin")


def build_therapists_blueprint(repo: TherapistRepo, cache: TTLCache, auth: Authenticator) -> Blueprint:
    bp = Blueprint("therapists", __name__, url_prefix="/api/therapists")

    def _invalidate() -> None:
        # Therapist data is denormalized into patient records and counts; drop everything.
        cache.clear()

    @bp.route("", methods=["GET"])
    @auth.require(*MANAGERS)
    def list_therapists() -> Any:
        params = query_params()
        return ok(cache.get_or_fetch(cache_key("therapists_list", params), lambda: repo.list(params), TTL_LIST))

    @bp.route("", methods=["POST"])
    @auth.require(*MANAGERS)
    def create_therapist() -> Any:
        therapist = repo.create(TherapistCreate.model_validate(json_body()))
        _invalidate()
        return ok(therapist, 201, "Therapist created successfully")

    @bp.route("/summary", methods=["GET"])
    @auth.require(*MANAGERS)
    def summary() -> Any:
        return ok(cache.get_or_fetch("therapists_summary", repo.summary, TTL_SUMMARY))

    @bp.route("/specializations", methods=["GET"])
    @auth.require(*MANAGERS)
    def specializations() -> Any:
        return ok(cache.get_or_fetch("therapists_specializations", repo.specializations, TTL_SPECIALIZATIONS))

    @bp.route("/batch-update", methods=["PUT"])
    @auth.require(*MANAGERS)
    def batch_update() -> Any:
        body = json_body()
        updated = repo.batch_update(body.get("therapistIds"), body.get("updateData"))
        _invalidate()
        return ok({"updatedCount": updated}, message=f"{updated} therapists updated successfully")

    @bp.route("/<therapist_id>", methods=["GET"])
    @auth.require(*MANAGERS)
    def get_therapist(therapist_id: str) -> Any:
        return ok(cache.get_or_fetch(f"therapist_{therapist_id}", lambda: repo.get(therapist_id), TTL_DETAIL))

    @bp.route("/<therapist_id>", methods=["PUT"])
    @auth.require(*MANAGERS)
    def update_therapist(therapist_id: str) -> Any:
        therapist = repo.update(therapist_id, TherapistUpdate.model_validate(json_body()))
        _invalidate()
        return ok(therapist, message="Therapist updated successfully")

    @bp.route("/<therapist_id>", methods=["DELETE"])
    @auth.require(*MANAGERS)
    def delete_therapist(therapist_id: str) -> Any:
        repo.delete(therapist_id)
        _invalidate()
        logger.info("therapist %s deleted", therapist_id)
        return ok(None, message="Therapist deleted successfully")

    @bp.route("/<therapist_id>/assign-patients", methods=["PUT"])
    @auth.require(*MANAGERS)
    def assign_patients(therapist_id: str) -> Any:
        assigned = repo.assign_patients(therapist_id, json_body().get("patientIds"))
        _invalidate()
        return ok({"assignedCount": assigned}, message="Patients assigned successfully")

    @bp.route("/<therapist_id>/availability", methods=["PUT"])
    @auth.require(*MANAGERS)
    def update_availability(therapist_id: str) -> Any:
        repo.update_availability(therapist_id, json_body().get("availability"))
        _invalidate()
        return ok(None, message="Availability updated successfully")

    return bp
