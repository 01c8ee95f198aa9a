from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint

from mentacare.auth import Authenticator
from mentacare.cache import TTLCache
from mentacare.config import TTL_ANALYTICS, TTL_DETAIL, TTL_LIST, TTL_SUMMARY
from mentacare.http import bracket_params, cache_key, json_body, ok, query_params
from mentacare.models import PatientCreate, PatientUpdate
from mentacare.repos import PatientRepo

logger = logging.getLogger(__name__)

READERS = ("admin", "super_admin", "professional")
WRITERS = ("admin", "super_admin")


def build_patients_blueprint(repo: PatientRepo, cache: TTLCache, auth: Authenticator) -> Blueprint:
    bp = Blueprint("patients", __name__, url_prefix="/api/patients")

    def _invalidate(*, assignment: bool = False) -> None:
        cache.invalidate("patient")
        if assignment:
            # Therapist views carry assigned-patient counts.
            cache.invalidate("therapist")

    @bp.route("/summary", methods=["GET"])
    @auth.require(*READERS)
    def summary() -> Any:
        return ok(cache.get_or_fetch("patients_summary", repo.summary, TTL_SUMMARY))

    @bp.route("/analytics", methods=["GET"])
    @auth.require(*WRITERS)
    def analytics() -> Any:
        return ok(cache.get_or_fetch("patients_analytics", repo.analytics, TTL_ANALYTICS))

    @bp.route("/search", methods=["GET"])
    @auth.require(*READERS)
    def search() -> Any:
        params = query_params()
        filters = {**params, **bracket_params(params, "filters")}
        return ok(repo.search(params, filters))

    @bp.route("/batch-update", methods=["PUT"])
    @auth.require(*WRITERS)
    def batch_update() -> Any:
        body = json_body()
        updated = repo.batch_update(body.get("patientIds"), body.get("updateData"))
        _invalidate()
        return ok({"updatedCount": updated}, message=f"{updated} patients updated successfully")

    @bp.route("", methods=["POST"])
    @auth.require(*WRITERS)
    def create_patient() -> Any:
        patient = repo.create(PatientCreate.model_validate(json_body()))
        _invalidate()
        return ok(patient, 201, "Patient created successfully")

    @bp.route("", methods=["GET"])
    @auth.require(*READERS)
    def list_patients() -> Any:
        params = query_params()
        return ok(cache.get_or_fetch(cache_key("patients_list", params), lambda: repo.list(params), TTL_LIST))

    @bp.route("/<patient_id>", methods=["GET"])
    @auth.require(*READERS)
    def get_patient(patient_id: str) -> Any:
        return ok(cache.get_or_fetch(f"patient_{patient_id}", lambda: repo.get(patient_id), TTL_DETAIL))

    @bp.route("/<patient_id>", methods=["PUT"])
    @auth.require(*WRITERS)
    def update_patient(patient_id: str) -> Any:
        payload = PatientUpdate.model_validate(json_body())
        patient = repo.update(patient_id, payload)
        _invalidate(assignment="assigned_therapist" in payload.model_fields_set)
        return ok(patient, message="Patient updated successfully")

    @bp.route("/<patient_id>", methods=["DELETE"])
    @auth.require(*WRITERS)
    def delete_patient(patient_id: str) -> Any:
        repo.delete(patient_id)
        _invalidate(assignment=True)
        logger.info("patient %s deleted", patient_id)
        return ok(None, message="Patient deleted successfully")

    @bp.route("/<patient_id>/assign-therapist", methods=["PUT"])
    @auth.require(*WRITERS)
    def assign_therapist(patient_id: str) -> Any:
        patient = repo.assign_therapist(patient_id, json_body().get("therapistId"))
        _invalidate(assignment=True)
        return ok(patient, message="Therapist assigned successfully")

    @bp.route("/<patient_id>/flag", methods=["PUT"])
    @auth.require(*WRITERS)
    def flag_patient(patient_id: str) -> Any:
        patient = repo.flag(patient_id, json_body().get("flag"))
        _invalidate()
        return ok(patient, message="Patient flagged successfully")

    @bp.route("/<patient_id>/documents", methods=["PUT"])
    @auth.require(*WRITERS)
    def upload_document(patient_id: str) -> Any:
        patient = repo.add_document(patient_id, json_body().get("documentUrl"))
        _invalidate()
        return ok(patient, message="Document uploaded successfully")

    return bp
