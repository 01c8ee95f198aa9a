from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint

from mentacare.auth import Authenticator, hash_password
from mentacare.http import json_body, ok
from mentacare.models import AdminCreate, AdminUpdate
from mentacare.repos import AdminRepo, admin_to_api

logger = logging.getLogger(__name__)

READERS = ("super_admin", "admin")


def build_admins_blueprint(repo: AdminRepo, auth: Authenticator) -> Blueprint:
    bp = Blueprint("admins", __name__, url_prefix="/api/admins")

    @bp.route("", methods=["POST"])
    @auth.require("super_admin")
    def register_admin() -> Any:
        payload = AdminCreate.model_validate(json_body())
        admin = repo.create(payload, hash_password(payload.password))
        logger.info("admin %s registered with role %s", admin.email, admin.role)
        return ok(admin_to_api(admin), 201, "Admin registered successfully")

    @bp.route("", methods=["GET"])
    @auth.require(*READERS)
    def list_admins() -> Any:
        return ok([admin_to_api(admin) for admin in repo.list()])

    @bp.route("/<admin_id>", methods=["GET"])
    @auth.require(*READERS)
    def get_admin(admin_id: str) -> Any:
        return ok(admin_to_api(repo.require(admin_id)))

    @bp.route("/<admin_id>", methods=["PUT"])
    @auth.require(*READERS)
    def update_admin(admin_id: str) -> Any:
        payload = AdminUpdate.model_validate(json_body())
        password_hash = hash_password(payload.password) if payload.password else None
        return ok(admin_to_api(repo.update(admin_id, payload, password_hash)), message="Admin updated successfully")

    @bp.route("/<admin_id>", methods=["DELETE"])
    @auth.require("super_admin")
    def delete_admin(admin_id: str) -> Any:
        repo.delete(admin_id)
        logger.info("admin %s removed", admin_id)
        return ok(None, message="Admin removed")

    return bp
