from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, g

from mentacare.auth import Authenticator
from mentacare.http import json_body, ok
from mentacare.models import Admin


def _identity(admin: Admin) -> Dict[str, Any]:
    return {
        "_id": admin.id,
        "name": admin.name,
        "email": admin.email,
        "role": admin.role,
        "permissions": list(admin.permissions),
    }


def build_auth_blueprint(auth: Authenticator) -> Blueprint:
    bp = Blueprint("auth", __name__, url_prefix="/api/auth")

    @bp.route("/login", methods=["POST"])
    def login() -> Any:
        body = json_body()
        admin = auth.login(body.get("email"), body.get("password"))
        response, status = ok(_identity(admin), message="Logged in successfully")
        auth.issue_cookies(response, admin)
        return response, status

    @bp.route("/logout", methods=["POST"])
    @auth.require()
    def logout() -> Any:
        response, status = ok(None, message="Logged out successfully")
        auth.clear_cookies(response)
        return response, status

    @bp.route("/refresh", methods=["POST"])
    def refresh() -> Any:
        admin = auth.from_refresh_cookie()
        response, status = ok(None, message="Access token refreshed")
        auth.set_access_cookie(response, admin)
        return response, status

    @bp.route("/me", methods=["GET"])
    @auth.require()
    def me() -> Any:
        return ok(_identity(g.admin))

    return bp
