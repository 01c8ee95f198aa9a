from __future__ import annotations

import logging
import os
from typing import Any, Optional

from flask import Flask, request
from flask_cors import CORS
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

from mentacare.auth import Authenticator, bcrypt
from mentacare.cache import TTLCache
from mentacare.config import AppConfig, configure_logging, load_config
from mentacare.db import DocumentNotFound, Store, StoreError, get_store
from mentacare.errors import ApiError
from mentacare.http import fail, ok
from mentacare.repos import AdminRepo, PatientRepo, SessionRepo, TherapistRepo
from mentacare.routes import (
    build_admins_blueprint,
    build_auth_blueprint,
    build_patients_blueprint,
    build_sessions_blueprint,
    build_therapists_blueprint,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


def _pydantic_message(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = str(first.get("msg") or "is invalid")
    return f"{loc}: {msg}" if loc else msg


def create_app(
    config: Optional[AppConfig] = None,
    *,
    store: Optional[Store] = None,
    cache: Optional[TTLCache] = None,
) -> Flask:
    config = config or load_config()
    app = Flask(__name__)
    app.config["BCRYPT_LOG_ROUNDS"] = config.bcrypt_log_rounds
    bcrypt.init_app(app)
    CORS(
        app,
        resources={rf"{API_PREFIX}/*": {"origins": list(config.cors_origins)}},
        supports_credentials=True,
        methods=["GET", "POST", "PUT", "DELETE"],
    )

    @app.errorhandler(ApiError)
    def _handle_api_error(exc: ApiError) -> Any:
        return fail(exc.message, exc.status, **exc.extra)

    @app.errorhandler(PydanticValidationError)
    def _handle_invalid_payload(exc: PydanticValidationError) -> Any:
        return fail(_pydantic_message(exc), 400)

    @app.errorhandler(DocumentNotFound)
    def _handle_missing_document(exc: DocumentNotFound) -> Any:
        return fail("Resource not found", 404, str(exc))

    @app.errorhandler(StoreError)
    def _handle_store_error(exc: StoreError) -> Any:
        logger.error("store error on %s %s: %s", request.method, request.path, exc)
        return fail("Server Error", 500, str(exc))

    @app.errorhandler(HTTPException)
    def _handle_http_error(exc: HTTPException) -> Any:
        return fail(exc.name, exc.code or 500, exc.description)

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception) -> Any:
        logger.exception("unhandled error on %s %s", request.method, request.path)
        return fail("Server Error", 500, str(exc))

    store = store if store is not None else get_store(config)
    cache = cache if cache is not None else TTLCache(max_entries=config.cache_max_entries)

    admin_repo = AdminRepo(store)
    auth = Authenticator(config, admin_repo)

    app.register_blueprint(build_auth_blueprint(auth))
    app.register_blueprint(build_admins_blueprint(admin_repo, auth))
    app.register_blueprint(build_patients_blueprint(PatientRepo(store), cache, auth))
    app.register_blueprint(build_therapists_blueprint(TherapistRepo(store), cache, auth))
    app.register_blueprint(build_sessions_blueprint(SessionRepo(store), auth))

    app.extensions["mentacare"] = {"store": store, "cache": cache, "auth": auth}

    @app.route("/", methods=["GET"])
    def banner() -> Any:
        return "MentaCare admin API is running...", 200, {"Content-Type": "text/plain; charset=utf-8"}

    @app.route(f"{API_PREFIX}/health", methods=["GET"])
    def health() -> Any:
        check = request.args.get("check", "").strip().lower()
        if check in {"db", "store"}:
            try:
                store.ping()
            except StoreError as exc:
                return fail("Store is unavailable", 500, str(exc))
            return ok({"status": "ok", "store": "ok"})
        return ok({"status": "ok"})

    return app


if __name__ == "__main__":
    cfg = load_config()
    configure_logging(cfg.log_level)
    app = create_app(cfg)
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=cfg.is_development)
