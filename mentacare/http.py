from __future__ import annotations

from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from flask import jsonify, request

from mentacare.errors import ValidationError


def ok(data: Any = None, status: int = 200, message: Optional[str] = None) -> Any:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def fail(message: str, status: int, error: Optional[str] = None, **extra: Any) -> Any:
    body: Dict[str, Any] = {"success": False, "message": message}
    if error:
        body["error"] = error
    body.update(extra)
    return jsonify(body), status


def json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def query_params() -> Dict[str, str]:
    return {key: value for key, value in request.args.items()}


def bracket_params(params: Mapping[str, str], prefix: str) -> Dict[str, str]:
    """Collect `prefix[key]=value` query parameters into `{key: value}`."""
    out: Dict[str, str] = {}
    opener = f"{prefix}["
    for key, value in params.items():
        if key.startswith(opener) and key.endswith("]"):
            name = key[len(opener) : -1]
            if name:
                out[name] = value
    return out


def cache_key(prefix: str, params: Mapping[str, Any]) -> str:
    # Every parameter takes part, so each page has its own entry.
    return f"{prefix}:{urlencode(sorted((str(k), str(v)) for k, v in params.items()))}"
