from __future__ import annotations

import base64
import functools
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from flask import Response, g, request
from flask_bcrypt import Bcrypt

from mentacare.config import AppConfig
from mentacare.errors import AuthError, ForbiddenError
from mentacare.models import Admin
from mentacare.repos import AdminRepo

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "jwt"
REFRESH_COOKIE = "refreshToken"
TOKEN_ACCESS = "access"
TOKEN_REFRESH = "refresh"

bcrypt = Bcrypt()


def hash_password(password: str) -> str:
    return bcrypt.generate_password_hash(password).decode("utf-8")


def check_password(password_hash: str, password: str) -> bool:
    if not password_hash or not password:
        return False
    try:
        return bcrypt.check_password_hash(password_hash, password)
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("utf-8"))


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _sign(signing_input: bytes, secret: str) -> str:
    return _b64url_encode(hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest())


def sign_token(claims: Dict[str, Any], secret: str, ttl_s: int, *, now: Optional[int] = None) -> str:
    issued = int(time.time()) if now is None else now
    header = {"alg": "HS256", "typ": "JWT"}
    payload = {**claims, "iat": issued, "exp": issued + int(ttl_s)}
    head = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    body = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{head}.{body}.{_sign(f'{head}.{body}'.encode('utf-8'), secret)}"


def verify_token(token: str, secret: str, expected_type: Optional[str] = None) -> Dict[str, Any]:
    parts = token.split(".")
    if len(parts) != 3:
        raise AuthError("Malformed JWT")

    try:
        header_raw = _b64url_decode(parts[0])
        payload_raw = _b64url_decode(parts[1])
    except (ValueError, UnicodeEncodeError) as exc:
        raise AuthError("Invalid JWT encoding") from exc
    try:
        header = json.loads(header_raw.decode("utf-8"))
        payload = json.loads(payload_raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise AuthError("Invalid JWT JSON") from exc
    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise AuthError("Invalid JWT JSON")

    if header.get("alg") != "HS256":
        raise AuthError("Unsupported JWT alg")

    expected_sig = _sign(f"{parts[0]}.{parts[1]}".encode("utf-8"), secret)
    if not hmac.compare_digest(expected_sig, parts[2].rstrip("=")):
        raise AuthError("Invalid JWT signature")

    exp = payload.get("exp")
    if exp is not None:
        try:
            exp_val = int(exp)
        except (TypeError, ValueError):
            raise AuthError("Invalid JWT exp") from None
        if int(time.time()) >= exp_val:
            raise AuthError("JWT expired")

    if expected_type and payload.get("typ") != expected_type:
        raise AuthError("Wrong JWT type")
    return payload


class Authenticator:
    """Issues the session cookies and resolves the calling admin from them."""

    def __init__(self, config: AppConfig, admins: AdminRepo) -> None:
        self.config = config
        self.admins = admins

    def access_token(self, admin: Admin) -> str:
        return sign_token(
            {"id": admin.id, "role": admin.role, "typ": TOKEN_ACCESS},
            self.config.jwt_secret,
            self.config.access_token_ttl_s,
        )

    def refresh_token(self, admin: Admin) -> str:
        return sign_token(
            {"id": admin.id, "typ": TOKEN_REFRESH},
            self.config.jwt_refresh_secret,
            self.config.refresh_token_ttl_s,
        )

    def _set_cookie(self, response: Response, name: str, value: str, max_age: int) -> None:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            httponly=True,
            secure=self.config.secure_cookies,
            samesite="Strict",
        )

    def set_access_cookie(self, response: Response, admin: Admin) -> None:
        self._set_cookie(response, ACCESS_COOKIE, self.access_token(admin), self.config.access_token_ttl_s)

    def issue_cookies(self, response: Response, admin: Admin) -> None:
        self.set_access_cookie(response, admin)
        self._set_cookie(response, REFRESH_COOKIE, self.refresh_token(admin), self.config.refresh_token_ttl_s)

    def clear_cookies(self, response: Response) -> None:
        for name in (ACCESS_COOKIE, REFRESH_COOKIE):
            response.set_cookie(name, "", expires=0, httponly=True, secure=self.config.secure_cookies, samesite="Strict")

    def login(self, email: Any, password: Any) -> Admin:
        if not isinstance(email, str) or not isinstance(password, str) or not email.strip():
            raise AuthError("Invalid email or password")
        admin = self.admins.get_by_email(email.strip())
        if admin is None or not check_password(admin.password, password):
            logger.info("failed login for %s", email.strip())
            raise AuthError("Invalid email or password")
        return admin

    def current_admin(self) -> Admin:
        token = request.cookies.get(ACCESS_COOKIE)
        if not token:
            raise AuthError("Not authorized, no token")
        try:
            claims = verify_token(token, self.config.jwt_secret, TOKEN_ACCESS)
        except AuthError as exc:
            logger.info("rejected access token: %s", exc)
            raise AuthError("Not authorized, token failed") from exc
        admin = self.admins.get(str(claims.get("id") or ""))
        if admin is None:
            raise AuthError("Not authorized, token failed")
        return admin

    def from_refresh_cookie(self) -> Admin:
        token = request.cookies.get(REFRESH_COOKIE)
        if not token:
            raise AuthError("Not authorized, no refresh token")
        try:
            claims = verify_token(token, self.config.jwt_refresh_secret, TOKEN_REFRESH)
        except AuthError as exc:
            logger.info("rejected refresh token: %s", exc)
            raise ForbiddenError("Not authorized, refresh token failed") from exc
        admin = self.admins.get(str(claims.get("id") or ""))
        if admin is None:
            raise ForbiddenError("Not authorized, refresh token failed")
        return admin

    def require(self, *roles: str) -> Callable:
        """
        Route decorator: resolve the admin into `g.admin`, then check the role.
        With no roles any authenticated admin passes.
        """

        def decorator(fn: Callable) -> Callable:
            @functools.wraps(fn)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                admin = self.current_admin()
                if roles and admin.role not in roles:
                    raise ForbiddenError("Not authorized to access this route")
                g.admin = admin
                return fn(*args, **kwargs)

            return wrapper

        return decorator
