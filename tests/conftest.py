from __future__ import annotations

import itertools
import uuid
from typing import Any, Callable, Dict

import pytest

from mentacare.api import create_app
from mentacare.auth import Authenticator, hash_password
from mentacare.cache import TTLCache
from mentacare.config import AppConfig
from mentacare.db import MemoryStore
from mentacare.models import COL_USERS, ROLE_PATIENT, ROLE_PROFESSIONAL, AdminCreate
from mentacare.repos import AdminRepo

ADMIN_PASSWORD = "secret123"


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        env="development",
        store_backend="memory",
        bcrypt_log_rounds=4,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(max_entries=256, clock=clock)


@pytest.fixture
def app(config: AppConfig, store: MemoryStore, cache: TTLCache):
    app = create_app(config, store=store, cache=cache)
    app.testing = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_admin(app, store: MemoryStore) -> Callable[..., Any]:
    def _make(role: str = "super_admin", email: str = "", password: str = ADMIN_PASSWORD):
        payload = AdminCreate(
            name=f"{role} user",
            email=email or f"{role}-{uuid.uuid4().hex[:6]}@example.com",
            password=password,
            role=role,
        )
        return AdminRepo(store).create(payload, hash_password(password))

    return _make


@pytest.fixture
def login(client, config: AppConfig, store: MemoryStore, make_admin) -> Callable[..., Any]:
    """Create an admin with `role` and put a valid access cookie on the test client."""

    def _login(role: str = "super_admin"):
        admin = make_admin(role)
        token = Authenticator(config, AdminRepo(store)).access_token(admin)
        client.set_cookie("jwt", token)
        return admin

    return _login


@pytest.fixture
def make_patient(store: MemoryStore) -> Callable[..., Dict[str, Any]]:
    counter = itertools.count(1)

    def _make(**fields: Any) -> Dict[str, Any]:
        n = next(counter)
        stamp = f"2024-01-01T00:{n // 60:02d}:{n % 60:02d}.000Z"
        values = {
            "name": f"Patient {n}",
            "email": f"patient{n}@example.com",
            "age": 30,
            "gender": "Female",
            "role": ROLE_PATIENT,
            "isProfileComplete": True,
            "flags": [],
            "documents": [],
            "assignedTherapist": None,
            "createdAt": stamp,
            "updatedAt": stamp,
        }
        values.update(fields)
        return store.collection(COL_USERS).insert(values)

    return _make


@pytest.fixture
def make_therapist(store: MemoryStore) -> Callable[..., Dict[str, Any]]:
    counter = itertools.count(1)

    def _make(**fields: Any) -> Dict[str, Any]:
        n = next(counter)
        stamp = f"2024-02-01T00:{n // 60:02d}:{n % 60:02d}.000Z"
        values = {
            "uid": f"therapist_{n}",
            "name": f"Dr. Therapist {n}",
            "email": f"therapist{n}@example.com",
            "title": "Psychologist",
            "specialization": "CBT",
            "bio": "",
            "experience": 5,
            "role": ROLE_PROFESSIONAL,
            "isVerified": True,
            "isProfileComplete": True,
            "createdAt": stamp,
            "updatedAt": stamp,
        }
        values.update(fields)
        return store.collection(COL_USERS).insert(values)

    return _make
