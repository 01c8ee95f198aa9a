"""
Seed the default admin accounts and, with --demo, a small demo practice.

Safe to run multiple times: records whose email already exists are skipped.
"""

from __future__ import annotations

import argparse
import os
from datetime import timedelta
from typing import Any, Dict, List, Optional

from mentacare.auth import hash_password
from mentacare.config import configure_logging, load_config
from mentacare.db import Store, get_store
from mentacare.models import (
    COL_USERS,
    ROLE_PATIENT,
    ROLE_PROFESSIONAL,
    AdminCreate,
    PatientCreate,
    SessionCreate,
    TherapistCreate,
    utcnow,
)
from mentacare.repos import AdminRepo, PatientRepo, SessionRepo, TherapistRepo

DEFAULT_ADMINS: List[Dict[str, Any]] = [
    {
        "name": "Super Admin",
        "email": "superadmin@example.com",
        "password_env": "SEED_SUPER_ADMIN_PASSWORD",
        "password": "superadmin123",
        "role": "super_admin",
        "permissions": ["manage_all"],
    },
    {
        "name": "Regular Admin",
        "email": "admin@example.com",
        "password_env": "SEED_ADMIN_PASSWORD",
        "password": "admin123",
        "role": "admin",
        "permissions": ["manage_patients", "manage_therapists", "manage_sessions"],
    },
]

DEMO_THERAPISTS: List[Dict[str, Any]] = [
    {
        "name": "Dr. Alice Smith",
        "email": "alice.smith@example.com",
        "title": "Clinical Psychologist",
        "specialization": "Cognitive Behavioral Therapy",
        "bio": "Works with adults on anxiety and mood disorders.",
        "experience": 8,
    },
    {
        "name": "Dr. Bob Johnson",
        "email": "bob.johnson@example.com",
        "title": "Licensed Family Therapist",
        "specialization": "Family Therapy",
        "bio": "Focuses on family systems and adolescent care.",
        "experience": 4,
    },
]

DEMO_PATIENTS: List[Dict[str, Any]] = [
    {"name": "John Doe", "email": "john.doe@example.com", "age": 34, "gender": "Male", "concerns": "Anxiety"},
    {"name": "Jane Roe", "email": "jane.roe@example.com", "age": 27, "gender": "Female", "concerns": "Sleep issues"},
    {"name": "Sam Lee", "email": "sam.lee@example.com", "age": 16, "gender": "Non-binary", "concerns": "School stress"},
]


def _user_id_by_email(db: Store, email: str, role: str) -> Optional[str]:
    rows = db.collection(COL_USERS).select(filters={"email": email, "role": role}, columns=["email"], limit=1)
    return rows[0]["id"] if rows else None


def seed_admins(db: Store) -> int:
    repo = AdminRepo(db)
    created = 0
    for entry in DEFAULT_ADMINS:
        if repo.get_by_email(entry["email"]):
            continue
        password = os.getenv(entry["password_env"]) or entry["password"]
        payload = AdminCreate(
            name=entry["name"],
            email=entry["email"],
            password=password,
            role=entry["role"],
            permissions=entry["permissions"],
        )
        repo.create(payload, hash_password(password))
        created += 1
    return created


def seed_demo(db: Store) -> Dict[str, int]:
    therapists = TherapistRepo(db)
    patients = PatientRepo(db)
    sessions = SessionRepo(db)
    counts = {"therapists": 0, "patients": 0, "sessions": 0}

    therapist_ids: List[str] = []
    for entry in DEMO_THERAPISTS:
        existing = _user_id_by_email(db, entry["email"], ROLE_PROFESSIONAL)
        if existing:
            therapist_ids.append(existing)
            continue
        therapist_ids.append(therapists.create(TherapistCreate.model_validate(entry))["id"])
        counts["therapists"] += 1

    new_patient_ids: List[str] = []
    for entry in DEMO_PATIENTS:
        if _user_id_by_email(db, entry["email"], ROLE_PATIENT):
            continue
        new_patient_ids.append(patients.create(PatientCreate.model_validate(entry))["id"])
        counts["patients"] += 1

    if new_patient_ids:
        # First therapist takes every other new patient, the second the rest.
        therapists.assign_patients(therapist_ids[0], new_patient_ids[::2])
        if len(therapist_ids) > 1 and new_patient_ids[1::2]:
            therapists.assign_patients(therapist_ids[1], new_patient_ids[1::2])

        start = utcnow().replace(minute=0, second=0, microsecond=0) + timedelta(days=1)
        for i, patient_id in enumerate(new_patient_ids):
            sessions.create(
                SessionCreate(
                    patient=patient_id,
                    therapist=therapist_ids[i % len(therapist_ids)],
                    scheduled_for=start + timedelta(days=i),
                    duration=50,
                    notes="Intake session",
                )
            )
            counts["sessions"] += 1
    return counts


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Seed MentaCare admin accounts (idempotent).")
    parser.add_argument("--demo", action="store_true", help="Also seed demo therapists, patients and sessions.")
    args = parser.parse_args(argv)

    config = load_config()
    configure_logging(config.log_level)
    db = get_store(config)

    created = seed_admins(db)
    print(f"Admins seeded: created={created}")
    if args.demo:
        counts = seed_demo(db)
        print(
            "Demo data seeded: "
            f"therapists={counts['therapists']} patients={counts['patients']} sessions={counts['sessions']}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
