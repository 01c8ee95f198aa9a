from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from mentacare.db import BATCH_WRITE_LIMIT, DELETE_FIELD, DOC_ID, Store, Transaction
from mentacare.enrich import attach_projections, count_references, distinct_ids, enrich, fetch_projections
from mentacare.errors import ConflictError, NotFoundError, ValidationError
from mentacare.models import (
    COL_ADMINS,
    COL_SESSIONS,
    COL_USERS,
    DEFAULT_NOTIFICATION_SETTINGS,
    ROLE_PATIENT,
    ROLE_PROFESSIONAL,
    Admin,
    AdminCreate,
    AdminUpdate,
    Patient,
    PatientBatchFields,
    PatientCreate,
    PatientUpdate,
    Session,
    SessionCreate,
    SessionStatusChange,
    SessionUpdate,
    Therapist,
    TherapistBatchFields,
    TherapistCreate,
    TherapistUpdate,
    now_iso,
    to_iso,
    utcnow,
)
from mentacare.pagination import clamp_page_size, fetch_page, offset_for
from mentacare.query import (
    AGE_BUCKETS,
    EXPERIENCE_BUCKETS,
    bucket,
    bucket_label,
    build_filter_spec,
    equals,
    parse_bool,
    substring,
)

logger = logging.getLogger(__name__)

PATIENT_PAGE_SIZE = 10
THERAPIST_PAGE_SIZE = 15
SESSION_PAGE_SIZE = 10
SEARCH_PAGE_SIZE = 20
ASSIGNED_PATIENTS_PREVIEW = 20
RECENT_REGISTRATION_DAYS = 30

PATIENT_LIST_FILTERS = {
    "profileComplete": equals("isProfileComplete", parse_bool),
    "therapistId": equals("assignedTherapist"),
    "keyword": substring("name", "email"),
    "ageGroup": bucket("age", AGE_BUCKETS),
}

PATIENT_SEARCH_FILTERS = {
    "isProfileComplete": equals("isProfileComplete", parse_bool),
    "gender": equals("gender"),
    "assignedTherapist": equals("assignedTherapist"),
    "ageGroup": bucket("age", AGE_BUCKETS),
    "searchTerm": substring("name", "email", "concerns"),
}
PATIENT_SORT_FIELDS = {"createdAt", "updatedAt", "name", "email", "age"}

THERAPIST_LIST_FILTERS = {
    "specialization": equals("specialization"),
    "isVerified": equals("isVerified", parse_bool),
    "isProfileComplete": equals("isProfileComplete", parse_bool),
    "keyword": substring("name", "email", "specialization", "title", "bio"),
    "experience": bucket("experience", EXPERIENCE_BUCKETS),
}

SESSION_LIST_FILTERS = {
    "status": equals("status"),
    "patientId": equals("patient"),
    "therapistId": equals("therapist"),
}

_DISPLAY_COLUMNS = ("name", "full_name", "email")


def _parse_dt(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    # Handle the "Z" suffix JavaScript clients send.
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _display_projection(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row.get(DOC_ID),
        "full_name": row.get("name") or row.get("full_name"),
        "email": row.get("email"),
    }


def _require_ids(raw: Any, label: str) -> List[str]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{label} array is required")
    ids = [str(item).strip() for item in raw if isinstance(item, (str, int)) and str(item).strip()]
    if len(ids) != len(raw):
        raise ValidationError(f"{label} must be a list of identifiers")
    ids = list(dict.fromkeys(ids))
    if len(ids) > BATCH_WRITE_LIMIT:
        raise ValidationError(f"At most {BATCH_WRITE_LIMIT} records can be updated at once")
    return ids


# -----------------------------
# Field-compatibility shims (storage -> API)
# -----------------------------
def patient_to_api(patient: Patient) -> Dict[str, Any]:
    data = patient.model_dump(by_alias=True)
    # Older admin screens still read the snake_case shape.
    data["full_name"] = patient.name
    data["dob"] = to_iso(datetime(utcnow().year - patient.age, 1, 1, tzinfo=timezone.utc)) if patient.age else None
    data["notes"] = [patient.concerns] if patient.concerns else []
    data["created_at"] = patient.created_at
    data["updated_at"] = patient.updated_at
    data["assigned_therapist"] = patient.assigned_therapist
    return data


def _merge(row: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    merged = {**row, **update}
    return {key: value for key, value in merged.items() if value is not DELETE_FIELD}


def therapist_to_api(therapist: Therapist) -> Dict[str, Any]:
    return therapist.model_dump(by_alias=True)


def session_to_api(session: Session) -> Dict[str, Any]:
    data = session.model_dump(by_alias=True)
    data["_id"] = session.id
    return data


def admin_to_api(admin: Admin) -> Dict[str, Any]:
    return {
        "_id": admin.id,
        "id": admin.id,
        "name": admin.name,
        "email": admin.email,
        "role": admin.role,
        "permissions": list(admin.permissions),
        "createdAt": admin.created_at,
        "updatedAt": admin.updated_at,
    }


def _load_patient(row: Optional[Dict[str, Any]]) -> Patient:
    if not row or row.get("role") != ROLE_PATIENT:
        raise NotFoundError("Patient not found")
    return Patient.model_validate(row)


def _load_therapist(row: Optional[Dict[str, Any]]) -> Therapist:
    if not row or row.get("role") != ROLE_PROFESSIONAL:
        raise NotFoundError("Therapist not found")
    return Therapist.model_validate(row)


def _ensure_role(store: Store, ids: Sequence[str], role: str, label: str) -> None:
    found = fetch_projections(store.collection(COL_USERS), ids, lambda row: row, filters={"role": role}, columns=["role"])
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(f"{label} not found: {', '.join(missing)}")


@dataclass
class PatientRepo:
    db: Store

    @property
    def _users(self):
        return self.db.collection(COL_USERS)

    def _attach_therapist_info(self, patients: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return enrich(
            patients,
            "assignedTherapist",
            self._users,
            _display_projection,
            target="assigned_therapist_info",
            filters={"role": ROLE_PROFESSIONAL},
            columns=_DISPLAY_COLUMNS,
        )

    def create(self, payload: PatientCreate) -> Dict[str, Any]:
        existing = self._users.select(filters={"role": ROLE_PATIENT, "email": payload.email}, limit=1)
        if existing:
            raise ValidationError("Patient with this email already exists")

        now = now_iso()
        row = self._users.insert(
            {
                "name": payload.name,
                "email": payload.email,
                "age": payload.age,
                "gender": payload.gender or None,
                "concerns": payload.concerns or None,
                "emergencyContact": payload.emergency_contact or None,
                "role": ROLE_PATIENT,
                "isProfileComplete": True,
                "uid": None,
                "assignedTherapist": None,
                "flags": [],
                "documents": [],
                "createdAt": now,
                "updatedAt": now,
            }
        )
        return patient_to_api(Patient.model_validate(row))

    def list(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        spec = build_filter_spec(params, PATIENT_LIST_FILTERS, base={"role": ROLE_PATIENT})
        page = fetch_page(
            self._users,
            filters=spec.store_filters,
            order_field="createdAt",
            direction="desc",
            page_size=clamp_page_size(params.get("pageSize"), PATIENT_PAGE_SIZE),
            cursor=params.get("lastDocId") or None,
        )
        patients = self._attach_therapist_info([patient_to_api(Patient.model_validate(row)) for row in page.items])
        filtered = spec.apply(patients)
        return {
            "patients": filtered,
            "hasMore": page.has_more,
            "lastDocId": page.cursor,
            "total": len(filtered),
        }

    def get(self, patient_id: str) -> Dict[str, Any]:
        patient = _load_patient(self._users.get(patient_id))
        return self._attach_therapist_info([patient_to_api(patient)])[0]

    def update(self, patient_id: str, payload: PatientUpdate) -> Dict[str, Any]:
        changes = payload.model_dump(by_alias=True, exclude_unset=True)
        always_write = {"assignedTherapist", "flags", "documents"}

        def _run(txn: Transaction) -> Dict[str, Any]:
            row = txn.get(COL_USERS, patient_id)
            current = _load_patient(row).model_dump(by_alias=True)
            update: Dict[str, Any] = {}
            for key, value in changes.items():
                if key in always_write or current.get(key) != value:
                    update[key] = value

            if "assignedTherapist" in update:
                therapist_id = update["assignedTherapist"]
                if therapist_id:
                    therapist_row = txn.get(COL_USERS, therapist_id)
                    if not therapist_row or therapist_row.get("role") != ROLE_PROFESSIONAL:
                        raise ValidationError("Invalid therapist ID")
                    update["assignedTherapistInfo"] = (
                        Therapist.model_validate(therapist_row).snapshot().model_dump(by_alias=True)
                    )
                else:
                    update["assignedTherapist"] = None
                    update["assignedTherapistInfo"] = DELETE_FIELD
                if "assigned_therapist" in row:
                    update["assigned_therapist"] = DELETE_FIELD

            if update:
                update["updatedAt"] = now_iso()
                txn.update(COL_USERS, patient_id, update)
            return patient_to_api(Patient.model_validate(_merge(row, update)))

        return self.db.run_transaction(_run)

    def delete(self, patient_id: str) -> None:
        def _run(txn: Transaction) -> None:
            _load_patient(txn.get(COL_USERS, patient_id))
            txn.delete(COL_USERS, patient_id)

        self.db.run_transaction(_run)

    def assign_therapist(self, patient_id: str, therapist_id: Any) -> Dict[str, Any]:
        if not therapist_id or not isinstance(therapist_id, str):
            raise ValidationError("therapistId is required")

        def _run(txn: Transaction) -> Dict[str, Any]:
            row = txn.get(COL_USERS, patient_id)
            _load_patient(row)
            therapist_row = txn.get(COL_USERS, therapist_id)
            if not therapist_row or therapist_row.get("role") != ROLE_PROFESSIONAL:
                raise ValidationError("Invalid therapist ID")
            update = {
                "assignedTherapist": therapist_id,
                "assignedTherapistInfo": Therapist.model_validate(therapist_row).snapshot().model_dump(by_alias=True),
                "updatedAt": now_iso(),
            }
            if "assigned_therapist" in row:
                update["assigned_therapist"] = DELETE_FIELD
            txn.update(COL_USERS, patient_id, update)
            return patient_to_api(Patient.model_validate(_merge(row, update)))

        return self.db.run_transaction(_run)

    def flag(self, patient_id: str, flag: Any) -> Dict[str, Any]:
        if not isinstance(flag, str) or not flag.strip():
            raise ValidationError("flag is required")
        flag = flag.strip()

        def _run(txn: Transaction) -> Dict[str, Any]:
            row = txn.get(COL_USERS, patient_id)
            patient = _load_patient(row)
            if flag in patient.flags:
                return patient_to_api(patient)
            update = {"flags": [*patient.flags, flag], "updatedAt": now_iso()}
            txn.update(COL_USERS, patient_id, update)
            return patient_to_api(Patient.model_validate(_merge(row, update)))

        return self.db.run_transaction(_run)

    def add_document(self, patient_id: str, document_url: Any) -> Dict[str, Any]:
        if not isinstance(document_url, str) or not document_url.strip():
            raise ValidationError("documentUrl is required")

        def _run(txn: Transaction) -> Dict[str, Any]:
            row = txn.get(COL_USERS, patient_id)
            patient = _load_patient(row)
            update = {"documents": [*patient.documents, document_url.strip()], "updatedAt": now_iso()}
            txn.update(COL_USERS, patient_id, update)
            return patient_to_api(Patient.model_validate(_merge(row, update)))

        return self.db.run_transaction(_run)

    def summary(self) -> Dict[str, int]:
        rows = self._users.select(filters={"role": ROLE_PATIENT}, columns=["isProfileComplete", "flags"])
        total = len(rows)
        complete = sum(1 for row in rows if row.get("isProfileComplete") is True)
        flagged = sum(1 for row in rows if row.get("flags"))
        return {
            "total": total,
            "complete": complete,
            "flagged": flagged,
            "incomplete": total - complete,
            # Older dashboards read active/inactive.
            "active": complete,
            "inactive": total - complete,
        }

    def batch_update(self, patient_ids: Any, update_data: Any) -> int:
        ids = _require_ids(patient_ids, "Patient IDs")
        if not isinstance(update_data, dict):
            raise ValidationError("updateData must be an object")
        fields = PatientBatchFields.model_validate(update_data).model_dump(by_alias=True, exclude_unset=True)
        if not fields:
            raise ValidationError("updateData has no updatable fields")
        _ensure_role(self.db, ids, ROLE_PATIENT, "Patients")

        fields["updatedAt"] = now_iso()
        batch = self.db.batch()
        for patient_id in ids:
            batch.update(COL_USERS, patient_id, fields)
        batch.commit()
        return len(ids)

    def search(self, params: Mapping[str, Any], filters: Mapping[str, Any]) -> Dict[str, Any]:
        merged = dict(filters)
        merged["searchTerm"] = params.get("searchTerm")
        spec = build_filter_spec(merged, PATIENT_SEARCH_FILTERS, base={"role": ROLE_PATIENT})
        if parse_bool(filters.get("hasFlags", "")):
            spec.residual.append(("hasFlags", lambda record: bool(record.get("flags"))))

        sort_by = str(params.get("sortBy") or "createdAt")
        if sort_by not in PATIENT_SORT_FIELDS:
            raise ValidationError(f"Cannot sort by {sort_by}")
        sort_order = str(params.get("sortOrder") or "desc").lower()
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be asc or desc")

        try:
            page = max(int(params.get("page") or 1), 1)
        except (TypeError, ValueError):
            page = 1
        limit = clamp_page_size(params.get("limit"), SEARCH_PAGE_SIZE)

        rows = self._users.select(
            filters=spec.store_filters,
            order=(sort_by, sort_order),
            offset=offset_for(page, limit),
            limit=limit,
        )
        patients = spec.apply(patient_to_api(Patient.model_validate(row)) for row in rows)
        return {"patients": patients, "pagination": {"page": page, "limit": limit, "total": len(patients)}}

    def analytics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        cutoff = now - timedelta(days=RECENT_REGISTRATION_DAYS)
        rows = self._users.select(
            filters={"role": ROLE_PATIENT},
            columns=["isProfileComplete", "gender", "age", "flags", "assignedTherapist", "assigned_therapist", "createdAt"],
        )

        analytics: Dict[str, Any] = {
            "totalPatients": 0,
            "profileCompletion": {"complete": 0, "incomplete": 0},
            "genderDistribution": {},
            "ageGroups": {},
            "flaggedPatients": 0,
            "assignedTherapists": 0,
            "recentRegistrations": 0,
        }
        for row in rows:
            analytics["totalPatients"] += 1
            key = "complete" if row.get("isProfileComplete") else "incomplete"
            analytics["profileCompletion"][key] += 1

            gender = row.get("gender") or "Not specified"
            analytics["genderDistribution"][gender] = analytics["genderDistribution"].get(gender, 0) + 1

            label = bucket_label(row.get("age"), AGE_BUCKETS) if row.get("age") else None
            if label:
                analytics["ageGroups"][label] = analytics["ageGroups"].get(label, 0) + 1

            if row.get("flags"):
                analytics["flaggedPatients"] += 1
            if row.get("assignedTherapist") or row.get("assigned_therapist"):
                analytics["assignedTherapists"] += 1

            created = _parse_dt(row.get("createdAt"))
            if created and created > cutoff:
                analytics["recentRegistrations"] += 1
        return analytics


@dataclass
class TherapistRepo:
    db: Store

    @property
    def _users(self):
        return self.db.collection(COL_USERS)

    def _patient_counts(self, therapist_ids: Sequence[str]) -> Dict[str, int]:
        return count_references(self._users, "assignedTherapist", therapist_ids, filters={"role": ROLE_PATIENT})

    def list(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        spec = build_filter_spec(params, THERAPIST_LIST_FILTERS, base={"role": ROLE_PROFESSIONAL})
        page = fetch_page(
            self._users,
            filters=spec.store_filters,
            order_field="updatedAt",
            direction="desc",
            page_size=clamp_page_size(params.get("pageSize"), THERAPIST_PAGE_SIZE),
            cursor=params.get("lastDocId") or None,
        )
        therapists = spec.apply(therapist_to_api(Therapist.model_validate(row)) for row in page.items)
        counts = self._patient_counts([t["id"] for t in therapists])
        for therapist in therapists:
            therapist["assignedPatientsCount"] = counts.get(therapist["id"], 0)
        return {
            "therapists": therapists,
            "hasMore": page.has_more,
            "lastDocId": page.cursor,
            "total": len(therapists),
        }

    def summary(self) -> Dict[str, Any]:
        rows = self._users.select(
            filters={"role": ROLE_PROFESSIONAL},
            columns=["isVerified", "isProfileComplete", "experience", "specialization", "specialty"],
        )
        total = len(rows)
        verified = sum(1 for row in rows if row.get("isVerified"))
        complete = sum(1 for row in rows if row.get("isProfileComplete"))
        total_experience = 0.0
        breakdown: Dict[str, int] = {}
        for row in rows:
            experience = row.get("experience") or 0
            if isinstance(experience, (int, float)) and not isinstance(experience, bool):
                total_experience += experience
            spec = row.get("specialization") or row.get("specialty") or "Other"
            breakdown[spec] = breakdown.get(spec, 0) + 1

        counts = self._patient_counts([row[DOC_ID] for row in rows])
        total_patients = sum(counts.values())
        return {
            "total": total,
            "verified": verified,
            "unverified": total - verified,
            "profileComplete": complete,
            "profileIncomplete": total - complete,
            "totalPatients": total_patients,
            "averagePatients": _round1(total_patients / total) if total else 0,
            "averageExperience": _round1(total_experience / total) if total else 0,
            "specializationBreakdown": breakdown,
        }

    def specializations(self) -> List[str]:
        rows = self._users.select(filters={"role": ROLE_PROFESSIONAL}, columns=["specialization", "specialty"])
        found = set()
        for row in rows:
            value = row.get("specialization") or row.get("specialty")
            if isinstance(value, str) and value.strip():
                found.add(value.strip())
        return sorted(found)

    def get(self, therapist_id: str) -> Dict[str, Any]:
        therapist = _load_therapist(self._users.get(therapist_id))
        data = therapist_to_api(therapist)
        assigned_filter = {"role": ROLE_PATIENT, "assignedTherapist": therapist_id}
        rows = self._users.select(
            filters=assigned_filter,
            columns=["name", "email", "createdAt", "phone"],
            limit=ASSIGNED_PATIENTS_PREVIEW,
        )
        data["assignedPatientsCount"] = self._users.count(filters=assigned_filter)
        data["assignedPatientsInfo"] = rows
        return data

    def _email_taken(self, email: str, *, exclude_id: Optional[str] = None) -> bool:
        rows = self._users.select(filters={"email": email}, columns=["email"], limit=2)
        return any(row[DOC_ID] != exclude_id for row in rows)

    def create(self, payload: TherapistCreate) -> Dict[str, Any]:
        if self._email_taken(payload.email):
            raise ValidationError("Email already exists")
        if payload.uid and self._users.select(filters={"uid": payload.uid}, columns=["uid"], limit=1):
            raise ValidationError("UID already exists")

        now = now_iso()
        row = self._users.insert(
            {
                "uid": payload.uid or f"therapist_{int(time.time() * 1000)}",
                "name": payload.name,
                "email": payload.email,
                "title": payload.title or "",
                "specialization": payload.specialization,
                "bio": payload.bio or "",
                "experience": payload.experience or 0,
                "education": payload.education or [],
                "certifications": payload.certifications or [],
                "availability": payload.availability or {},
                "notificationSettings": payload.notification_settings or dict(DEFAULT_NOTIFICATION_SETTINGS),
                "role": ROLE_PROFESSIONAL,
                "isVerified": False,
                "isProfileComplete": False,
                "createdAt": now,
                "updatedAt": now,
                "lastAvailabilityUpdate": now,
            }
        )
        return therapist_to_api(Therapist.model_validate(row))

    def update(self, therapist_id: str, payload: TherapistUpdate) -> Dict[str, Any]:
        row = self._users.get(therapist_id)
        _load_therapist(row)
        changes = payload.model_dump(by_alias=True, exclude_unset=True)
        if changes.get("email") and self._email_taken(changes["email"], exclude_id=therapist_id):
            raise ValidationError("Email already exists")

        now = now_iso()
        changes["updatedAt"] = now
        if changes.get("availability") is not None:
            changes["lastAvailabilityUpdate"] = now
        # Reject the merged record before anything is stored.
        updated = Therapist.model_validate(_merge(row, changes))
        self._users.update(therapist_id, changes)
        return therapist_to_api(updated)

    def _assigned_patient_count(self, therapist_id: str) -> int:
        ids = set()
        for field_name in ("assignedTherapist", "assigned_therapist"):
            rows = self._users.select(filters={"role": ROLE_PATIENT, field_name: therapist_id}, columns=["role"])
            ids.update(row["id"] for row in rows)
        return len(ids)

    def delete(self, therapist_id: str) -> None:
        _load_therapist(self._users.get(therapist_id))
        assigned = self._assigned_patient_count(therapist_id)
        if assigned:
            raise ConflictError(
                "Cannot delete therapist with assigned patients. Please reassign patients first.",
                extra={"assignedPatientsCount": assigned},
            )
        self._users.delete(therapist_id)

    def assign_patients(self, therapist_id: str, patient_ids: Any) -> int:
        """
        Make `patient_ids` the complete assignment set of the therapist.

        Runs as one atomic batch. The read that finds the current assignment set
        is not part of that batch.
        """
        if patient_ids is None:
            patient_ids = []
        if not isinstance(patient_ids, list):
            raise ValidationError("patientIds must be an array")
        new_ids = list(dict.fromkeys(str(pid).strip() for pid in patient_ids if str(pid).strip()))

        therapist = _load_therapist(self._users.get(therapist_id))
        if new_ids:
            _ensure_role(self.db, new_ids, ROLE_PATIENT, "Patients")
        current = self._users.select(
            filters={"role": ROLE_PATIENT, "assignedTherapist": therapist_id},
            columns=["assignedTherapist"],
        )

        now = now_iso()
        snapshot = therapist.snapshot().model_dump(by_alias=True)
        batch = self.db.batch()
        for row in current:
            if row[DOC_ID] not in new_ids:
                batch.update(
                    COL_USERS,
                    row[DOC_ID],
                    {"assignedTherapist": DELETE_FIELD, "assignedTherapistInfo": DELETE_FIELD, "updatedAt": now},
                )
        for patient_id in new_ids:
            batch.update(
                COL_USERS,
                patient_id,
                {"assignedTherapist": therapist_id, "assignedTherapistInfo": snapshot, "updatedAt": now},
            )
        batch.update(COL_USERS, therapist_id, {"updatedAt": now})
        if len(batch) > BATCH_WRITE_LIMIT:
            raise ValidationError(f"Assignment touches more than {BATCH_WRITE_LIMIT} records")
        batch.commit()
        return len(new_ids)

    def update_availability(self, therapist_id: str, availability: Any) -> None:
        if not isinstance(availability, dict):
            raise ValidationError("availability must be an object")
        _load_therapist(self._users.get(therapist_id))
        now = now_iso()
        self._users.update(
            therapist_id,
            {"availability": availability, "lastAvailabilityUpdate": now, "updatedAt": now},
        )

    def batch_update(self, therapist_ids: Any, update_data: Any) -> int:
        ids = _require_ids(therapist_ids, "Therapist IDs")
        if not isinstance(update_data, dict):
            raise ValidationError("updateData must be an object")
        fields = TherapistBatchFields.model_validate(update_data).model_dump(by_alias=True, exclude_unset=True)
        if not fields:
            raise ValidationError("updateData has no updatable fields")
        _ensure_role(self.db, ids, ROLE_PROFESSIONAL, "Therapists")

        now = now_iso()
        fields["updatedAt"] = now
        if fields.get("availability") is not None:
            fields["lastAvailabilityUpdate"] = now
        batch = self.db.batch()
        for therapist_id in ids:
            batch.update(COL_USERS, therapist_id, fields)
        batch.commit()
        return len(ids)


@dataclass
class SessionRepo:
    db: Store

    @property
    def _sessions(self):
        return self.db.collection(COL_SESSIONS)

    def _populate(self, sessions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ids = distinct_ids(sessions, "patient") + distinct_ids(sessions, "therapist")
        if not ids:
            return sessions
        people = fetch_projections(self.db.collection(COL_USERS), ids, _display_projection, columns=_DISPLAY_COLUMNS)
        for person in people.values():
            person["_id"] = person["id"]
        sessions = attach_projections(sessions, "patient", people, "patient")
        return attach_projections(sessions, "therapist", people, "therapist")

    def _load(self, session_id: str) -> Session:
        row = self._sessions.get(session_id)
        if not row:
            raise NotFoundError("Session not found")
        return Session.model_validate(row)

    def create(self, payload: SessionCreate) -> Dict[str, Any]:
        users = self.db.collection(COL_USERS)
        patient = users.get(payload.patient, columns=["role"])
        if not patient or patient.get("role") != ROLE_PATIENT:
            raise ValidationError("Invalid patient ID")
        therapist = users.get(payload.therapist, columns=["role"])
        if not therapist or therapist.get("role") != ROLE_PROFESSIONAL:
            raise ValidationError("Invalid therapist ID")

        now = now_iso()
        row = self._sessions.insert(
            {
                "patient": payload.patient,
                "therapist": payload.therapist,
                "datetime": to_iso(payload.scheduled_for),
                "duration": payload.duration,
                "notes": payload.notes,
                "attachments": list(payload.attachments),
                "status": payload.status,
                "attendance_marked": False,
                "createdAt": now,
                "updatedAt": now,
            }
        )
        return session_to_api(Session.model_validate(row))

    def list(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        spec = build_filter_spec(params, SESSION_LIST_FILTERS)
        try:
            page = max(int(params.get("pageNumber") or 1), 1)
        except (TypeError, ValueError):
            page = 1
        count = self._sessions.count(filters=spec.store_filters)
        rows = self._sessions.select(
            filters=spec.store_filters,
            order=("datetime", "asc"),
            offset=offset_for(page, SESSION_PAGE_SIZE),
            limit=SESSION_PAGE_SIZE,
        )
        sessions = self._populate([session_to_api(Session.model_validate(row)) for row in rows])
        return {"sessions": sessions, "page": page, "pages": math.ceil(count / SESSION_PAGE_SIZE)}

    def get(self, session_id: str) -> Dict[str, Any]:
        return self._populate([session_to_api(self._load(session_id))])[0]

    def _save(self, session_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        changes["updatedAt"] = now_iso()
        self._sessions.update(session_id, changes)
        return session_to_api(self._load(session_id))

    def update(self, session_id: str, payload: SessionUpdate) -> Dict[str, Any]:
        self._load(session_id)
        changes: Dict[str, Any] = {}
        for key, value in payload.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            if key == "scheduled_for":
                changes["datetime"] = to_iso(value)
            else:
                changes[key] = value
        return self._save(session_id, changes)

    def delete(self, session_id: str) -> None:
        self._load(session_id)
        self._sessions.delete(session_id)

    def attach_notes(self, session_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        self._load(session_id)
        changes: Dict[str, Any] = {}
        if "notes" in body:
            if body["notes"] is not None and not isinstance(body["notes"], str):
                raise ValidationError("notes must be a string")
            changes["notes"] = body["notes"]
        if "attachments" in body:
            attachments = body["attachments"]
            if not isinstance(attachments, list) or not all(isinstance(a, str) for a in attachments):
                raise ValidationError("attachments must be a list of strings")
            changes["attachments"] = attachments
        return self._save(session_id, changes)

    def mark_attendance(self, session_id: str, attended: Any) -> Dict[str, Any]:
        if not isinstance(attended, bool):
            raise ValidationError("attended must be true or false")
        self._load(session_id)
        return self._save(
            session_id,
            {"attendance_marked": attended, "status": "completed" if attended else "missed"},
        )

    def update_status(self, session_id: str, payload: SessionStatusChange) -> Dict[str, Any]:
        self._load(session_id)
        changes: Dict[str, Any] = {"status": payload.status}
        if payload.status == "rescheduled" and payload.new_datetime is not None:
            changes["datetime"] = to_iso(payload.new_datetime)
        return self._save(session_id, changes)


@dataclass
class AdminRepo:
    db: Store

    @property
    def _admins(self):
        return self.db.collection(COL_ADMINS)

    def get(self, admin_id: str) -> Optional[Admin]:
        row = self._admins.get(admin_id)
        return Admin.model_validate(row) if row else None

    def require(self, admin_id: str) -> Admin:
        admin = self.get(admin_id)
        if admin is None:
            raise NotFoundError("Admin not found")
        return admin

    def get_by_email(self, email: str) -> Optional[Admin]:
        rows = self._admins.select(filters={"email": email}, limit=1)
        return Admin.model_validate(rows[0]) if rows else None

    def list(self) -> List[Admin]:
        return [Admin.model_validate(row) for row in self._admins.select(order=("createdAt", "asc"))]

    def create(self, payload: AdminCreate, password_hash: str) -> Admin:
        if self.get_by_email(payload.email):
            raise ValidationError("Admin already exists")
        now = now_iso()
        row = self._admins.insert(
            {
                "name": payload.name,
                "email": payload.email,
                "password": password_hash,
                "role": payload.role,
                "permissions": list(payload.permissions),
                "createdAt": now,
                "updatedAt": now,
            }
        )
        return Admin.model_validate(row)

    def update(self, admin_id: str, payload: AdminUpdate, password_hash: Optional[str] = None) -> Admin:
        self.require(admin_id)
        changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        changes.pop("password", None)
        if changes.get("email"):
            other = self.get_by_email(changes["email"])
            if other and other.id != admin_id:
                raise ValidationError("Admin already exists")
        if password_hash:
            changes["password"] = password_hash
        changes["updatedAt"] = now_iso()
        self._admins.update(admin_id, changes)
        return self.require(admin_id)

    def delete(self, admin_id: str) -> None:
        self.require(admin_id)
        self._admins.delete(admin_id)
