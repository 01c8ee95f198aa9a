from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

AdminRole = Literal["super_admin", "admin", "professional", "therapist"]
SessionStatus = Literal["upcoming", "completed", "missed", "cancelled", "rescheduled"]

ROLE_PATIENT = "patient"
ROLE_PROFESSIONAL = "professional"

# -----------------------------
# Collections (single source of truth)
# -----------------------------
COL_USERS = "users"
COL_SESSIONS = "sessions"
COL_ADMINS = "admins"

DEFAULT_NOTIFICATION_SETTINGS: Dict[str, bool] = {
    "appointments": True,
    "email": True,
    "marketing": False,
    "messages": True,
    "push": True,
    "reminders": True,
    "updates": True,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    raw = value.strip()
    if "@" not in raw or raw.startswith("@") or raw.endswith("@"):
        raise ValueError("must be a valid email address")
    return raw


Email = Annotated[str, AfterValidator(_check_email)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# -----------------------------
# Stored records
# -----------------------------
class StoredRecord(_CamelModel):
    id: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TherapistSnapshot(_CamelModel):
    """
    Display copy of a therapist stored on the patient record.
    Refreshed only when the assignment changes, so it can lag behind the therapist.
    """

    uid: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    title: Optional[str] = None
    specialization: Optional[str] = None


class Patient(StoredRecord):
    name: str = Field(
        default="",
        validation_alias=AliasChoices("name", "full_name"),
        serialization_alias="name",
    )
    email: str = ""
    age: Optional[int] = None
    gender: Optional[str] = None
    concerns: Optional[str] = None
    emergency_contact: Optional[Any] = None
    phone: Optional[str] = None
    role: str = ROLE_PATIENT
    is_profile_complete: bool = False
    uid: Optional[str] = None
    assigned_therapist: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("assignedTherapist", "assigned_therapist"),
        serialization_alias="assignedTherapist",
    )
    assigned_therapist_info: Optional[TherapistSnapshot] = None
    flags: List[str] = Field(default_factory=list)
    documents: List[str] = Field(default_factory=list)

    @field_validator("flags", "documents", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


class Therapist(StoredRecord):
    uid: Optional[str] = None
    name: str = Field(
        default="",
        validation_alias=AliasChoices("name", "full_name"),
        serialization_alias="name",
    )
    email: str = ""
    title: str = ""
    specialization: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("specialization", "specialty"),
        serialization_alias="specialization",
    )
    bio: str = ""
    experience: Union[int, float] = 0
    is_verified: bool = False
    is_profile_complete: bool = False
    role: str = ROLE_PROFESSIONAL
    availability: Dict[str, Any] = Field(default_factory=dict)
    education: List[Any] = Field(default_factory=list)
    certifications: List[Any] = Field(default_factory=list)
    notification_settings: Dict[str, Any] = Field(default_factory=dict)
    last_availability_update: Optional[str] = None

    @field_validator("title", "bio", mode="before")
    @classmethod
    def _none_to_str(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("experience", mode="before")
    @classmethod
    def _none_to_zero(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    @field_validator("availability", "notification_settings", mode="before")
    @classmethod
    def _none_to_dict(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("education", "certifications", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def snapshot(self) -> TherapistSnapshot:
        return TherapistSnapshot(
            uid=self.uid,
            name=self.name,
            email=self.email,
            title=self.title,
            specialization=self.specialization,
        )


class Session(StoredRecord):
    patient: str
    therapist: str
    scheduled_for: str = Field(validation_alias="datetime", serialization_alias="datetime")
    duration: int
    notes: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    status: SessionStatus = "upcoming"
    attendance_marked: bool = Field(
        default=False,
        validation_alias="attendance_marked",
        serialization_alias="attendance_marked",
    )


class Admin(StoredRecord):
    name: str
    email: str
    password: str = ""
    role: AdminRole = "admin"
    permissions: List[str] = Field(default_factory=list)


# -----------------------------
# Request payloads
# -----------------------------
class PatientCreate(_CamelModel):
    name: str = Field(min_length=1)
    email: Email
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[str] = None
    concerns: Optional[str] = None
    emergency_contact: Optional[Any] = None


class PatientUpdate(_CamelModel):
    name: Optional[str] = None
    email: Optional[Email] = None
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[str] = None
    concerns: Optional[str] = None
    emergency_contact: Optional[Any] = None
    assigned_therapist: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("assignedTherapist", "assigned_therapist"),
        serialization_alias="assignedTherapist",
    )
    flags: Optional[List[str]] = None
    documents: Optional[List[str]] = None


class PatientBatchFields(_CamelModel):
    """Fields a batch update may touch on patient records."""

    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[str] = None
    concerns: Optional[str] = None
    is_profile_complete: Optional[bool] = None
    flags: Optional[List[str]] = None
    documents: Optional[List[str]] = None


class TherapistCreate(_CamelModel):
    uid: Optional[str] = None
    name: str = Field(min_length=1)
    email: Email
    title: Optional[str] = None
    specialization: Optional[str] = None
    bio: Optional[str] = None
    experience: Union[int, float] = Field(default=0, ge=0)
    education: Optional[List[Any]] = None
    certifications: Optional[List[Any]] = None
    availability: Optional[Dict[str, Any]] = None
    notification_settings: Optional[Dict[str, Any]] = None


class TherapistUpdate(_CamelModel):
    name: Optional[str] = None
    email: Optional[Email] = None
    title: Optional[str] = None
    specialization: Optional[str] = None
    bio: Optional[str] = None
    experience: Optional[Union[int, float]] = Field(default=None, ge=0)
    is_verified: Optional[bool] = None
    is_profile_complete: Optional[bool] = None
    education: Optional[List[Any]] = None
    certifications: Optional[List[Any]] = None
    availability: Optional[Dict[str, Any]] = None
    notification_settings: Optional[Dict[str, Any]] = None


class SessionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    patient: str = Field(min_length=1)
    therapist: str = Field(min_length=1)
    scheduled_for: datetime = Field(alias="datetime")
    duration: int = Field(gt=0)
    notes: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    status: SessionStatus = "upcoming"


class SessionUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    scheduled_for: Optional[datetime] = Field(default=None, alias="datetime")
    duration: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = None
    attachments: Optional[List[str]] = None
    status: Optional[SessionStatus] = None
    attendance_marked: Optional[bool] = None


class SessionStatusChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: SessionStatus
    new_datetime: Optional[datetime] = Field(default=None, alias="newDatetime")


class AdminCreate(_CamelModel):
    name: str = Field(min_length=1)
    email: Email
    password: str = Field(min_length=6)
    role: AdminRole = "admin"
    permissions: List[str] = Field(default_factory=list)


class AdminUpdate(_CamelModel):
    name: Optional[str] = None
    email: Optional[Email] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role: Optional[AdminRole] = None
    permissions: Optional[List[str]] = None



class TherapistBatchFields(_CamelModel):
    """Fields a batch update may touch on therapist records."""

    title: Optional[str] = None
    specialization: Optional[str] = None
    bio: Optional[str] = None
    experience: Optional[Union[int, float]] = Field(default=None, ge=0)
    is_verified: Optional[bool] = None
    is_profile_complete: Optional[bool] = None
    availability: Optional[Dict[str, Any]] = None
    notification_settings: Optional[Dict[str, Any]] = None
