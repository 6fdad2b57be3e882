# medremind/models.py
#
# This module contains all Pydantic models used for data validation,
# serialization, and API request/response schemas.

from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator


class AppRole(str, Enum):
    DOCTOR = "doctor"
    MEDICAL_STORE = "medical_store"
    PATIENT = "patient"


# Reported for a signed-in identity that has no role assignment yet.
UNKNOWN_ROLE = "unknown"


class StoreStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    GIVEN = "given"


class DoseStatus(str, Enum):
    TAKEN = "taken"
    MISSED = "missed"


class Frequency(str, Enum):
    ONCE_DAILY = "once_daily"
    TWICE_DAILY = "twice_daily"
    THRICE_DAILY = "thrice_daily"
    AS_NEEDED = "as_needed"


class Timing(str, Enum):
    BEFORE_FOOD = "before_food"
    AFTER_FOOD = "after_food"
    WITH_FOOD = "with_food"
    ANY_TIME = "any_time"


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


STATUS_LABELS = {
    "pending": "Pending",
    "ready": "Ready",
    "given": "Given",
    "taken": "Taken",
    "missed": "Missed",
}

TIMING_LABELS = {
    "before_food": "Before food",
    "after_food": "After food",
    "with_food": "With food",
    "any_time": "Any time",
}


def status_label(status: Optional[str]) -> Optional[str]:
    """Display label for a store or dose status; unknown values label themselves."""
    if status is None:
        return None
    return STATUS_LABELS.get(status, status)


def timing_label(timing: str) -> str:
    return TIMING_LABELS.get(timing, timing)


# --- Stored entities ---

class Profile(BaseModel):
    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class Notification(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    type: str
    read: bool = False
    created_at: str


# --- Requests ---

class MedicineItem(BaseModel):
    medicine_name: str
    dosage: str
    frequency: Frequency = Frequency.ONCE_DAILY
    duration: str
    timing: Timing = Timing.AFTER_FOOD
    # At least one part of the day must stay selected
    time_of_day: List[TimeOfDay] = Field(default_factory=lambda: [TimeOfDay.MORNING], min_length=1)

    @field_validator("medicine_name", "dosage", "duration")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("time_of_day")
    @classmethod
    def unique_parts(cls, value: List[TimeOfDay]) -> List[TimeOfDay]:
        return list(dict.fromkeys(value))


class PrescriptionCreate(BaseModel):
    patient_email: str
    store_email: Optional[str] = None
    notes: Optional[str] = None
    reminders_enabled: bool = False
    medicines: List[MedicineItem] = Field(min_length=1)

    @field_validator("patient_email")
    @classmethod
    def patient_email_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Patient email is required")
        return value

    @field_validator("store_email")
    @classmethod
    def blank_store_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class PatientPrescriptionCreate(BaseModel):
    notes: Optional[str] = None
    medicines: List[MedicineItem] = Field(min_length=1)


class TrackDoseRequest(BaseModel):
    prescription_medicine_id: str
    status: DoseStatus


class StoreStatusUpdate(BaseModel):
    status: StoreStatus


class LoginRequest(BaseModel):
    email: str
    password: str


class SignUpRequest(BaseModel):
    email: str
    password: str = Field(min_length=6)
    full_name: str
    role: AppRole
    phone: Optional[str] = None


# --- Responses ---

class FlowResponse(BaseModel):
    """Outcome of a mutation flow: one user-facing message plus soft warnings."""
    message: str
    warnings: List[str] = Field(default_factory=list)
    prescription_id: Optional[str] = None
    record_id: Optional[str] = None


class NavItem(BaseModel):
    title: str
    url: str


class SessionResponse(BaseModel):
    status: str
    role: Optional[str] = None
    role_label: str = ""
    home_path: str
    profile: Optional[Profile] = None
    navigation: List[NavItem] = Field(default_factory=list)


class LoginResponse(BaseModel):
    message: str
    access_token: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    session: SessionResponse


class SignUpResponse(BaseModel):
    message: str
    user_id: str
    confirmed: bool


class DoctorStats(BaseModel):
    total: int
    patients: int
    recent: int


class MedicineSummary(BaseModel):
    medicine_name: str
    dosage: str
    frequency: Optional[str] = None
    timing: Optional[str] = None
    time_of_day: Optional[List[str]] = None


class PatientSummary(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None


class StoreStatusView(BaseModel):
    status: str
    status_label: Optional[str] = None
    store_name: str = ""


class PrescriptionHistoryRow(BaseModel):
    id: str
    notes: Optional[str] = None
    created_at: str
    reminders_enabled: bool = False
    patient: Optional[PatientSummary] = None
    medicines: List[MedicineSummary] = Field(default_factory=list)
    store_status: Optional[StoreStatusView] = None


class PrescriptionView(BaseModel):
    id: str
    doctor_name: str
    notes: Optional[str] = None
    created_at: str
    medicines: List[MedicineSummary] = Field(default_factory=list)
    store_status: Optional[StoreStatusView] = None


class TodayMedicine(BaseModel):
    id: str
    medicine_name: str
    dosage: str
    timing: str
    timing_label: str
    time_of_day: List[str] = Field(default_factory=list)
    prescription_id: str
    dose_tracking_id: Optional[str] = None
    dose_status: Optional[str] = None


class PatientStats(BaseModel):
    prescriptions: int
    taken: int
    missed: int


class PatientDashboard(BaseModel):
    medicines: List[TodayMedicine] = Field(default_factory=list)
    stats: PatientStats


class DoseEntry(BaseModel):
    medicine_name: str
    status: Optional[str] = None
    status_label: Optional[str] = None


class DoseDay(BaseModel):
    date: str
    doses: List[DoseEntry] = Field(default_factory=list)


class DoseHistory(BaseModel):
    days: List[DoseDay] = Field(default_factory=list)
    adherence: int


class StorePrescriptionRow(BaseModel):
    id: str
    prescription_id: str
    status: str
    status_label: Optional[str] = None
    assigned_at: str
    doctor_name: str
    patient_name: str
    medicines: List[MedicineSummary] = Field(default_factory=list)


class StoreCounts(BaseModel):
    pending: int
    ready: int
    given: int


class StoreDashboard(BaseModel):
    prescriptions: List[StorePrescriptionRow] = Field(default_factory=list)
    counts: StoreCounts


class NotificationFeed(BaseModel):
    notifications: List[Notification] = Field(default_factory=list)
    unread_count: int
    badge: Optional[str] = None
