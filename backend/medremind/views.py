# medremind/views.py
#
# Read models for the dashboard and history screens. Each view runs one query
# for its primary entity, then fetches the dependent rows (profiles, medicines,
# store assignments) and flattens them. A missing dependent row only ever
# produces a fallback label. Views are recomputed in full on every call.

from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from . import crud
from .config import DOSE_HISTORY_LIMIT, MEDREMIND_TIMEZONE, RECENT_PRESCRIPTION_DAYS
from .models import (
    DoctorStats,
    DoseDay,
    DoseEntry,
    DoseHistory,
    MedicineSummary,
    PatientDashboard,
    PatientStats,
    PatientSummary,
    PrescriptionHistoryRow,
    PrescriptionView,
    StoreCounts,
    StoreDashboard,
    StorePrescriptionRow,
    StoreStatusView,
    TodayMedicine,
    status_label,
    timing_label,
)

UNKNOWN_NAME = "Unknown"
UNKNOWN_DOCTOR = "Unknown Doctor"


def local_zone() -> ZoneInfo:
    return ZoneInfo(MEDREMIND_TIMEZONE)


def compute_adherence(records: Iterable[Dict[str, Any]]) -> int:
    """Percentage of records marked taken, rounded half up; 0 for no records."""
    records = list(records)
    total = len(records)
    if total == 0:
        return 0
    taken = sum(1 for r in records if r.get('status') == 'taken')
    # Integer form of floor(100 * taken / total + 0.5)
    return (200 * taken + total) // (2 * total)


def today_window(now: Optional[datetime] = None) -> Tuple[str, str]:
    """[start, end) of the current local calendar day as UTC ISO strings."""
    zone = local_zone()
    now = (now or datetime.now(timezone.utc)).astimezone(zone)
    start = datetime.combine(now.date(), time.min, tzinfo=zone)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc).isoformat(), end.astimezone(timezone.utc).isoformat()


def _name(profiles: Dict[str, Dict[str, Any]], user_id: Optional[str], fallback: str) -> str:
    profile = profiles.get(user_id) if user_id else None
    return (profile or {}).get('full_name') or fallback


def _medicines(items: List[Dict[str, Any]], *fields: str) -> List[MedicineSummary]:
    return [
        MedicineSummary(**{f: m.get(f) for f in ('medicine_name', 'dosage') + fields})
        for m in items
    ]


def _store_status(assignment: Optional[Dict[str, Any]], profiles: Dict[str, Dict[str, Any]]) -> Optional[StoreStatusView]:
    if not assignment:
        return None
    return StoreStatusView(
        status=assignment.get('status'),
        status_label=status_label(assignment.get('status')),
        store_name=_name(profiles, assignment.get('store_id'), ""),
    )


# --- Doctor ---

def doctor_dashboard_stats(doctor_id: str, now: Optional[datetime] = None) -> DoctorStats:
    prescriptions = crud.db_list_prescriptions_by_doctor(doctor_id)
    cutoff = ((now or datetime.now(timezone.utc)) - timedelta(days=RECENT_PRESCRIPTION_DAYS)).isoformat()
    return DoctorStats(
        total=len(prescriptions),
        patients=len({p.get('patient_id') for p in prescriptions}),
        recent=sum(1 for p in prescriptions if p.get('created_at', '') > cutoff),
    )


def doctor_prescription_history(doctor_id: str, search: Optional[str] = None) -> List[PrescriptionHistoryRow]:
    prescriptions = crud.db_list_prescriptions_by_doctor(doctor_id)
    ids = [p['id'] for p in prescriptions]
    medicines = crud.db_list_medicines_for_prescriptions(ids)
    assignments = crud.db_get_first_store_assignments(ids)

    user_ids = [p.get('patient_id') for p in prescriptions]
    user_ids += [a.get('store_id') for a in assignments.values() if a]
    profiles = crud.db_batch_get_profiles(user_ids)

    rows = []
    for p in prescriptions:
        patient = profiles.get(p.get('patient_id'))
        rows.append(PrescriptionHistoryRow(
            id=p['id'],
            notes=p.get('notes'),
            created_at=p['created_at'],
            reminders_enabled=bool(p.get('reminders_enabled')),
            patient=PatientSummary(full_name=patient.get('full_name'), email=patient.get('email')) if patient else None,
            medicines=_medicines(medicines.get(p['id'], [])),
            store_status=_store_status(assignments.get(p['id']), profiles),
        ))

    if search:
        needle = search.lower()
        rows = [
            r for r in rows
            if (r.patient and r.patient.full_name and needle in r.patient.full_name.lower())
            or any(needle in m.medicine_name.lower() for m in r.medicines)
        ]
    return rows


# --- Patient ---

def patient_prescriptions(patient_id: str) -> List[PrescriptionView]:
    """Doctor-issued prescriptions only; self-added entries are excluded."""
    prescriptions = [p for p in crud.db_list_prescriptions_by_patient(patient_id) if p.get('doctor_id')]
    ids = [p['id'] for p in prescriptions]
    medicines = crud.db_list_medicines_for_prescriptions(ids)
    assignments = crud.db_get_first_store_assignments(ids)

    user_ids = [p['doctor_id'] for p in prescriptions]
    user_ids += [a.get('store_id') for a in assignments.values() if a]
    profiles = crud.db_batch_get_profiles(user_ids)

    return [
        PrescriptionView(
            id=p['id'],
            doctor_name=_name(profiles, p['doctor_id'], UNKNOWN_DOCTOR),
            notes=p.get('notes'),
            created_at=p['created_at'],
            medicines=_medicines(medicines.get(p['id'], []), 'frequency', 'timing', 'time_of_day'),
            store_status=_store_status(assignments.get(p['id']), profiles),
        )
        for p in prescriptions
    ]


def patient_today_doses(patient_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    start, end = today_window(now)
    return crud.db_list_doses_between(patient_id, start, end)


def patient_dashboard(patient_id: str, now: Optional[datetime] = None) -> PatientDashboard:
    prescriptions = crud.db_list_prescriptions_by_patient(patient_id)
    medicines = crud.db_list_medicines_for_prescriptions(p['id'] for p in prescriptions)
    doses = patient_today_doses(patient_id, now)

    today = []
    for p in prescriptions:
        for m in medicines.get(p['id'], []):
            dose = next((d for d in doses if d.get('prescription_medicine_id') == m['id']), None)
            today.append(TodayMedicine(
                id=m['id'],
                medicine_name=m['medicine_name'],
                dosage=m['dosage'],
                timing=m.get('timing', ''),
                timing_label=timing_label(m.get('timing', '')),
                time_of_day=list(m.get('time_of_day') or []),
                prescription_id=p['id'],
                dose_tracking_id=dose['id'] if dose else None,
                dose_status=dose.get('status') if dose else None,
            ))

    return PatientDashboard(
        medicines=today,
        stats=PatientStats(
            prescriptions=len(prescriptions),
            taken=sum(1 for d in doses if d.get('status') == 'taken'),
            missed=sum(1 for d in doses if d.get('status') == 'missed'),
        ),
    )


def dose_history(patient_id: str, limit: int = DOSE_HISTORY_LIMIT) -> DoseHistory:
    records = crud.db_list_recent_doses(patient_id, limit)
    medicines = crud.db_batch_get_medicines(r.get('prescription_medicine_id') for r in records)
    zone = local_zone()

    days: Dict[str, DoseDay] = {}
    for r in records:
        day = datetime.fromisoformat(r['scheduled_time']).astimezone(zone).date().isoformat()
        medicine = medicines.get(r.get('prescription_medicine_id'))
        days.setdefault(day, DoseDay(date=day)).doses.append(DoseEntry(
            medicine_name=(medicine or {}).get('medicine_name') or UNKNOWN_NAME,
            status=r.get('status'),
            status_label=status_label(r.get('status')),
        ))

    return DoseHistory(days=list(days.values()), adherence=compute_adherence(records))


# --- Medical store ---

def _store_rows(assignments: List[Dict[str, Any]], *medicine_fields: str) -> List[StorePrescriptionRow]:
    prescriptions = crud.db_batch_get_prescriptions(a.get('prescription_id') for a in assignments)
    medicines = crud.db_list_medicines_for_prescriptions(prescriptions.keys())
    user_ids = []
    for p in prescriptions.values():
        user_ids += [p.get('doctor_id'), p.get('patient_id')]
    profiles = crud.db_batch_get_profiles(user_ids)

    rows = []
    for a in assignments:
        prescription = prescriptions.get(a.get('prescription_id')) or {}
        rows.append(StorePrescriptionRow(
            id=a['id'],
            prescription_id=a.get('prescription_id'),
            status=a.get('status'),
            status_label=status_label(a.get('status')),
            assigned_at=a['assigned_at'],
            doctor_name=_name(profiles, prescription.get('doctor_id'), UNKNOWN_NAME),
            patient_name=_name(profiles, prescription.get('patient_id'), UNKNOWN_NAME),
            medicines=_medicines(medicines.get(prescription.get('id'), []), *medicine_fields),
        ))
    return rows


def store_dashboard(store_id: str) -> StoreDashboard:
    rows = _store_rows(crud.db_list_store_assignments(store_id), 'frequency')
    return StoreDashboard(
        prescriptions=rows,
        counts=StoreCounts(
            pending=sum(1 for r in rows if r.status == 'pending'),
            ready=sum(1 for r in rows if r.status == 'ready'),
            given=sum(1 for r in rows if r.status == 'given'),
        ),
    )


def store_history(store_id: str, search: Optional[str] = None) -> List[StorePrescriptionRow]:
    """Assignments already handed over (status `given`)."""
    rows = _store_rows(crud.db_list_store_assignments(store_id, status='given'))
    if search:
        needle = search.lower()
        rows = [r for r in rows if needle in r.patient_name.lower() or needle in r.doctor_name.lower()]
    return rows
