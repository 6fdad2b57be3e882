# medremind/flows.py
#
# Mutation flows. Each flow issues its writes one after another and never
# undoes an earlier write when a later one fails: a prescription row can be
# left without medicines if the medicine insert fails. Errors surface as a
# single HTTPException detail; soft problems come back as warnings.

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException, status

from . import crud, views
from .models import (
    DoseStatus,
    FlowResponse,
    PatientPrescriptionCreate,
    PrescriptionCreate,
    StoreStatus,
)

REMOTE_ERRORS = (ClientError, BotoCoreError)

PATIENT_NOT_FOUND = "Patient not found with that email"
STORE_NOT_FOUND = "Medical store not found, prescription created without store assignment"


def _remote_failure(action: str, error: Exception) -> HTTPException:
    print(f"FLOW ERROR: Failed to {action}: {error}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to {action}")


def create_prescription(doctor_id: str, data: PrescriptionCreate) -> FlowResponse:
    """
    Doctor flow: resolve the patient by email, write the prescription and its
    medicines, optionally assign a store by email, then notify the patient.
    """
    try:
        patient = crud.db_get_profile_by_email(data.patient_email)
    except REMOTE_ERRORS as e:
        raise _remote_failure("create prescription", e)
    if not patient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=PATIENT_NOT_FOUND)

    try:
        prescription = crud.db_create_prescription(patient['id'], doctor_id, data.notes, data.reminders_enabled)
        crud.db_create_prescription_medicines(prescription['id'], data.medicines)
    except REMOTE_ERRORS as e:
        raise _remote_failure("create prescription", e)

    warnings: List[str] = []
    if data.store_email:
        try:
            store = crud.db_get_profile_by_email(data.store_email)
            if store:
                crud.db_create_store_assignment(prescription['id'], store['id'])
            else:
                warnings.append(STORE_NOT_FOUND)
        except REMOTE_ERRORS as e:
            print(f"FLOW WARN: Store assignment for {prescription['id']} failed: {e}")
            warnings.append("Prescription created, but the store assignment could not be saved")

    try:
        crud.db_create_notification(
            patient['id'],
            title="New Prescription",
            message="You have a new prescription from your doctor",
            type="prescription",
        )
    except REMOTE_ERRORS as e:
        print(f"FLOW WARN: Patient notification for {prescription['id']} failed: {e}")
        warnings.append("Prescription created, but the patient could not be notified")

    print(f"FLOW: Doctor {doctor_id} created prescription {prescription['id']} with {len(data.medicines)} medicines")
    return FlowResponse(
        message="Prescription created successfully!",
        warnings=warnings,
        prescription_id=prescription['id'],
    )


def add_prescription(patient_id: str, data: PatientPrescriptionCreate) -> FlowResponse:
    """Patient self-entry: no doctor, reminders always on, no store or notification."""
    try:
        prescription = crud.db_create_prescription(patient_id, None, data.notes, True)
        crud.db_create_prescription_medicines(prescription['id'], data.medicines)
    except REMOTE_ERRORS as e:
        raise _remote_failure("add prescription", e)
    print(f"FLOW: Patient {patient_id} added prescription {prescription['id']}")
    return FlowResponse(message="Prescription added!", prescription_id=prescription['id'])


def track_dose(patient_id: str, medicine_id: str, dose_status: DoseStatus,
               today_doses: Optional[List[Dict[str, Any]]] = None,
               now: Optional[datetime] = None) -> FlowResponse:
    """
    Records today's dose for a medicine. The existing record is looked up in
    `today_doses` (fetched here when not supplied) and updated; otherwise a new
    record is inserted. Nothing serializes two concurrent calls, so both may
    miss each other's record and insert twice.
    """
    now = now or datetime.now(timezone.utc)
    try:
        if today_doses is None:
            today_doses = views.patient_today_doses(patient_id, now)
        existing = next((d for d in today_doses if d.get('prescription_medicine_id') == medicine_id), None)

        taken_at = now.isoformat() if dose_status == DoseStatus.TAKEN else None
        if existing:
            crud.db_update_dose_record(existing['id'], dose_status.value, taken_at)
            record_id = existing['id']
        else:
            record = crud.db_create_dose_record(medicine_id, patient_id, dose_status.value, now.isoformat(), taken_at)
            record_id = record['id']
    except REMOTE_ERRORS as e:
        raise _remote_failure("track dose", e)

    message = "Marked as taken" if dose_status == DoseStatus.TAKEN else "Marked as missed"
    return FlowResponse(message=message, record_id=record_id)


def update_store_status(store_id: str, assignment_id: str, new_status: StoreStatus) -> FlowResponse:
    """Sets an assignment's status. Every status is reachable from every other."""
    try:
        updated = crud.db_update_store_assignment_status(assignment_id, store_id, new_status.value)
    except REMOTE_ERRORS as e:
        raise _remote_failure("update status", e)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store assignment not found")
    return FlowResponse(message=f"Status updated to {new_status.value}", record_id=assignment_id)
