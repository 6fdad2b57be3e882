# medremind/routers/patient.py
#
# This router handles the patient screens: today's medicines, dose tracking,
# prescriptions, self-added prescriptions and dose history.

from typing import List
from fastapi import APIRouter, Depends, HTTPException, status

from .. import flows, views
from ..flows import REMOTE_ERRORS
from ..models import (
    AppRole,
    DoseHistory,
    FlowResponse,
    PatientDashboard,
    PatientPrescriptionCreate,
    PrescriptionView,
    TrackDoseRequest,
)
from ..security import require_role
from ..session import AuthState

router = APIRouter(prefix="/patient", tags=["Patient"])

patient_only = require_role(AppRole.PATIENT)


@router.get("", response_model=PatientDashboard)
def patient_dashboard(state: AuthState = Depends(patient_only)):
    """Today's medicines with their dose status, and today's taken/missed counts."""
    try:
        return views.patient_dashboard(state.user.id)
    except REMOTE_ERRORS as e:
        print(f"Error loading dashboard for patient {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not load dashboard.")


@router.post("/doses", response_model=FlowResponse)
def track_dose(dose: TrackDoseRequest, state: AuthState = Depends(patient_only)):
    return flows.track_dose(state.user.id, dose.prescription_medicine_id, dose.status)


@router.get("/prescriptions", response_model=List[PrescriptionView])
def view_prescriptions(state: AuthState = Depends(patient_only)):
    try:
        return views.patient_prescriptions(state.user.id)
    except REMOTE_ERRORS as e:
        print(f"Error listing prescriptions for patient {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not retrieve prescriptions.")


@router.post("/add", response_model=FlowResponse, status_code=status.HTTP_201_CREATED)
def add_prescription(prescription_data: PatientPrescriptionCreate, state: AuthState = Depends(patient_only)):
    return flows.add_prescription(state.user.id, prescription_data)


@router.get("/history", response_model=DoseHistory)
def dose_history(state: AuthState = Depends(patient_only)):
    try:
        return views.dose_history(state.user.id)
    except REMOTE_ERRORS as e:
        print(f"Error loading dose history for patient {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not retrieve dose history.")
