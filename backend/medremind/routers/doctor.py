# medremind/routers/doctor.py
#
# This router handles the doctor screens: dashboard stats, issuing a
# prescription and the prescription history.

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .. import flows, views
from ..flows import REMOTE_ERRORS
from ..models import AppRole, DoctorStats, FlowResponse, PrescriptionCreate, PrescriptionHistoryRow
from ..security import require_role
from ..session import AuthState

router = APIRouter(prefix="/doctor", tags=["Doctor"])

doctor_only = require_role(AppRole.DOCTOR)


@router.get("", response_model=DoctorStats)
def doctor_dashboard(state: AuthState = Depends(doctor_only)):
    try:
        return views.doctor_dashboard_stats(state.user.id)
    except REMOTE_ERRORS as e:
        print(f"Error loading dashboard for doctor {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not load dashboard.")


@router.post("/prescribe", response_model=FlowResponse, status_code=status.HTTP_201_CREATED)
def create_prescription(prescription_data: PrescriptionCreate, state: AuthState = Depends(doctor_only)):
    """
    Issues a prescription to the patient with the given email, optionally
    assigning it to a medical store. Doctor-only endpoint.
    """
    return flows.create_prescription(state.user.id, prescription_data)


@router.get("/history", response_model=List[PrescriptionHistoryRow])
def prescription_history(search: Optional[str] = None, state: AuthState = Depends(doctor_only)):
    """All prescriptions issued by the doctor, newest first, optionally filtered."""
    try:
        return views.doctor_prescription_history(state.user.id, search)
    except REMOTE_ERRORS as e:
        print(f"Error listing prescriptions for doctor {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not retrieve prescriptions.")
