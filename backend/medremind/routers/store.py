# medremind/routers/store.py
#
# This router handles the medical store screens: assigned prescriptions,
# fulfilment status updates and the hand-over history.

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status

from .. import flows, views
from ..flows import REMOTE_ERRORS
from ..models import AppRole, FlowResponse, StoreDashboard, StorePrescriptionRow, StoreStatusUpdate
from ..security import require_role
from ..session import AuthState

router = APIRouter(prefix="/store", tags=["Medical Store"])

store_only = require_role(AppRole.MEDICAL_STORE)


@router.get("", response_model=StoreDashboard)
def store_dashboard(state: AuthState = Depends(store_only)):
    try:
        return views.store_dashboard(state.user.id)
    except REMOTE_ERRORS as e:
        print(f"Error loading dashboard for store {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not load dashboard.")


@router.put("/assignments/{assignment_id}/status", response_model=FlowResponse)
def update_status(assignment_id: str, update: StoreStatusUpdate, state: AuthState = Depends(store_only)):
    """Moves an assignment to any status; there is no fixed order of statuses."""
    return flows.update_store_status(state.user.id, assignment_id, update.status)


@router.get("/history", response_model=List[StorePrescriptionRow])
def store_history(search: Optional[str] = None, state: AuthState = Depends(store_only)):
    try:
        return views.store_history(state.user.id, search)
    except REMOTE_ERRORS as e:
        print(f"Error loading history for store {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not retrieve history.")
