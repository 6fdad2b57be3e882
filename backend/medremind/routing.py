# medremind/routing.py
#
# Route guard and role navigation. Guard decisions are pure functions of the
# resolved auth state so they can be applied by the HTTP layer or any client.

from typing import Dict, List, Optional

from pydantic import BaseModel

from .models import NavItem
from .session import AuthState

AUTH_PATH = "/auth"

ROLE_HOME: Dict[str, str] = {
    "doctor": "/doctor",
    "medical_store": "/store",
    "patient": "/patient",
}

ROLE_LABELS: Dict[str, str] = {
    "doctor": "Doctor",
    "medical_store": "Medical Store",
    "patient": "Patient",
}

NAV_ITEMS: Dict[str, List[NavItem]] = {
    "doctor": [
        NavItem(title="Dashboard", url="/doctor"),
        NavItem(title="New Prescription", url="/doctor/prescribe"),
        NavItem(title="History", url="/doctor/history"),
    ],
    "medical_store": [
        NavItem(title="Dashboard", url="/store"),
        NavItem(title="History", url="/store/history"),
    ],
    "patient": [
        NavItem(title="Dashboard", url="/patient"),
        NavItem(title="My Prescriptions", url="/patient/prescriptions"),
        NavItem(title="Add Prescription", url="/patient/add"),
        NavItem(title="History", url="/patient/history"),
    ],
}


class GuardDecision(BaseModel):
    action: str  # wait | redirect | render
    location: Optional[str] = None


def home_path(role: Optional[str]) -> str:
    """Home screen of a role; anything unresolvable goes to the sign-in screen."""
    return ROLE_HOME.get(role or "", AUTH_PATH)


def guard_route(state: AuthState, required_role: Optional[str] = None) -> GuardDecision:
    if state.loading:
        return GuardDecision(action="wait")
    if state.session is None:
        return GuardDecision(action="redirect", location=AUTH_PATH)
    if required_role and state.role != required_role:
        # A valid but misrouted user goes to their own home, not back to sign-in.
        return GuardDecision(action="redirect", location=home_path(state.role))
    return GuardDecision(action="render")


def root_redirect(state: AuthState) -> GuardDecision:
    if state.loading:
        return GuardDecision(action="wait")
    if state.session is None:
        return GuardDecision(action="redirect", location=AUTH_PATH)
    return GuardDecision(action="redirect", location=home_path(state.role))
