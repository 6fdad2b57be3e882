# medremind/main.py
#
# This is the main entry point for the FastAPI application.
# It creates the FastAPI app instance and includes the role routers.
#
# The `handler` function is the entry point for AWS Lambda.

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import RedirectResponse
from mangum import Mangum

from .routers import auth, doctor, patient, store, notifications
from .routing import root_redirect
from .security import get_auth_state
from .session import AuthState

app = FastAPI(
    title="MedRemind API",
    description="Prescriptions, store fulfilment and dose tracking for doctors, medical stores and patients."
)

app.include_router(auth.router)
app.include_router(doctor.router)
app.include_router(store.router)
app.include_router(patient.router)
app.include_router(notifications.router)


@app.get("/health", tags=["Health Check"])
def health_check():
    """A simple endpoint to confirm the API is running."""
    return {"status": "ok"}


@app.get("/", tags=["Navigation"])
async def root(state: AuthState = Depends(get_auth_state)):
    """Sends the caller to their role's home screen, or to sign-in."""
    decision = root_redirect(state)
    if decision.action != "redirect":
        raise HTTPException(status_code=503, detail="Session is still loading")
    return RedirectResponse(url=decision.location, status_code=307)


# This handler is the entry point for AWS Lambda
handler = Mangum(app, lifespan="off")
