# medremind/routers/auth.py
#
# This router handles all authentication-related endpoints: sign-in, sign-up,
# sign-out and the caller's resolved session.

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..models import (
    LoginRequest,
    LoginResponse,
    SessionResponse,
    SignUpRequest,
    SignUpResponse,
)
from ..routing import NAV_ITEMS, ROLE_LABELS, home_path
from ..security import bearer_token, get_auth_state
from ..session import AuthContext, AuthState, CognitoSessionStore, Session, SessionStore

router = APIRouter()

# Sign-in/sign-up error kinds -> HTTP status
ERROR_STATUS = {
    "invalid_credentials": status.HTTP_401_UNAUTHORIZED,
    "unverified": status.HTTP_403_FORBIDDEN,
    "network": status.HTTP_503_SERVICE_UNAVAILABLE,
    "conflict": status.HTTP_409_CONFLICT,
    "invalid_input": status.HTTP_400_BAD_REQUEST,
}


def get_session_store(request: Request) -> SessionStore:
    """Session Store for this request, seeded with the caller's bearer token if any."""
    token = bearer_token(request)
    return CognitoSessionStore(session=Session(access_token=token) if token else None)


def session_response(state: AuthState) -> SessionResponse:
    role = state.role if state.session is not None else None
    return SessionResponse(
        status=state.status,
        role=role,
        role_label=ROLE_LABELS.get(role or "", ""),
        home_path=home_path(role),
        profile=state.profile,
        navigation=NAV_ITEMS.get(role or "", []),
    )


@router.post("/auth/login", response_model=LoginResponse, tags=["Authentication"])
def login(credentials: LoginRequest, store: SessionStore = Depends(get_session_store)):
    """
    Signs in against the user pool. The role is resolved by the context's
    session listener once the store reports the sign-in.
    """
    context = AuthContext(store)
    context.start()
    try:
        result = context.sign_in(credentials.email, credentials.password)
        if not result.ok:
            raise HTTPException(
                status_code=ERROR_STATUS.get(result.error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
                detail=result.error.message,
            )
        session = result.session
        return LoginResponse(
            message="Signed in successfully!",
            access_token=session.access_token,
            id_token=session.id_token,
            refresh_token=session.refresh_token,
            expires_in=session.expires_in,
            session=session_response(context.state),
        )
    finally:
        context.close()


@router.post("/auth/signup", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED, tags=["Authentication"])
def signup(details: SignUpRequest, store: SessionStore = Depends(get_session_store)):
    """
    Creates the identity. Profile and role are written now if the account is
    already confirmed, otherwise on the first sign-in after verification.
    """
    context = AuthContext(store)
    try:
        result = context.sign_up(details.email, details.password, details.full_name, details.role, details.phone)
    finally:
        context.close()
    if not result.ok:
        raise HTTPException(
            status_code=ERROR_STATUS.get(result.error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=result.error.message,
        )
    confirmed = result.identity.confirmed
    message = "Account created!" if confirmed else "Account created! Please check your email to verify your account."
    return SignUpResponse(message=message, user_id=result.identity.id, confirmed=confirmed)


@router.post("/auth/logout", response_model=SessionResponse, tags=["Authentication"])
def logout(store: SessionStore = Depends(get_session_store)):
    context = AuthContext(store)
    context.start()
    try:
        context.sign_out()
        return session_response(context.state)
    finally:
        context.close()


@router.get("/auth/session", response_model=SessionResponse, tags=["Authentication"])
def read_session(state: AuthState = Depends(get_auth_state)):
    """Resolved role, profile and navigation for the caller."""
    return session_response(state)
