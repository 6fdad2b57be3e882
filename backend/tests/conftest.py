# backend/tests/conftest.py
#
# Shared test setup. The settings in `medremind.config` are read at import
# time, so the dummy environment has to be in place before any test module
# imports the application.

import os

# --- Set dummy environment variables for testing ---
os.environ.setdefault('AWS_REGION', "us-east-1")
os.environ.setdefault('AWS_DEFAULT_REGION', "us-east-1")
os.environ['COGNITO_REGION'] = "us-east-1"
os.environ['COGNITO_USERPOOL_ID'] = "us-east-1_dummy"
os.environ['COGNITO_APP_CLIENT_ID'] = "dummy_app_client_id"
os.environ['MEDREMIND_TIMEZONE'] = "UTC"
# --- End environment variable setup ---

import pytest

from medremind.models import Profile
from medremind.session import (
    AuthError,
    AuthResult,
    AuthState,
    Identity,
    Session,
    SessionEvent,
    SessionStore,
)


def make_state(role, user_id="user-1", loading=False, signed_in=True) -> AuthState:
    """Resolved auth state for a signed-in (or anonymous) caller with the given role."""
    if not signed_in:
        return AuthState(loading=loading)
    return AuthState(
        session=Session(access_token="token"),
        user=Identity(id=user_id, email=f"{user_id}@example.com"),
        role=role,
        profile=Profile(id=user_id, full_name="Test User", email=f"{user_id}@example.com"),
        loading=loading,
    )


class FakeSessionStore(SessionStore):
    """In-memory Session Store: sign-in succeeds for `password`, anything else is rejected."""

    def __init__(self, identity: Identity = None, confirmed: bool = True):
        super().__init__()
        self.identity = identity or Identity(id="user-1", email="user-1@example.com")
        self.confirmed = confirmed
        self.signed_out = False

    def sign_in(self, email, password):
        if password != "password":
            return AuthResult(error=AuthError(kind="invalid_credentials", message="Invalid login credentials"))
        self._session = Session(access_token="access", id_token="id", refresh_token="refresh", expires_in=3600)
        self._identity = self.identity
        self._emit(SessionEvent.SIGNED_IN)
        return AuthResult(session=self._session, identity=self._identity)

    def sign_up(self, email, password, attributes):
        identity = Identity(id="new-user", email=email, attributes=attributes, confirmed=self.confirmed)
        return AuthResult(identity=identity)

    def sign_out(self):
        self.signed_out = True
        self._session = None
        self._identity = None
        self._emit(SessionEvent.SIGNED_OUT)


@pytest.fixture
def fake_store():
    return FakeSessionStore()
