# medremind/session.py
#
# Identity and role resolution. The Session Store wraps the Cognito user pool;
# AuthContext listens to it and keeps the resolved {session, user, role,
# profile, loading} state that the route guard and every view depend on.

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import boto3
import jwt as pyjwt
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from . import crud
from .config import COGNITO_APP_CLIENT_ID, COGNITO_REGION
from .models import AppRole, Profile, UNKNOWN_ROLE


class SessionEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class Session(BaseModel):
    access_token: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class Identity(BaseModel):
    id: str
    email: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)
    confirmed: bool = True


class AuthError(BaseModel):
    # invalid_credentials | unverified | network | conflict | invalid_input | unknown
    kind: str
    message: str


class AuthResult(BaseModel):
    error: Optional[AuthError] = None
    identity: Optional[Identity] = None
    session: Optional[Session] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AuthState(BaseModel):
    session: Optional[Session] = None
    user: Optional[Identity] = None
    role: Optional[str] = None
    profile: Optional[Profile] = None
    loading: bool = True

    @property
    def status(self) -> str:
        if self.loading:
            return "loading"
        if self.session is None:
            return "unauthenticated"
        return "authenticated"


_COGNITO_ERRORS = {
    "NotAuthorizedException": ("invalid_credentials", "Invalid login credentials"),
    "UserNotFoundException": ("invalid_credentials", "Invalid login credentials"),
    "UserNotConfirmedException": ("unverified", "Email not confirmed"),
    "UsernameExistsException": ("conflict", "User already registered"),
    "InvalidPasswordException": ("invalid_input", "Password does not meet requirements"),
    "InvalidParameterException": ("invalid_input", "Invalid sign-up details"),
}


def _auth_error_from(e: Exception) -> AuthError:
    if isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code", "")
        kind, message = _COGNITO_ERRORS.get(code, ("unknown", e.response.get("Error", {}).get("Message", "Authentication failed")))
        return AuthError(kind=kind, message=message)
    return AuthError(kind="network", message="Could not reach the authentication service")


class ListenerHandle:
    def __init__(self, store: "SessionStore", listener: Callable):
        self._store = store
        self._listener = listener

    def unsubscribe(self) -> None:
        self._store.remove_listener(self._listener)


class SessionStore(ABC):
    """
    Holds the authenticated identity and emits change events to listeners.
    Concrete stores implement the actual identity provider calls.
    """

    def __init__(self):
        self._listeners: List[Callable[[SessionEvent, Optional[Session]], Any]] = []
        self._session: Optional[Session] = None
        self._identity: Optional[Identity] = None

    def on_change(self, listener: Callable[[SessionEvent, Optional[Session]], Any]) -> ListenerHandle:
        self._listeners.append(listener)
        return ListenerHandle(self, listener)

    def remove_listener(self, listener: Callable) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            listener(event, self._session)

    def current_session(self) -> Optional[Session]:
        return self._session

    def current_identity(self) -> Optional[Identity]:
        return self._identity

    @abstractmethod
    def sign_in(self, email: str, password: str) -> AuthResult:
        ...

    @abstractmethod
    def sign_up(self, email: str, password: str, attributes: Dict[str, str]) -> AuthResult:
        ...

    @abstractmethod
    def sign_out(self) -> None:
        ...


def identity_from_claims(claims: Dict[str, Any]) -> Identity:
    attributes = {k: str(v) for k, v in claims.items() if k in ("name", "phone_number", "custom:role", "email")}
    return Identity(id=claims["sub"], email=claims.get("email"), attributes=attributes)


class CognitoSessionStore(SessionStore):
    """Session Store backed by a Cognito user pool app client."""

    def __init__(self, session: Optional[Session] = None, client=None, client_id: Optional[str] = None):
        super().__init__()
        self.client = client or boto3.client("cognito-idp", region_name=COGNITO_REGION)
        self.client_id = client_id or COGNITO_APP_CLIENT_ID
        self._session = session

    def current_identity(self) -> Optional[Identity]:
        if self._session is None:
            return None
        if self._identity is None:
            self._identity = self._load_identity(self._session)
        return self._identity

    def _load_identity(self, session: Session) -> Optional[Identity]:
        if session.id_token:
            # Claims only, signature not checked here. Request tokens go through security.verify_cognito_token.
            claims = pyjwt.decode(session.id_token, options={"verify_signature": False})
            return identity_from_claims(claims)
        try:
            response = self.client.get_user(AccessToken=session.access_token)
        except ClientError as e:
            print(f"AUTH: Could not load identity for persisted session: {e}")
            return None
        claims = {a["Name"]: a["Value"] for a in response.get("UserAttributes", [])}
        claims.setdefault("sub", response.get("Username"))
        return identity_from_claims(claims)

    def _store_tokens(self, auth_result: Dict[str, Any]) -> Session:
        previous = self._session
        self._session = Session(
            access_token=auth_result["AccessToken"],
            id_token=auth_result.get("IdToken"),
            refresh_token=auth_result.get("RefreshToken") or (previous.refresh_token if previous else None),
            expires_in=auth_result.get("ExpiresIn"),
        )
        self._identity = self._load_identity(self._session)
        return self._session

    def sign_in(self, email: str, password: str) -> AuthResult:
        try:
            response = self.client.initiate_auth(
                AuthFlow="USER_PASSWORD_AUTH",
                ClientId=self.client_id,
                AuthParameters={"USERNAME": email, "PASSWORD": password},
            )
        except (ClientError, BotoCoreError) as e:
            print(f"AUTH: Sign-in failed for {email}: {e}")
            return AuthResult(error=_auth_error_from(e))

        if "AuthenticationResult" not in response:
            challenge = response.get("ChallengeName", "UNKNOWN")
            print(f"AUTH: Sign-in for {email} requires challenge {challenge}")
            return AuthResult(error=AuthError(kind="unknown", message=f"Additional sign-in step required ({challenge})"))

        session = self._store_tokens(response["AuthenticationResult"])
        print(f"AUTH: Signed in {email}")
        self._emit(SessionEvent.SIGNED_IN)
        return AuthResult(session=session, identity=self._identity)

    def sign_up(self, email: str, password: str, attributes: Dict[str, str]) -> AuthResult:
        user_attributes = [{"Name": "email", "Value": email}]
        user_attributes += [{"Name": k, "Value": v} for k, v in attributes.items() if v]
        try:
            response = self.client.sign_up(
                ClientId=self.client_id,
                Username=email,
                Password=password,
                UserAttributes=user_attributes,
            )
        except (ClientError, BotoCoreError) as e:
            print(f"AUTH: Sign-up failed for {email}: {e}")
            return AuthResult(error=_auth_error_from(e))

        identity = Identity(
            id=response["UserSub"],
            email=email,
            attributes=dict(attributes),
            confirmed=bool(response.get("UserConfirmed")),
        )
        print(f"AUTH: Created identity {identity.id} for {email} (confirmed={identity.confirmed})")
        return AuthResult(identity=identity)

    def refresh(self) -> AuthResult:
        if self._session is None or not self._session.refresh_token:
            return AuthResult(error=AuthError(kind="invalid_credentials", message="No session to refresh"))
        try:
            response = self.client.initiate_auth(
                AuthFlow="REFRESH_TOKEN_AUTH",
                ClientId=self.client_id,
                AuthParameters={"REFRESH_TOKEN": self._session.refresh_token},
            )
        except (ClientError, BotoCoreError) as e:
            print(f"AUTH: Token refresh failed: {e}")
            return AuthResult(error=_auth_error_from(e))
        session = self._store_tokens(response["AuthenticationResult"])
        self._emit(SessionEvent.TOKEN_REFRESHED)
        return AuthResult(session=session, identity=self._identity)

    def sign_out(self) -> None:
        if self._session is not None:
            try:
                self.client.global_sign_out(AccessToken=self._session.access_token)
            except (ClientError, BotoCoreError) as e:
                # The local session is cleared regardless.
                print(f"AUTH: Remote sign-out failed: {e}")
        self._session = None
        self._identity = None
        self._emit(SessionEvent.SIGNED_OUT)


def resolve_auth_state(session: Optional[Session], identity: Optional[Identity]) -> AuthState:
    """
    Looks up the role assignment and then the profile for an identity.
    A verified identity that signed up with a role but has no assignment yet
    gets its profile and role established here.
    """
    if session is None or identity is None:
        return AuthState(loading=False)

    role = crud.db_get_user_role(identity.id)
    requested_role = identity.attributes.get("custom:role")
    if role is None and requested_role in {r.value for r in AppRole}:
        print(f"AUTH: Completing deferred sign-up for {identity.id} as {requested_role}")
        crud.db_find_or_create_profile(
            identity.id,
            identity.email,
            identity.attributes.get("name"),
            identity.attributes.get("phone_number"),
            requested_role,
        )
        role = requested_role

    profile_item = crud.db_get_profile_by_id(identity.id)
    profile = Profile(**{k: profile_item.get(k) for k in ("id", "full_name", "email", "phone")}) if profile_item else None
    return AuthState(
        session=session,
        user=identity,
        role=role or UNKNOWN_ROLE,
        profile=profile,
        loading=False,
    )


class AuthContext:
    """
    Process-wide source of truth for who is signed in and with which role.
    Created once, started at process start and closed on teardown; consumers
    receive it explicitly rather than through a global.
    """

    def __init__(self, store: SessionStore):
        self.store = store
        self.state = AuthState()
        self._handle: Optional[ListenerHandle] = None

    def start(self) -> AuthState:
        if self._handle is None:
            self._handle = self.store.on_change(self._on_session_change)
        self._resolve(self.store.current_session(), self.store.current_identity())
        return self.state

    def _on_session_change(self, event: SessionEvent, session: Optional[Session]) -> None:
        print(f"AUTH: Session event {event.value}")
        if event == SessionEvent.SIGNED_OUT:
            self.state = AuthState(loading=False)
            return
        self._resolve(session, self.store.current_identity())

    def _resolve(self, session: Optional[Session], identity: Optional[Identity]) -> None:
        try:
            self.state = resolve_auth_state(session, identity)
        except (ClientError, BotoCoreError) as e:
            print(f"AUTH: Role resolution failed: {e}")
            self.state = AuthState(session=session, user=identity, role=UNKNOWN_ROLE, loading=False)

    def sign_in(self, email: str, password: str) -> AuthResult:
        # Role state follows through the change listener, not from here.
        return self.store.sign_in(email, password)

    def sign_up(self, email: str, password: str, full_name: str, role: AppRole,
                phone: Optional[str] = None) -> AuthResult:
        attributes = {"name": full_name, "custom:role": role.value}
        if phone:
            attributes["phone_number"] = phone
        result = self.store.sign_up(email, password, attributes)
        if result.ok and result.identity and result.identity.confirmed:
            crud.db_find_or_create_profile(result.identity.id, email, full_name, phone, role.value)
        return result

    def sign_out(self) -> None:
        self.store.sign_out()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.unsubscribe()
            self._handle = None
