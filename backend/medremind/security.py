# medremind/security.py
#
# This module handles security-related functions: Cognito token verification,
# resolving the caller's auth state for each request, and the role guard
# dependencies used by the routers.

from typing import Dict, Any, Optional, List

import httpx
import jwt as pyjwt
from jwt.algorithms import RSAAlgorithm
from fastapi import Depends, HTTPException, status, Request
from starlette.concurrency import run_in_threadpool

from .config import COGNITO_APP_CLIENT_ID, COGNITO_ISSUER, COGNITO_JWKS_URL
from .models import AppRole
from .routing import guard_route
from .session import AuthState, Session, identity_from_claims, resolve_auth_state

JWT_ALGORITHM = "RS256"

jwks_cache: Optional[List[Dict[str, Any]]] = None


async def get_jwks() -> List[Dict[str, Any]]:
    """Fetches and caches Cognito JSON Web Keys."""
    global jwks_cache
    if jwks_cache is None:
        async with httpx.AsyncClient() as client:
            try:
                response = await client.get(COGNITO_JWKS_URL)
                response.raise_for_status()
                jwks_cache = response.json()["keys"]
            except (httpx.HTTPError, KeyError, ValueError):
                raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not fetch auth keys")
    return jwks_cache


async def verify_cognito_token(token: str) -> Dict[str, Any]:
    """Verifies a Cognito ID or access token against the user pool keys and returns its claims."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        header = pyjwt.get_unverified_header(token)
    except pyjwt.PyJWTError:
        raise credentials_exception

    keys = await get_jwks()
    jwk = next((k for k in keys if k.get("kid") == header.get("kid")), None)
    if jwk is None:
        print(f"AUTH: No signing key matches kid {header.get('kid')}")
        raise credentials_exception

    try:
        claims = pyjwt.decode(
            token,
            RSAAlgorithm.from_jwk(jwk),
            algorithms=[JWT_ALGORITHM],
            issuer=COGNITO_ISSUER,
            # ID tokens carry the client in `aud`, access tokens in `client_id`
            options={"verify_aud": False},
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except pyjwt.PyJWTError:
        raise credentials_exception

    client_id = claims.get("aud") if claims.get("token_use") == "id" else claims.get("client_id")
    if COGNITO_APP_CLIENT_ID and client_id != COGNITO_APP_CLIENT_ID:
        print(f"AUTH: Token issued for unexpected client {client_id}")
        raise credentials_exception
    return claims


def bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


async def get_cognito_user_info(request: Request) -> Optional[Dict[str, Any]]:
    """
    Dependency that returns the caller's Cognito claims, or None for an anonymous request.
    Behind API Gateway the authorizer has already validated the token and its claims
    are read from the request context; otherwise the bearer token is verified here.
    """
    try:
        claims = request.scope['aws.event']['requestContext']['authorizer']['claims']
        if claims.get("sub"):
            return claims
    except KeyError:
        pass

    token = bearer_token(request)
    if token is None:
        return None
    return await verify_cognito_token(token)


async def get_auth_state(
    request: Request,
    claims: Optional[Dict[str, Any]] = Depends(get_cognito_user_info),
) -> AuthState:
    """Resolves role and profile for the caller. Anonymous callers are unauthenticated."""
    if not claims:
        return AuthState(loading=False)
    session = Session(access_token=bearer_token(request) or "")
    # Role and profile lookups hit DynamoDB; keep them off the event loop
    return await run_in_threadpool(resolve_auth_state, session, identity_from_claims(claims))


def require_role(role: AppRole):
    """
    Builds a dependency that gates a route on the caller's role. Callers without a
    session are sent to the sign-in screen; a role mismatch is sent to the
    caller's own home screen.
    """
    async def guard(state: AuthState = Depends(get_auth_state)) -> AuthState:
        decision = guard_route(state, role.value)
        if decision.action == "wait":
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session is still loading")
        if decision.action == "redirect":
            raise HTTPException(
                status_code=status.HTTP_307_TEMPORARY_REDIRECT,
                detail=f"Redirecting to {decision.location}",
                headers={"Location": decision.location},
            )
        return state
    return guard


async def require_session(state: AuthState = Depends(get_auth_state)) -> AuthState:
    """Any signed-in caller, whatever the role."""
    if state.session is None or state.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return state
