# backend/tests/test_security.py
#
# Tests for Cognito token verification and the role guard dependencies in
# `medremind/security.py`. Tokens are signed with a throwaway RSA key whose
# public half stands in for the user pool JWKS.

import json
import time

import jwt as pyjwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from jwt.algorithms import RSAAlgorithm

from conftest import make_state
from medremind import security
from medremind.models import AppRole

KID = "test-key"

_private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _jwks():
    jwk = json.loads(RSAAlgorithm.to_jwk(_private_key.public_key()))
    jwk["kid"] = KID
    return [jwk]


def _token(exp_offset=300, kid=KID, **claims):
    payload = {
        "sub": "user-1",
        "iss": security.COGNITO_ISSUER,
        "token_use": "id",
        "aud": security.COGNITO_APP_CLIENT_ID,
        "exp": int(time.time()) + exp_offset,
    }
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    return pyjwt.encode(payload, _private_key, algorithm="RS256", headers={"kid": kid})


@pytest.fixture(autouse=True)
def jwks(mocker):
    return mocker.patch("medremind.security.get_jwks", return_value=_jwks())


@pytest.mark.asyncio
async def test_verify_id_token():
    claims = await security.verify_cognito_token(_token())
    assert claims["sub"] == "user-1"


@pytest.mark.asyncio
async def test_verify_access_token_uses_client_id():
    token = _token(token_use="access", aud=None, client_id=security.COGNITO_APP_CLIENT_ID)
    claims = await security.verify_cognito_token(token)
    assert claims["token_use"] == "access"


@pytest.mark.asyncio
async def test_verify_expired_token():
    with pytest.raises(HTTPException) as excinfo:
        await security.verify_cognito_token(_token(exp_offset=-10))

    # Check that the exception has the correct 401 status code
    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Token has expired"


@pytest.mark.parametrize("token_kwargs", [
    {"kid": "unknown-key"},
    {"iss": "https://cognito-idp.us-east-1.amazonaws.com/other-pool"},
    {"aud": "another-app-client"},
])
@pytest.mark.asyncio
async def test_verify_rejects_foreign_tokens(token_kwargs):
    with pytest.raises(HTTPException) as excinfo:
        await security.verify_cognito_token(_token(**token_kwargs))
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_verify_rejects_garbage():
    with pytest.raises(HTTPException) as excinfo:
        await security.verify_cognito_token("not-a-jwt")
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_require_role_renders_for_matching_role():
    guard = security.require_role(AppRole.DOCTOR)
    state = make_state("doctor")
    assert await guard(state=state) is state


@pytest.mark.asyncio
async def test_require_role_mismatch_redirects_home():
    guard = security.require_role(AppRole.DOCTOR)
    with pytest.raises(HTTPException) as excinfo:
        await guard(state=make_state("patient"))
    assert excinfo.value.status_code == 307
    assert excinfo.value.headers["Location"] == "/patient"


@pytest.mark.asyncio
async def test_require_role_anonymous_redirects_to_sign_in():
    guard = security.require_role(AppRole.PATIENT)
    with pytest.raises(HTTPException) as excinfo:
        await guard(state=make_state(None, signed_in=False))
    assert excinfo.value.headers["Location"] == "/auth"


@pytest.mark.asyncio
async def test_require_session_rejects_anonymous():
    with pytest.raises(HTTPException) as excinfo:
        await security.require_session(state=make_state(None, signed_in=False))
    assert excinfo.value.status_code == 401
