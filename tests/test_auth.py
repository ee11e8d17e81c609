import pytest
from fastapi import HTTPException
from jose import jwt

from fulfillment.auth import current_user_id, require_admin, verify_token


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "test-secret")


def bearer(claims, secret="test-secret"):
    return "Bearer " + jwt.encode(claims, secret, algorithm="HS256")


def test_valid_token_returns_claims():
    claims = verify_token(bearer({"sub": "user-1", "roles": ["buyer"]}))
    assert claims["sub"] == "user-1"
    assert current_user_id(claims) == "user-1"


@pytest.mark.parametrize("header", [
    "garbage",
    "Basic abc",
    "Bearer not-a-jwt",
])
def test_malformed_header_rejected(header):
    with pytest.raises(HTTPException) as exc:
        verify_token(header)
    assert exc.value.status_code == 401


def test_wrong_secret_rejected():
    with pytest.raises(HTTPException) as exc:
        verify_token(bearer({"sub": "user-1"}, secret="other"))
    assert exc.value.status_code == 401


def test_token_without_subject_rejected():
    with pytest.raises(HTTPException) as exc:
        verify_token(bearer({"roles": ["admin"]}))
    assert exc.value.status_code == 401


def test_admin_and_agent_roles_allowed():
    assert require_admin({"sub": "a-1", "roles": ["admin"]}) == "a-1"
    assert require_admin({"sub": "a-2", "roles": "agent"}) == "a-2"


def test_other_roles_forbidden():
    with pytest.raises(HTTPException) as exc:
        require_admin({"sub": "u-1", "roles": ["seller"]})
    assert exc.value.status_code == 403
