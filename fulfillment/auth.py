import os

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from fulfillment import config  # noqa: F401  (loads .env)


def verify_token(authorization: str = Header(...)) -> dict:
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("not a bearer token")
        claims = jwt.decode(token, os.getenv("JWT_SECRET"), algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return claims


def current_user_id(claims: dict = Depends(verify_token)) -> str:
    return str(claims["sub"])


def require_admin(claims: dict = Depends(verify_token)) -> str:
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    if "admin" not in roles and "agent" not in roles:
        raise HTTPException(status_code=403, detail="Admin access required")
    return str(claims["sub"])
