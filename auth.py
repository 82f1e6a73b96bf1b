import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Header

from config import JWT_ALGORITHM, JWT_SECRET
from errors import Forbidden, Unauthorized

logger = logging.getLogger("marketplace.auth")

ROLES = ("customer", "seller", "admin")


def create_token(user_id: str, role: str, email: str = "", expires_in: timedelta = timedelta(days=7)) -> str:
    payload = {
        "id": user_id,
        "role": role,
        "email": email,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Session expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Unauthorized")


def current_user(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Unauthorized")
    claims = decode_token(authorization[len("Bearer "):].strip())
    if claims.get("role") not in ROLES or not claims.get("id"):
        raise Unauthorized("Unauthorized")
    return claims


def require_role(*roles: str):
    """FastAPI dependency accepting only the given roles."""

    def dependency(authorization: Optional[str] = Header(None)) -> dict:
        user = current_user(authorization)
        if user["role"] not in roles:
            logger.warning("Role %s denied, requires %s", user["role"], roles)
            raise Forbidden("Forbidden")
        return user

    return dependency
