from datetime import timedelta
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings
from database import utcnow
from errors import Unauthenticated, Unauthorized

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, digest: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), digest.encode("utf-8"))
    except ValueError:
        return False


def sign_token(claims: dict, settings: Settings) -> str:
    now = utcnow()
    payload = {
        **claims,
        "iat": now,
        "exp": now + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """Claims of the bearer token: user_id, email, name."""
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Access token required")
    claims = decode_token(credentials.credentials, request.app.state.context.settings)
    if not claims.get("user_id"):
        raise Unauthorized("Invalid token")
    return claims
