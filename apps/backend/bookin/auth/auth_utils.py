# bookin/auth/auth_utils.py
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from .. import config
from ..errors import AuthenticationError, NotConfiguredError


def _secret() -> str:
    secret = config.jwt_secret()
    if not secret:
        # 冇 secret 就唔好簽 / 驗 token，避免 silent bug
        raise NotConfiguredError("Sign-in is not configured (missing JWT_SECRET)")
    return secret


def create_access_token(user_id: str, email: str, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes if expires_minutes is not None else config.jwt_expires_minutes()
    payload = {
        "sub": str(user_id),
        "email": email,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, _secret(), algorithm=config.jwt_alg())


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, _secret(), algorithms=[config.jwt_alg()])
    except jwt.PyJWTError:
        return None


def user_id_from_authorization(authorization: Optional[str]) -> str:
    """'Bearer <jwt>' → user id；任何問題都係 AuthenticationError。"""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Not signed in")
    claims = decode_token(token.strip())
    if not claims or not claims.get("sub"):
        raise AuthenticationError("Invalid or expired token")
    return str(claims["sub"])
