"""Bearer session tokens resolved into callers."""

from __future__ import annotations

import time

import jwt
from pydantic import BaseModel, ValidationError

from hackathon_atlas.models import Anonymous, Authenticated, Caller, Role

SESSION_TTL_SECONDS = 8 * 3600
TOKEN_TYPE = "hackathon-session"


class SessionClaims(BaseModel):
    """JWT payload for platform sessions."""

    sub: str
    role: Role
    type: str = TOKEN_TYPE
    iat: int
    exp: int


class SessionAuthenticator:
    """Issues and validates HS256 session tokens."""

    def __init__(self, signing_key: str, ttl_seconds: int = SESSION_TTL_SECONDS) -> None:
        self._signing_key = signing_key
        self._ttl = ttl_seconds

    def issue(self, user_id: str, role: Role | str) -> str:
        now = int(time.time())
        claims = SessionClaims(sub=user_id, role=Role(role), iat=now, exp=now + self._ttl)
        return jwt.encode(claims.model_dump(mode="json"), self._signing_key, algorithm="HS256")

    def resolve(self, token: str | None) -> Caller:
        """Return the authenticated caller, or Anonymous for any bad token."""
        if not token:
            return Anonymous()
        try:
            payload = jwt.decode(token, self._signing_key, algorithms=["HS256"])
            claims = SessionClaims(**payload)
        except (jwt.PyJWTError, ValidationError):
            return Anonymous()
        if claims.type != TOKEN_TYPE:
            return Anonymous()
        return Authenticated(user_id=claims.sub, role=claims.role)
