"""FastAPI dependencies for resolving callers and mapping errors."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from hackathon_atlas.auth.guard import AuthGuard
from hackathon_atlas.auth.session import SessionAuthenticator
from hackathon_atlas.errors import AtlasError
from hackathon_atlas.models import Anonymous, Authenticated, Caller

logger = logging.getLogger(__name__)

# Module-level references, set by the app factory.
_authenticator: SessionAuthenticator | None = None
_guard: AuthGuard | None = None


def init_auth(authenticator: SessionAuthenticator, guard: AuthGuard) -> None:
    """Called by the app factory to inject the session and guard services."""
    global _authenticator, _guard  # noqa: PLW0603
    _authenticator = authenticator
    _guard = guard


def get_guard() -> AuthGuard:
    assert _guard is not None, "AuthGuard not initialized"
    return _guard


def current_caller(request: Request) -> Caller:
    """Resolve the Bearer token, if any, into a caller."""
    auth_header = request.headers.get("Authorization", "")
    if _authenticator is None or not auth_header.startswith("Bearer "):
        return Anonymous()
    return _authenticator.resolve(auth_header[7:])


def require_user(caller: Annotated[Caller, Depends(current_caller)]) -> Authenticated:
    """Require a valid session. Returns 401 if missing/invalid."""
    try:
        return get_guard().require_authenticated(caller)
    except AtlasError as e:
        raise http_error(e) from e


def require_admin(caller: Annotated[Caller, Depends(current_caller)]) -> Authenticated:
    """Require the admin or super-admin role."""
    try:
        return get_guard().require_admin(caller)
    except AtlasError as e:
        raise http_error(e) from e


def http_error(error: AtlasError) -> HTTPException:
    """Translate a service error into a response, logging the full detail."""
    if error.status_code >= 500:
        logger.error("%s: %s", error.kind, error.message)
    else:
        logger.debug("%s: %s", error.kind, error.message)
    return HTTPException(status_code=error.status_code, detail=error.public_message)
