"""Error taxonomy for the Atlas cluster lifecycle manager.

Every failure a service can report is an ``AtlasError`` subclass carrying
its ``kind`` and the HTTP status the route layer should answer with.
``public_message`` is safe to show to untrusted callers; the full message
(which may contain upstream detail) is only ever logged.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    FEATURE_DISABLED = "feature_disabled"
    INVALID_CONFIG = "invalid_config"
    INVALID_REQUEST = "invalid_request"
    QUOTA_EXCEEDED = "quota_exceeded"
    CONFLICT = "conflict"
    PROVISIONING_FAILED = "provisioning_failed"
    DELETION_FAILED = "deletion_failed"
    STATUS_CHECK_FAILED = "status_check_failed"
    CONTROL_PLANE = "control_plane"
    EXTERNAL_NOT_FOUND = "external_not_found"


class ConfigError(Exception):
    """Raised when settings are missing or malformed."""


class AtlasError(Exception):
    """Base class for every orchestrator failure."""

    kind: ErrorKind = ErrorKind.CONTROL_PLANE
    status_code: int = 500
    default_public_message = "Internal error"

    def __init__(self, message: str, *, public_message: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self._public_message = public_message

    @property
    def public_message(self) -> str:
        if self._public_message is not None:
            return self._public_message
        # 4xx messages describe the caller's own request and are safe to echo.
        if self.status_code < 500:
            return self.message
        return self.default_public_message


class Unauthorized(AtlasError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401


class Forbidden(AtlasError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class NotFound(AtlasError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class FeatureDisabled(AtlasError):
    kind = ErrorKind.FEATURE_DISABLED
    status_code = 403


class InvalidConfig(AtlasError):
    kind = ErrorKind.INVALID_CONFIG
    status_code = 400


class InvalidRequest(AtlasError):
    kind = ErrorKind.INVALID_REQUEST
    status_code = 400


class QuotaExceeded(AtlasError):
    kind = ErrorKind.QUOTA_EXCEEDED
    status_code = 400


class Conflict(AtlasError):
    kind = ErrorKind.CONFLICT
    status_code = 409


class ProvisioningFailed(AtlasError):
    kind = ErrorKind.PROVISIONING_FAILED
    status_code = 500
    default_public_message = "Failed to provision cluster"


class DeletionFailed(AtlasError):
    kind = ErrorKind.DELETION_FAILED
    status_code = 500
    default_public_message = "Failed to delete cluster"


class StatusCheckFailed(AtlasError):
    kind = ErrorKind.STATUS_CHECK_FAILED
    status_code = 500
    default_public_message = "Failed to check cluster status"


class ControlPlaneError(AtlasError):
    """An Atlas Admin API call failed.

    ``http_status`` is the upstream status (0 when the request never got a
    response), ``error_code`` and ``detail`` come from the Atlas error body.
    """

    kind = ErrorKind.CONTROL_PLANE
    status_code = 502
    default_public_message = "Upstream control-plane error"

    def __init__(
        self,
        http_status: int,
        error_code: str = "",
        detail: str = "",
    ) -> None:
        super().__init__(
            f"Atlas API error {http_status}: {detail or error_code or 'Unknown'}"
        )
        self.http_status = http_status
        self.error_code = error_code
        self.detail = detail


class ExternalNotFound(ControlPlaneError):
    """The addressed Atlas resource does not exist (HTTP 404)."""

    kind = ErrorKind.EXTERNAL_NOT_FOUND
