"""Application error taxonomy.

Domain code raises these; the API layer renders them as `{"detail": ...}` JSON
with the class's status code. Detail strings are short snake_case codes, the
same convention the HTTP responses use.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    status_code: int = 500
    default_detail: str = "internal_error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthorized(AppError):
    status_code = 401
    default_detail = "unauthorized"


class Forbidden(AppError):
    status_code = 403
    default_detail = "forbidden"


class NotFound(AppError):
    status_code = 404
    default_detail = "not_found"


class ValidationError(AppError):
    status_code = 400
    default_detail = "invalid_request"


class ConflictError(AppError):
    status_code = 409
    default_detail = "conflict"


class UpstreamError(AppError):
    """Billing provider / email relay failure.

    `detail` is what the client sees (kept generic); `context` is logged only.
    """

    status_code = 500
    default_detail = "upstream_error"

    def __init__(self, detail: Optional[str] = None, *, context: str = ""):
        super().__init__(detail)
        self.context = context


class ConfigurationError(AppError):
    status_code = 500
    default_detail = "configuration_error"


class BillingAuthError(UpstreamError):
    status_code = 502
    default_detail = "billing_provider_auth_failed"
