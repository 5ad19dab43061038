# laudo_core/common/api/exceptions.py

from __future__ import annotations

import uuid
from typing import Any, Iterable

import structlog
from django.core.exceptions import ObjectDoesNotExist
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, NotAuthenticated, NotFound, PermissionDenied, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

log = structlog.get_logger(__name__)


def ensure_request_id(request) -> str:
    """
    Ensures request has a stable request_id attribute and returns it.
    Safe to call from middleware and DRF exception handler.
    """
    rid = getattr(request, "request_id", None) if request is not None else None
    if not rid:
        rid = uuid.uuid4().hex
        if request is not None:
            setattr(request, "request_id", rid)
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    """
    Canonical error envelope.
    Reusable from Django middleware (JsonResponse) and DRF (Response).
    """
    rid = ensure_request_id(request)
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": rid,
        }
    }


class DomainError(APIException):
    """
    Base for business errors that carry structured details next to the message.
    """
    extra: dict[str, Any] | None = None

    def __init__(self, detail=None, code=None, **extra):
        super().__init__(detail=detail or self.default_detail, code=code or self.default_code)
        self.extra = extra or None


class ConflictError(DomainError):
    """
    409 Conflict for business rules that block an action.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    default_code = "conflict"


class InvalidStateTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Operation not allowed in the current status."
    default_code = "invalid_state_transition"

    def __init__(self, *, current: str, attempted: str, detail: str | None = None):
        self.current = current
        self.attempted = attempted
        super().__init__(
            detail or f"Cannot go from '{current}' to '{attempted}'.",
            current=current,
            attempted=attempted,
        )


class AlreadyPaidError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "One or more reports already have a registered payment."
    default_code = "already_paid"

    def __init__(self, report_ids: Iterable[Any]):
        self.report_ids = [str(r) for r in report_ids]
        super().__init__(reports=self.report_ids)


class CrossDoctorBatchError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "All reports in a payment must belong to the same doctor."
    default_code = "cross_doctor_batch"

    def __init__(self, report_ids: Iterable[Any]):
        self.report_ids = [str(r) for r in report_ids]
        super().__init__(reports=self.report_ids)


class InvalidCredential(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid certificate credential."
    default_code = "invalid_credential"


class ExpiredCertificate(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Digital certificate is expired."
    default_code = "expired_certificate"


class ExternalServiceError(DomainError):
    """
    Storage, PDF rendering, certificate signing or e-mail delivery failed.
    """
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "An external service failed."
    default_code = "external_service_error"

    def __init__(self, service: str, detail: str | None = None):
        self.service = service
        super().__init__(detail or f"The {service} service failed.", service=service)


def _code_for(exc: Exception, http_status: int) -> str:
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, NotAuthenticated):
        return "not_authenticated"
    if isinstance(exc, PermissionDenied):
        return "permission_denied"
    if isinstance(exc, (Http404, NotFound)):
        return "not_found"
    if isinstance(exc, APIException):
        return getattr(exc, "default_code", "api_error") or "api_error"
    if http_status >= 500:
        return "server_error"
    return "error"


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")

    if isinstance(exc, ObjectDoesNotExist):
        exc = NotFound()

    response = drf_exception_handler(exc, context)

    # Truly unhandled error
    if response is None:
        log.error("api.unhandled_exception", exc_info=exc)
        return Response(
            build_error_envelope(
                request=request,
                code="server_error",
                message="Unexpected server error.",
                details=None,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    http_status = response.status_code
    code = _code_for(exc, http_status)

    data = response.data

    # 1) {"detail": "..."} -> message=detail, details=None (or domain extras)
    # 2) {"detail": "...", ...} -> message=detail, details={...without detail}
    # 3) otherwise -> message="Request failed.", details=data
    message = "Request failed."
    details = data

    if isinstance(data, dict) and "detail" in data:
        message = str(data.get("detail"))
        rest = {k: v for k, v in data.items() if k != "detail"}
        details = rest or None

    if isinstance(exc, DomainError) and exc.extra:
        details = {**(details or {}), **exc.extra}

    if http_status >= 500:
        log.error("api.server_error", code=code, message=message)

    return Response(
        build_error_envelope(
            request=request,
            code=code,
            message=message,
            details=details,
        ),
        status=http_status,
        headers=response.headers,
    )
