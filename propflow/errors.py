# propflow/errors.py
from __future__ import annotations

from typing import Any, Optional


class PropFlowError(Exception):
    """Base for errors raised by services; routers map them to HTTP responses."""

    code = "propflow_error"
    status_code = 400

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class NotFoundError(PropFlowError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found", details={"entity": entity, "id": entity_id})


class InvalidStateError(PropFlowError):
    """Operation attempted against an entity in a disallowed precondition state."""

    code = "invalid_state"
    status_code = 409


class InvalidTransitionError(PropFlowError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid status transition from {current} to {requested}",
            details={"current": current, "requested": requested},
        )


class ExternalServiceError(PropFlowError):
    """
    Wraps a payment-processor failure without losing its structure.

    `retryable` is True only for failures where repeating the same call can
    succeed (network, rate limit, processor-side 5xx).
    """

    code = "external_service_error"
    status_code = 502

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        service: str = "stripe",
        error_type: Optional[str] = None,
        error_code: Optional[str] = None,
        decline_code: Optional[str] = None,
        http_status: Optional[int] = None,
        request_id: Optional[str] = None,
        retryable: bool = False,
    ):
        self.operation = operation
        self.service = service
        self.error_type = error_type
        self.error_code = error_code
        self.decline_code = decline_code
        self.http_status = http_status
        self.request_id = request_id
        self.retryable = retryable
        super().__init__(
            f"{service} {operation} failed: {message}",
            details={
                "service": service,
                "operation": operation,
                "error_type": error_type,
                "error_code": error_code,
                "decline_code": decline_code,
                "http_status": http_status,
                "request_id": request_id,
                "retryable": retryable,
            },
        )
