"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        # Create the problem details object
        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        # Add extensions
        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )


class ValidationError(ProblemDetailsException):
    """Exception for rejected input: bad pricing configuration, participants or policies."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        violations: Optional[List[Dict[str, str]]] = None,
        instance: Optional[str] = None,
    ):
        self.violations = violations or []
        extensions: Dict[str, Any] = {"code": "VALIDATION_FAILED", "retryable": False}
        if self.violations:
            extensions["violations"] = self.violations

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://example.com/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )

    @property
    def messages(self) -> List[str]:
        """Plain violation messages, in the order they were found."""
        return [violation["message"] for violation in self.violations]


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://example.com/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


# Business logic exceptions

class CapacityFullError(ConflictError):
    """Exception when a time slot does not have enough spots left."""

    def __init__(self, time_slot_id: str, requested_seats: int, available_seats: int):
        self.requested_seats = requested_seats
        self.available_seats = available_seats
        super().__init__(
            detail=(
                f"Not enough spots left on time slot {time_slot_id}. "
                f"Requested: {requested_seats}, Available: {available_seats}"
            ),
            conflicting_resource={
                "time_slot_id": time_slot_id,
                "requested_seats": requested_seats,
                "available_seats": available_seats,
            }
        )
        self.problem_details.update({
            "code": "FULL",
            "retryable": False
        })


class InvalidTransitionError(ConflictError):
    """Exception when a booking cannot move from its current state to the requested one."""

    def __init__(self, booking_id: str, current_status: str, target_status: str, reason: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            detail=f"Booking {booking_id} cannot move from '{current_status}' to '{target_status}': {reason}"
        )
        self.problem_details.update({
            "code": "INVALID_TRANSITION",
            "retryable": False,
            "booking_id": booking_id,
            "from_status": current_status,
            "to_status": target_status,
        })


class CancellationNotAllowedError(ConflictError):
    """Exception when a booking can no longer be cancelled, e.g. the tour already started."""

    def __init__(self, booking_id: str, reason: str):
        super().__init__(detail=f"Booking {booking_id} cannot be cancelled: {reason}")
        self.problem_details.update({
            "code": "CANCELLATION_NOT_ALLOWED",
            "retryable": False,
            "booking_id": booking_id,
        })


class PaymentError(ProblemDetailsException):
    """Exception when charging the customer failed; the booking stays unpaid."""

    def __init__(self, booking_id: str, processor_message: str):
        super().__init__(
            status_code=402,
            title="Payment Failed",
            detail=f"Payment for booking {booking_id} failed: {processor_message}",
            type_uri="https://example.com/problems/payment-failed",
            extensions={
                "code": "PAYMENT_FAILED",
                "retryable": True,
                "booking_id": booking_id,
            },
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    problem_details = {
        "type": "https://example.com/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
