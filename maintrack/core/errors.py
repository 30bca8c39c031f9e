"""
Service-layer error taxonomy.

Why this module exists:
  Business failures (a guard that does not hold, a role that is too low,
  a duplicate session date) are expected outcomes, not faults.  Services
  therefore RETURN them instead of raising, using the tagged pair

      (value, None)          on success
      (None, ServiceError)   on failure

  and blueprints render the error once via maintrack.utils.errors.api_error.
  Exceptions are reserved for genuinely unexpected faults; the
  orchestration boundary converts those into an opaque INTERNAL error.

Usage:
    from maintrack.core.errors import ErrorKind, ServiceError, not_found

    return None, not_found("WorkOrder", work_order_id)
    return None, ServiceError(ErrorKind.PRECONDITION_FAILED, "...", {"unclosed_sessions": [...]})
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Tuple, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_TRANSITION = "invalid_transition"
    PRECONDITION_FAILED = "precondition_failed"
    VALIDATION = "validation"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ServiceError:
    """A business failure with enough structure to render a precise message.

    Args:
        kind:    The taxonomy bucket; drives the HTTP status.
        message: Human-readable explanation for the caller.
        details: Optional structured payload, e.g. the sessions lacking an
                 end time or the date that violated an ordering guard.
    """

    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


Result = Union[Tuple[T, None], Tuple[None, ServiceError]]


# ── Constructors for the common cases ────────────────────────────────────────


def unauthenticated(message: str = "Unauthorized") -> ServiceError:
    return ServiceError(ErrorKind.UNAUTHENTICATED, message)


def forbidden(message: str = "Forbidden", **details) -> ServiceError:
    return ServiceError(ErrorKind.FORBIDDEN, message, details)


def not_found(resource: str, resource_id=None) -> ServiceError:
    msg = f"{resource} not found"
    details = {"resource": resource}
    if resource_id is not None:
        details["id"] = resource_id
    return ServiceError(ErrorKind.NOT_FOUND, msg, details)


def conflict(message: str, **details) -> ServiceError:
    return ServiceError(ErrorKind.CONFLICT, message, details)


def invalid_transition(message: str, **details) -> ServiceError:
    return ServiceError(ErrorKind.INVALID_TRANSITION, message, details)


def precondition_failed(message: str, **details) -> ServiceError:
    return ServiceError(ErrorKind.PRECONDITION_FAILED, message, details)


def validation(message: str, **details) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION, message, details)


def internal(message: str = "Internal server error") -> ServiceError:
    return ServiceError(ErrorKind.INTERNAL, message)
