from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    CONFIGURATION = "configuration"
    UPSTREAM_FETCH = "upstream_fetch"
    NETWORK = "network"
    CONFLICT = "conflict"


# Exhaustive: every ErrorKind has exactly one status code.
STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.CONFIGURATION: 400,
    ErrorKind.UPSTREAM_FETCH: 500,
    ErrorKind.NETWORK: 503,
    ErrorKind.CONFLICT: 409,
}


@dataclass(eq=False)
class BookingError(Exception):
    """Base for every error a booking/payment operation may raise."""

    message: str
    details: Optional[str] = None

    kind = ErrorKind.VALIDATION

    def __str__(self) -> str:
        return self.message

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BookingError):
    kind = ErrorKind.VALIDATION


class NotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND


BookingNotFound = NotFoundError


class UnauthorizedError(BookingError):
    kind = ErrorKind.UNAUTHORIZED


class ConfigurationError(BookingError):
    kind = ErrorKind.CONFIGURATION


class UpstreamFetchError(BookingError):
    kind = ErrorKind.UPSTREAM_FETCH


class NetworkError(BookingError):
    kind = ErrorKind.NETWORK


class ConflictError(BookingError):
    kind = ErrorKind.CONFLICT


ERROR_BY_KIND = {
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.UNAUTHORIZED: UnauthorizedError,
    ErrorKind.CONFIGURATION: ConfigurationError,
    ErrorKind.UPSTREAM_FETCH: UpstreamFetchError,
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.CONFLICT: ConflictError,
}


# 400 could be validation or configuration; remotely they are indistinguishable
KIND_BY_STATUS: Dict[int, ErrorKind] = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.UNAUTHORIZED,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    503: ErrorKind.NETWORK,
}


def error_for_status(status_code: int, message: str, details: Optional[str] = None) -> BookingError:
    """Map an HTTP error status back onto the error taxonomy (client side)."""
    kind = KIND_BY_STATUS.get(status_code)
    if kind is None:
        kind = ErrorKind.VALIDATION if 400 <= status_code < 500 else ErrorKind.UPSTREAM_FETCH
    return ERROR_BY_KIND[kind](message, details)
