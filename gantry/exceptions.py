"""Error taxonomy shared by every pipeline stage."""

from __future__ import annotations

from typing import Any, Mapping


class HTTPException(Exception):
    """Error carrying an HTTP status code and optional headers."""

    status_code = 500
    default_detail: Any = "Internal server error"

    def __init__(
        self,
        detail: Any = None,
        *,
        status_code: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.detail = self.default_detail if detail is None else detail
        super().__init__(self.detail)
        if status_code is not None:
            self.status_code = status_code
        self.headers = dict(headers or {})


# Pipe stage


class ValidationError(HTTPException):
    """A pipe rejected an argument; carries ``{loc, msg, type, input}`` items."""

    status_code = 400
    default_detail = "Validation failed"

    def __init__(
        self,
        detail: Any = None,
        *,
        errors: list[dict[str, Any]] | None = None,
        loc: list[Any] | None = None,
        typ: str = "value_error",
        input_value: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(detail, headers=headers)
        if errors is not None:
            self._errors = errors
        else:
            self._errors = [
                {
                    "loc": list(loc or []),
                    "msg": str(self.detail),
                    "type": typ,
                    "input": input_value,
                }
            ]

    def errors(self) -> list[dict[str, Any]]:
        return self._errors


class BadRequestException(ValidationError):
    """Malformed request (bad JSON, bad header)."""

    default_detail = "Bad Request"


# Guard stage


class UnauthorizedException(HTTPException):
    status_code = 401
    default_detail = "Unauthorized"


class AuthorizationError(HTTPException):
    """Guard-stage denial."""

    status_code = 403
    default_detail = "Forbidden resource"


class ForbiddenException(AuthorizationError):
    """Fixed outcome of a guard returning a falsy value."""


# Business logic


class HandlerError(HTTPException):
    """Errors raised deliberately from route handlers."""


class NotFoundException(HandlerError):
    status_code = 404
    default_detail = "Not Found"


class MethodNotAllowedException(HandlerError):
    status_code = 405
    default_detail = "Method Not Allowed"


class ConflictException(HandlerError):
    status_code = 409
    default_detail = "Conflict"


class UnprocessableEntityException(HandlerError):
    status_code = 422
    default_detail = "Unprocessable Entity"


class InternalServerErrorException(HandlerError):
    status_code = 500
    default_detail = "Internal server error"


class BadGatewayException(HandlerError):
    status_code = 502
    default_detail = "Bad Gateway"


class ServiceUnavailableException(HandlerError):
    status_code = 503
    default_detail = "Service Unavailable"


# Middleware / infrastructure


class TransportError(HTTPException):
    """Failures produced by middleware or infrastructure concerns."""

    status_code = 500
    default_detail = "Transport failure"


class RequestTimeoutException(TransportError):
    status_code = 408
    default_detail = "Request Timeout"


class TooManyRequestsException(TransportError):
    status_code = 429
    default_detail = "Too Many Requests"


# Programming errors, never rendered directly


class ResponseCommittedError(RuntimeError):
    """Raised when writing to a response that was already committed."""


class ResponseLockedError(RuntimeError):
    """Raised when a stage without write access touches the response."""


def is_unknown_error(exc: BaseException) -> bool:
    """Return ``True`` for errors outside the HTTP taxonomy."""

    return not isinstance(exc, HTTPException)


__all__ = [
    "AuthorizationError",
    "BadGatewayException",
    "BadRequestException",
    "ConflictException",
    "ForbiddenException",
    "HTTPException",
    "HandlerError",
    "InternalServerErrorException",
    "MethodNotAllowedException",
    "NotFoundException",
    "RequestTimeoutException",
    "ResponseCommittedError",
    "ResponseLockedError",
    "ServiceUnavailableException",
    "TooManyRequestsException",
    "TransportError",
    "UnauthorizedException",
    "UnprocessableEntityException",
    "ValidationError",
    "is_unknown_error",
]
