"""Gantry request-pipeline composition."""

__version__ = "0.1.0"

from .app import GantryApp, Router
from .context import ExecutionContext
from .exceptions import (
    AuthorizationError,
    BadGatewayException,
    BadRequestException,
    ConflictException,
    ForbiddenException,
    HandlerError,
    HTTPException,
    InternalServerErrorException,
    MethodNotAllowedException,
    NotFoundException,
    RequestTimeoutException,
    ResponseCommittedError,
    ResponseLockedError,
    ServiceUnavailableException,
    TooManyRequestsException,
    TransportError,
    UnauthorizedException,
    UnprocessableEntityException,
    ValidationError,
)
from .filters import DefaultExceptionFilter, ExceptionFilter, HttpExceptionFilter, catch
from .guards import ApiKeyGuard, BearerTokenGuard, Guard, RolesGuard, ScopesGuard
from .http import JSONResponse, PlainTextResponse, RedirectResponse, Request, Response
from .interceptors import (
    CacheInterceptor,
    ErrorsInterceptor,
    ExcludeNullInterceptor,
    Interceptor,
    LoggingInterceptor,
    RetryInterceptor,
    TimeoutInterceptor,
    TransformInterceptor,
)
from .metadata import RouteConfig
from .middleware import (
    CORSMiddleware,
    JSONBodyMiddleware,
    LoggerMiddleware,
    Middleware,
    RateLimitMiddleware,
    RequestIdMiddleware,
    SecurityHeadersMiddleware,
    TrustedHostMiddleware,
)
from .outcome import Continue, Fail, ShortCircuit
from .params import Body, Ctx, Custom, Header, Param, Query
from .pipes import (
    ArgumentDescriptor,
    DefaultValuePipe,
    ParseArrayPipe,
    ParseBoolPipe,
    ParseEnumPipe,
    ParseFloatPipe,
    ParseIntPipe,
    ParseUUIDPipe,
    Pipe,
    SchemaValidationPipe,
    ValidationPipe,
)
from .testclient import Response as TestResponse
from .testclient import TestClient

__all__ = [
    "__version__",
    "GantryApp",
    "Router",
    "ExecutionContext",
    "RouteConfig",
    "Request",
    "Response",
    "JSONResponse",
    "PlainTextResponse",
    "RedirectResponse",
    "Continue",
    "ShortCircuit",
    "Fail",
    "Middleware",
    "CORSMiddleware",
    "JSONBodyMiddleware",
    "LoggerMiddleware",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "SecurityHeadersMiddleware",
    "TrustedHostMiddleware",
    "Guard",
    "ApiKeyGuard",
    "BearerTokenGuard",
    "RolesGuard",
    "ScopesGuard",
    "Interceptor",
    "CacheInterceptor",
    "ErrorsInterceptor",
    "ExcludeNullInterceptor",
    "LoggingInterceptor",
    "RetryInterceptor",
    "TimeoutInterceptor",
    "TransformInterceptor",
    "Pipe",
    "ArgumentDescriptor",
    "DefaultValuePipe",
    "ParseArrayPipe",
    "ParseBoolPipe",
    "ParseEnumPipe",
    "ParseFloatPipe",
    "ParseIntPipe",
    "ParseUUIDPipe",
    "SchemaValidationPipe",
    "ValidationPipe",
    "Param",
    "Query",
    "Body",
    "Header",
    "Ctx",
    "Custom",
    "ExceptionFilter",
    "DefaultExceptionFilter",
    "HttpExceptionFilter",
    "catch",
    "HTTPException",
    "ValidationError",
    "BadRequestException",
    "UnauthorizedException",
    "AuthorizationError",
    "ForbiddenException",
    "HandlerError",
    "NotFoundException",
    "MethodNotAllowedException",
    "ConflictException",
    "UnprocessableEntityException",
    "InternalServerErrorException",
    "BadGatewayException",
    "ServiceUnavailableException",
    "TransportError",
    "RequestTimeoutException",
    "TooManyRequestsException",
    "ResponseCommittedError",
    "ResponseLockedError",
    "TestClient",
    "TestResponse",
]
