"""
Error taxonomy shared by every settlement operation.

Clients key their error handling off the code strings, so the values must not
change. Responses look like:

    {"error": {"code": "PRECONDITION_FAILED", "message": "Payment verification failed"}}
"""

from enum import Enum

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from settlement.core.logging import get_logger

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.PRECONDITION_FAILED: status.HTTP_412_PRECONDITION_FAILED,
    ErrorCode.INTERNAL_SERVER_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class SettlementError(Exception):
    """A failure with a client-facing code and an actionable message."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE[self.code]

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {"error": {"code": self.code.value, "message": self.message}}


class GatewayErrorKind(str, Enum):
    AUTH = "auth"
    CONNECTIVITY = "connectivity"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class GatewayError(Exception):
    """
    Failure talking to the payment gateway.

    `payload` keeps whatever the gateway returned for logging; it is never
    forwarded to API clients.
    """

    def __init__(
        self,
        kind: GatewayErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        gateway_code: str | None = None,
        payload: object | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.gateway_code = gateway_code
        self.payload = payload

    def to_settlement_error(self, message: str) -> SettlementError:
        """Map onto the client taxonomy with a gateway-agnostic message."""
        if self.kind == GatewayErrorKind.VALIDATION:
            return SettlementError(ErrorCode.BAD_REQUEST, message)
        return SettlementError(ErrorCode.INTERNAL_SERVER_ERROR, message)


async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    log = logger.warning if exc.code != ErrorCode.INTERNAL_SERVER_ERROR else logger.error
    log(
        "settlement_error",
        code=exc.code.value,
        error_message=exc.message,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        error_message=str(exc),
        exc_info=exc,
    )
    error = SettlementError(
        ErrorCode.INTERNAL_SERVER_ERROR,
        "Something went wrong. Please try again or contact support.",
    )
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SettlementError, settlement_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
