from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


class ServiceError(HTTPException):
    """HTTPException carrying a machine readable reason code."""

    code = "service_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(status_code=status_code or self.status_code, detail=message)
        self.message = message


class InvalidInput(ServiceError):
    code = "invalid_input"


class NotFound(ServiceError):
    code = "not_found"


class RiderNotFound(NotFound):
    code = "rider_not_found"


class DeliveryNotFound(NotFound):
    code = "delivery_not_found"


class PreconditionFailed(ServiceError):
    code = "precondition_failed"


class RiderBlocked(PreconditionFailed):
    code = "rider_blocked"


class RiderInactive(PreconditionFailed):
    code = "rider_inactive"


class AlreadyAssigned(PreconditionFailed):
    code = "already_assigned"


class DeliveryTerminal(PreconditionFailed):
    code = "delivery_terminal"


class InvalidTransition(PreconditionFailed):
    code = "invalid_transition"


class InsufficientBalance(PreconditionFailed):
    code = "insufficient_balance"


class Unauthorized(ServiceError):
    code = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class CustomerMismatch(ServiceError):
    code = "customer_mismatch"
    status_code = status.HTTP_403_FORBIDDEN




STATUS_CODES = {
    status.HTTP_401_UNAUTHORIZED: "unauthenticated",
    status.HTTP_403_FORBIDDEN: "unauthorized",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
    status.HTTP_409_CONFLICT: "conflict",
    status.HTTP_500_INTERNAL_SERVER_ERROR: "internal_error",
}


def error_body(message: str, code: str) -> dict:
    return {"success": False, "error": message, "code": code}


async def http_error_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc, ServiceError):
        message, code = exc.message, exc.code
    else:
        message, code = str(exc.detail), STATUS_CODES.get(exc.status_code, "error")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, code),
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(
    _: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first['msg']}" if field else first["msg"]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(message, InvalidInput.code),
    )
