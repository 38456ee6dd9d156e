from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from streamgate.core.logging import log_error, log_warning


class GatewayError(Exception):
    """Base error carrying the HTTP status and a client-facing message"""
    status_code = 500

    def __init__(self, error: str, details: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details:
            body["details"] = self.details
        return body


class InvalidRequest(GatewayError):
    status_code = 400


class InvalidFormat(GatewayError):
    status_code = 400


class UrlBlocked(GatewayError):
    status_code = 403


class SpawnError(GatewayError):
    status_code = 500


class ExtractionFailure(GatewayError):
    status_code = 500


class ResourceExhausted(GatewayError):
    status_code = 503


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        log_error(request, f"{type(exc).__name__}: {exc.error}", details=exc.details)
    else:
        log_warning(request, f"{type(exc).__name__}: {exc.error}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in errors
    )
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


def register_error_handlers(app) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
