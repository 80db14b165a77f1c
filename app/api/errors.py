"""Maps classified errors onto HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.schemas.responses import ErrorResponse
from app.services.errors import ErrorType, SyncError

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ErrorType.UNAUTHORIZED: 401,
    ErrorType.RATE_LIMITED: 429,
    ErrorType.SERVER_ERROR: 502,
    ErrorType.CLIENT_ERROR: 502,
    ErrorType.NETWORK_ERROR: 502,
    ErrorType.CONFIG_ERROR: 500,
    ErrorType.VALIDATION_ERROR: 422,
}

# OpenAPI documentation for the error bodies every provider route can return
ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing user or provider not connected"},
    404: {"description": "Unknown provider"},
    422: {"model": ErrorResponse, "description": "Invalid request"},
}


def error_response(error_type: ErrorType, message: str, retry_after: float | None = None) -> JSONResponse:
    headers = {"Retry-After": str(int(retry_after))} if retry_after else None
    return JSONResponse(
        status_code=STATUS_CODES[error_type],
        content=ErrorResponse(error=message, error_type=error_type.value).model_dump(),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        if exc.error_type == ErrorType.CONFIG_ERROR:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path}: {exc.error_type.value} {exc.message}")
        return error_response(exc.error_type, exc.message, exc.retry_after)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "; ".join(str(e.get("msg", "")) for e in errors) or "Invalid request"
        return JSONResponse(
            status_code=422,
            content={
                "error": message,
                "error_type": ErrorType.VALIDATION_ERROR.value,
                "detail": jsonable_encoder(errors),
            },
        )
