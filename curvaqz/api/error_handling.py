from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from curvaqz.api.schemas import ErrorBody
from curvaqz.logging import get_logger
from curvaqz.service.errors import ServiceError
from curvaqz.storage.errors import ConstraintViolation, StoreError

logger = get_logger(__name__)

_CODES_BY_STATUS = {
    400: "validation_error",
    401: "unauthorized",
    404: "not_found",
    409: "conflict",
    500: "server_error",
    502: "bad_gateway",
}


def _code_for(status_code: int) -> str:
    default = "server_error" if status_code >= 500 else "validation_error"
    return _CODES_BY_STATUS.get(status_code, default)


def error_response(
    status_code: int,
    message: str,
    detail: Any = None,
    *,
    code: Optional[str] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    if detail == {} or detail == []:
        detail = None
    body = ErrorBody(error=message, code=code or _code_for(status_code), detail=detail)
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder(body), headers=headers
    )


def _log(request: Request, event: str, level_status: int, **fields: Any) -> None:
    log_fn = logger.error if level_status >= 500 else logger.warning
    log_fn(event, path=request.url.path, method=request.method, **fields)


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error", "code", "detail"}``."""

    @app.exception_handler(ServiceError)
    async def on_service_error(request: Request, exc: ServiceError):
        _log(request, "service_error", exc.status_code, **exc.log_fields())
        return error_response(
            exc.status_code, exc.message, exc.detail, code=exc.error_code
        )

    @app.exception_handler(ConstraintViolation)
    async def on_constraint_violation(request: Request, exc: ConstraintViolation):
        _log(request, "constraint_violation", 409, message=exc.message, detail=exc.detail)
        return error_response(409, exc.message, exc.detail)

    @app.exception_handler(StoreError)
    async def on_store_error(request: Request, exc: StoreError):
        _log(request, "store_error", 500, message=exc.message, detail=exc.detail)
        return error_response(500, exc.message, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def on_invalid_request(request: Request, exc: RequestValidationError):
        # pydantic ctx may hold exception objects, so only the stable keys go out
        problems = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        _log(request, "request_validation_failed", 400, errors=len(problems))
        return error_response(400, "invalid request", problems)

    @app.exception_handler(HTTPException)
    async def on_http_exception(request: Request, exc: HTTPException):
        if isinstance(exc.detail, str):
            message, detail = exc.detail, None
        else:
            message, detail = "http error", exc.detail
        if exc.status_code >= 500:
            _log(request, "http_error", exc.status_code, status_code=exc.status_code)
        return error_response(
            exc.status_code, message, detail, headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return error_response(500, "internal server error")


__all__ = ["error_response", "register_exception_handlers"]
