import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ctrlsys.errors import CtrlsysError, InternalError

logger = logging.getLogger(__name__)


async def ctrlsys_error_handler(request: Request, exc: CtrlsysError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("[API] %s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.kind)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    detail = f"{field}: {message}" if field else message
    return JSONResponse(status_code=422, content={"error": "validation_error", "detail": detail})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("[API] unhandled error on %s %s", request.method, request.url.path)
    error = InternalError("Internal server error")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CtrlsysError, ctrlsys_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
