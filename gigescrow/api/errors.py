"""Exception handlers mapping domain errors onto HTTP responses.

Error bodies are ``{"error": "<Kind>", "detail": "<message>"}``.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from gigescrow.api.logging_config import get_logger
from gigescrow.errors import EscrowServiceError, InvalidArgumentError

logger = get_logger("gigescrow.api.errors")


async def escrow_error_handler(request: Request, exc: EscrowServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} | {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} | {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    error = InvalidArgumentError("; ".join(problems) or "Invalid request")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EscrowServiceError, escrow_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
