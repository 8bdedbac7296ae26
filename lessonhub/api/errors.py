from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lessonhub.domain.errors import DomainError, ErrorKind, InsufficientCredits

logger = structlog.get_logger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.STATE: 409,
    ErrorKind.RESOURCE: 402,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONCURRENCY: 409,
}


def status_for(exc: DomainError) -> int:
    return STATUS_BY_KIND.get(exc.kind, 400)


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, DomainError):
        raise exc
    status_code = status_for(exc)
    logger.info(
        "api.domain_error",
        path=request.url.path,
        code=exc.code,
        kind=exc.kind.value,
        status_code=status_code,
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    content = exc.to_payload()
    if isinstance(exc, InsufficientCredits):
        content["required"] = exc.required
        content["available"] = exc.available
    return JSONResponse(status_code=status_code, content={"error": content}, headers=headers)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
