"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from classroom.api.request_id import REQUEST_ID_ATTR, get_request_id
from classroom.domain.lessons.policy import LessonPolicyError


def _rid(request: Request) -> str:
    return getattr(request.state, REQUEST_ID_ATTR, None) or get_request_id()


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": _rid(request)}
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": _rid(request)}
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(LessonPolicyError)
    async def policy_exc_handler(request: Request, exc: LessonPolicyError):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": _rid(request)}
        return JSONResponse(status_code=exc.status_code, content=payload)
