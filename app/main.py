from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import api_router
from app.core.config import Settings, get_settings
from app.core.logging_config import configure_logging
from app.dependencies import ServiceContainer
from app.exceptions import OptimizerError
from app.models import utcnow
from app.schemas import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def error_response(status_code: int, code: str, message: str, details: object = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details), timestamp=utcnow())
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True, exclude_none=True))


async def handle_optimizer_error(request: Request, exc: OptimizerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg", "")}
        for error in exc.errors()
    ]
    return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Validation failed", details)


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, version="1.0.0")
    app.state.container = container or ServiceContainer.build(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_exception_handler(OptimizerError, handle_optimizer_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)

    @app.on_event("startup")
    async def on_startup() -> None:
        await app.state.container.startup()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.container.shutdown()

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(api_router)
    return app


def __getattr__(name: str) -> FastAPI:
    # ``app.main:app`` is built on first access; building it needs provider credentials.
    if name == "app":
        application = create_app()
        globals()["app"] = application
        return application
    raise AttributeError(name)
