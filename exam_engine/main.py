from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_engine.api.router import router
from exam_engine.errors import ExamEngineError, TransientPersistenceError
from exam_engine.observability import init_logging, init_otel
from exam_engine.settings import settings
from exam_engine.wiring import get_sessions

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Stop countdown loops; in-flight answer writes are left to finish.
    get_sessions().close_all()


async def handle_engine_error(request: Request, exc: ExamEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    body = {
        "detail": exc.message,
        "error": type(exc).__name__,
        "retryable": isinstance(exc, TransientPersistenceError),
        "context": {k: str(v) for k, v in exc.context.items()},
    }
    return JSONResponse(status_code=exc.status_code, content=body)


def create_app() -> FastAPI:
    init_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    if init_otel(app, settings):
        logger.info(f"Tracing enabled for {settings.otel_service_name} (sample rate {settings.otel_sample_rate})")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ExamEngineError, handle_engine_error)  # type: ignore[arg-type]
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.env}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
