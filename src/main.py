from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.router import router
from src.config import settings
from src.core.exceptions import AppError, PipelineError
from src.core.logging_config import configure_logging

configure_logging(settings.log_level, json_logs=settings.log_json)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("app_starting", app_name=settings.app_name, debug=settings.debug)
    yield
    container = getattr(app.state, "container", None)
    if container is not None:
        await container.aclose()
        app.state.container = None
    logger.info("app_stopped")


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    logger.warning("pipeline_error_response", path=request.url.path, error=exc.message, status=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(httpx.HTTPError)
async def upstream_http_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
    logger.error("upstream_http_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content={"detail": str(exc) or "Upstream request failed"})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{key: value for key, value in error.items() if key not in ("url", "ctx")} for error in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


app.include_router(router)


def run() -> None:
    uvicorn.run("src.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)
