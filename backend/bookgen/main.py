"""FastAPI application entry point."""

import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")

# Apply the same format to Uvicorn's loggers so they also show timestamps.
for _uvicorn_logger in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    _log = logging.getLogger(_uvicorn_logger)
    _log.handlers.clear()
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"))
    _log.addHandler(_handler)
    _log.propagate = False

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bookgen.db import create_tables
from bookgen.schemas.batch import ErrorResponse
from bookgen.services.errors import NotFoundError, ServiceError, ValidationError
from bookgen.services.pipeline import get_pipeline

logger = logging.getLogger(__name__)

app = FastAPI(title="BookGen")


@app.on_event("startup")
def startup() -> None:
    create_tables()
    # Jobs are queued in-process, so the API process also runs the workers.
    get_pipeline().start()


@app.on_event("shutdown")
def shutdown() -> None:
    get_pipeline().stop(wait=False)


def _error_response(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=str(exc)).model_dump(),
    )


@app.exception_handler(ValidationError)
async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(422, "validation_error", exc)


@app.exception_handler(NotFoundError)
async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, "not_found", exc)


@app.exception_handler(ServiceError)
async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return _error_response(502, "service_error", exc)


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(500, "internal_error", exc)


# Import and register routers after app is defined to avoid circular imports.
from bookgen.api import batch  # noqa: E402

app.include_router(batch.router, prefix="/batches", tags=["batches"])
