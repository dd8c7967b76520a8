"""CopyTrade payments - FastAPI main application."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from copytrade.api.v1.router import router as v1_router
from copytrade.config import get_settings
from copytrade.core.exceptions import PaymentError
from copytrade.database import Base, engine

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: create tables on startup."""
    logger.info("Starting %s", settings.APP_NAME)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    Path(settings.STORAGE_ROOT).mkdir(parents=True, exist_ok=True)
    if not settings.STORAGE_ENABLED:
        logger.warning("Proof storage is disabled; uploads fall back to unverified proof mode")
    yield
    await engine.dispose()
    logger.info("%s shutdown complete", settings.APP_NAME)


app = FastAPI(
    title=settings.APP_NAME,
    description="Copy-trading payment lifecycle and wallet ledger API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions and return stable 500 response."""
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


@app.exception_handler(PaymentError)
async def payment_exception_handler(_: Request, exc: PaymentError):
    """Domain errors carry their own status code."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException):
    """Preserve explicit HTTP exceptions with their original status/detail."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    """Body/query validation failures are 400 with the offending field named."""
    errors = exc.errors()
    first_error = errors[0] if errors else {}
    loc = first_error.get("loc", [])
    loc_path = ".".join(str(p) for p in loc if p not in {"body", "query", "path"})
    msg = first_error.get("msg", "Validation failed")
    detail = f"{loc_path}: {msg}" if loc_path else msg
    return JSONResponse(status_code=400, content={"detail": detail})


app.include_router(v1_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": settings.APP_NAME, "status": "ok"}
