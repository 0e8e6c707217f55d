import logging
import os

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.gzip import GZipMiddleware

from . import models  # noqa: F401  (register tables on Base.metadata)
from .api import api_order, api_payment, auth
from .core.config import settings
from .core.observability import setup_logging
from .database import Base, engine
from .middleware.security_headers import SecurityHeadersMiddleware

setup_logging()
logger = logging.getLogger(__name__)

# Allow skipping schema bootstrap when migrations own the database
_skip_db_bootstrap = os.getenv("SKIP_DB_BOOTSTRAP", "0").strip().lower() in {"1", "true", "yes"}
if not _skip_db_bootstrap:
    Base.metadata.create_all(bind=engine)
logger.info("startup.bootstrap skip_db_bootstrap=%s pid=%s", _skip_db_bootstrap, os.getpid())

app = FastAPI(title="Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger.info("CORS origins set to: %s", settings.CORS_ORIGINS)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1024)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors with details and log them for debugging."""
    errors = exc.errors()
    logger.warning("Validation error at %s: %s", request.url.path, errors)
    field_errors = {
        ".".join(str(part) for part in err.get("loc", ())[1:]) or "body": err.get("msg", "invalid")
        for err in errors
    }
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": {"message": "Validation error", "field_errors": field_errors}},
    )


@app.get("/healthz", tags=["health"])
def healthz():
    return {"status": "ok"}


api_prefix = settings.API_V1_STR  # usually "/api/v1"

# Clients will POST to /auth/register and /auth/login
app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(api_order.router, prefix=f"{api_prefix}/orders", tags=["orders"])
app.include_router(api_payment.router, prefix=f"{api_prefix}/payments", tags=["payments"])
