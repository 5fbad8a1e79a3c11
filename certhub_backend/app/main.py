import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.api.routes import router as api_router
from app.core.config import Settings, get_settings
from app.core.database import get_engine
from app.core.errors import CertHubError, Unauthorized, Unavailable
from app.models.base import Base
import app.models  # noqa: F401

logger = logging.getLogger("app")

_GENERIC_UNAVAILABLE = "A required service is temporarily unavailable. Please try again later."
_GENERIC_ERROR = "An unexpected error occurred. Please try again later."


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    Base.metadata.create_all(bind=get_engine())
    logger.info("CertHub API started (%s)", settings.environment)
    yield
    get_engine().dispose()


app = FastAPI(title="CertHub API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


def _settings(request: Request) -> Settings:
    return getattr(request.state, "settings", None) or get_settings()


@app.exception_handler(CertHubError)
async def domain_error_handler(request: Request, exc: CertHubError):
    detail = exc.detail
    if isinstance(exc, Unavailable):
        logger.error("%s %s: %s", request.method, request.url.path, exc.detail)
        if not _settings(request).expose_error_details:
            detail = _GENERIC_UNAVAILABLE
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": detail}, headers=headers)


@app.exception_handler(OperationalError)
async def datastore_error_handler(request: Request, exc: OperationalError):
    logger.error("%s %s: datastore unavailable: %s", request.method, request.url.path, exc)
    detail = f"Datastore unavailable: {exc.orig}" if _settings(request).expose_error_details else _GENERIC_UNAVAILABLE
    return JSONResponse(status_code=503, content={"detail": detail})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    detail = str(exc) if _settings(request).expose_error_details else _GENERIC_ERROR
    return JSONResponse(status_code=500, content={"detail": detail})


@app.get("/health")
def health_check():
    return {"status": "ok"}
