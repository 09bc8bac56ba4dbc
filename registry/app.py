from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import APIRouter, FastAPI

from registry.config import SessionLocal, engine, settings
from registry.issuers import ensure_signing_keys
from registry.middleware import IdempotencyMiddleware, RequestIdMiddleware
from registry.models import Base
from registry.routes import applications, credentials, stats
from registry.schemas import HealthResponse
from registry.services import get_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    services = get_services()
    if settings.signer_backend == "local":
        session = SessionLocal()
        try:
            count = ensure_signing_keys(session, services)
        finally:
            session.close()
        logger.info("Loaded %d local signing keys", count)
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Civic Credential Registry",
        version="0.1.0",
        description=(
            "Issues government certificates as signed, anchored credentials with "
            "selective disclosure, and verifies them for third parties."
        ),
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "Health", "description": "Service health check"},
            {"name": "Applications", "description": "Certificate applications and their approval"},
            {"name": "Credentials", "description": "Issuance, verification, presentation and revocation"},
            {"name": "Stats", "description": "Dashboard counts"},
        ],
    )

    app.add_middleware(IdempotencyMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health() -> HealthResponse:
        return HealthResponse()

    api_router = APIRouter()
    api_router.include_router(applications.router)
    api_router.include_router(credentials.router)
    api_router.include_router(stats.router)

    app.include_router(api_router, prefix="/v1")

    return app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper())
    uvicorn.run(
        "registry.app:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level,
    )
