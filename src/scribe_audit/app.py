"""FastAPI application factory for Scribe-Audit."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scribe_audit.common.config import get_settings
from scribe_audit.common.logging import setup_logging
from scribe_audit.common.schemas import HealthResponse


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from scribe_audit.deps import get_db
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from scribe_audit.chain.router import router as chain_router
    from scribe_audit.verification.router import router as verification_router
    from scribe_audit.secrets.router import router as secrets_router

    prefix = settings.api_prefix
    app.include_router(chain_router, prefix=prefix, tags=["audit"])
    app.include_router(verification_router, prefix=prefix, tags=["verification"])
    app.include_router(secrets_router, prefix=prefix, tags=["secrets"])

    return app
