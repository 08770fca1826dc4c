"""
FastVerify Booth - FastAPI Application Entry Point

Local API consumed by the booth UI. The service graph is built once in
the lifespan and torn down on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from fastverify import __version__
from fastverify.config import Settings, get_settings
from fastverify.routers import audit, otp, session, settings as settings_router, sync, voters
from fastverify.services.container import BoothServices
from fastverify.utils.errors import setup_exception_handlers


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[BoothServices] = None,
    run_scheduler: bool = True,
) -> FastAPI:
    """
    Build the booth API.

    Tests may pass a prebuilt `services` container; it is started and
    closed with the app either way.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info(f"Starting {settings.app_name}...")
        logger.info(f"Environment: {settings.app_env}")
        container = services or BoothServices.build(settings)
        await container.start(run_scheduler=run_scheduler)
        app.state.services = container
        logger.info("Local store ready")

        yield

        # Shutdown
        logger.info(f"Shutting down {settings.app_name}...")
        await container.close()

    app = FastAPI(
        title=settings.app_name,
        description="Offline-first voter verification booth",
        version=__version__,
        lifespan=lifespan,
    )

    setup_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Local liveness; says nothing about the remote authority."""
        return {
            "status": "healthy",
            "version": __version__,
            "environment": settings.app_env,
        }

    app.include_router(session.router, prefix="/api")
    app.include_router(audit.router, prefix="/api")
    app.include_router(voters.router, prefix="/api")
    app.include_router(otp.router, prefix="/api")
    app.include_router(sync.router, prefix="/api")
    app.include_router(settings_router.router, prefix="/api")

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="127.0.0.1", port=8000)
