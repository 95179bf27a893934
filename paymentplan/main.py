"""Application entrypoint for the payment plan engine FastAPI service."""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from paymentplan.api.router import build_router
from paymentplan.core import AppSettings, get_logger, load_settings, setup_logging
from paymentplan.services import DefaultMonitor, PlanEngineBuilder


logger = get_logger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and configure a FastAPI application instance."""
    settings = settings or load_settings()
    setup_logging(settings.log_level)
    engine = PlanEngineBuilder.from_settings(settings)

    app = FastAPI(title=settings.app_name, debug=settings.debug)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:4200",
            "http://127.0.0.1:4200",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(build_router(settings, engine))

    app.state.engine = engine
    app.state.default_monitor = DefaultMonitor(engine=engine, settings=settings)

    @app.on_event("startup")
    async def _startup_background_services() -> None:
        """Start background services on application startup."""
        try:
            await app.state.default_monitor.start()
        except Exception:
            logger.exception("Failed to start background services during startup.")

    @app.on_event("shutdown")
    async def _shutdown_background_services() -> None:
        """Stop background services on application shutdown."""
        try:
            await app.state.default_monitor.stop()
        except Exception:
            logger.exception("Failed to stop background services during shutdown.")

    logger.info("Application initialized: %s", settings.app_name)
    return app


def run() -> None:
    """Start the ASGI server for local development."""
    settings = load_settings()
    try:
        uvicorn.run(
            "paymentplan.main:create_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            reload=settings.debug,
        )
    except Exception:
        logger.exception("Failed to start uvicorn server.")
        raise


if __name__ == "__main__":
    run()
