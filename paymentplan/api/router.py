"""Top-level API router composition."""

import logging

from fastapi import APIRouter

from paymentplan.core.config import AppSettings
from paymentplan.services.plan_engine import PlanLifecycleEngine

from .plan_router import build_plan_router, build_vault_router


logger = logging.getLogger(__name__)


def build_router(settings: AppSettings, engine: PlanLifecycleEngine) -> APIRouter:
    """Build the application router around one engine instance."""
    router = APIRouter()
    router.include_router(build_plan_router(engine))
    router.include_router(build_vault_router(engine))

    @router.get("/", summary="Root endpoint")
    def read_root() -> dict:
        """Return a basic message confirming service availability."""
        return {"message": "{0} is running".format(settings.app_name)}

    @router.get("/health", summary="Health check")
    def health_check() -> dict:
        """Return service health status for probes and monitors."""
        return {"status": "ok"}

    @router.get("/settings", summary="Settings snapshot")
    def get_settings_snapshot() -> dict:
        """Expose non-sensitive settings."""
        return {
            "app_name": settings.app_name,
            "debug": settings.debug,
            "chain_id": engine.signatures.chain_id,
            "signer_authority": engine.context.signer_registry.current_authority(),
            "require_collection_authorization": engine.context.require_collection_authorization,
            "vault_address": settings.vault_address,
            "default_monitor_enabled": settings.default_monitor_enabled,
        }

    logger.info("API router built for chain_id=%d", engine.signatures.chain_id)
    return router
