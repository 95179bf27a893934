"""HTTP API routers."""

from .plan_router import build_plan_router, build_vault_router
from .router import build_router

__all__ = [
    "build_plan_router",
    "build_vault_router",
    "build_router",
]
