"""API route registration for the coordinator."""

from fastapi import APIRouter

from . import coordinator, system

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(system.router, prefix="/system", tags=["system"])
api_router.include_router(coordinator.router, prefix="/coordinator", tags=["coordinator"])


__all__ = [
    "api_router",
    "coordinator",
    "system",
]
