"""Routes API / API routes."""

from fastapi import APIRouter

from room_registry.api import devices, registry

api_router = APIRouter(prefix="/api")

api_router.include_router(registry.router, prefix="/registry", tags=["registry"])
api_router.include_router(devices.router, prefix="/devices", tags=["devices"])
