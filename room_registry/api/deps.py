"""
Dépendances des routes / Route dependencies.
Injectées dans les routes via Depends().
"""

import secrets
from functools import lru_cache

from fastapi import Header, HTTPException, Request, status

from room_registry.config import settings
from room_registry.database import async_session
from room_registry.services.registry_engine import RegistryEngine


@lru_cache
def get_engine() -> RegistryEngine:
    """Moteur partagé par le processus / Process-wide registry engine."""
    return RegistryEngine(async_session)


def client_ip(request: Request) -> str:
    """Extraire l'IP client / Extract client IP (supports X-Forwarded-For behind proxy)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def require_admin(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Vérifier la clé admin si configurée / Check the admin key when configured.

    Retourne l'acteur pour le journal d'audit / Returns the actor for the audit log.
    """
    expected = settings.ADMIN_API_KEY
    if expected and not (x_admin_key and secrets.compare_digest(x_admin_key, expected)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing admin key")
    return f"admin@{client_ip(request)}"
