"""Purge periodique des demandes expirees / Periodic purge of expired registration requests.

Optionnel : l'expiration est deja appliquee par predicat a la lecture.
Optional: expiry is already enforced by a read predicate.
"""

import asyncio
import logging

from room_registry.services.errors import StoreUnavailable
from room_registry.services.registry_engine import RegistryEngine

logger = logging.getLogger("room_registry.reaper")


async def run_expired_request_reaper(engine: RegistryEngine, interval_seconds: float) -> None:
    """Boucle de purge jusqu'a annulation / Purge loop until cancelled."""
    logger.info("Expired request reaper started (every %ss)", interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await engine.purge_expired_requests()
        except StoreUnavailable as exc:
            # Prochain passage au prochain tick / Next attempt on the next tick
            logger.warning("Reaper skipped a run: %s", exc.detail)
