"""
Seed des salles / Room seeding.
Crée les salles listées dans SEED_ROOMS au démarrage (idempotent).
Creates the rooms listed in SEED_ROOMS on startup (idempotent).
"""

import logging

from room_registry.services.registry_engine import RegistryEngine

logger = logging.getLogger("room_registry.seed")


async def seed_rooms(engine: RegistryEngine, names: list[str]) -> int:
    """Créer les salles manquantes / Create missing rooms. Returns how many names were seeded."""
    seeded = 0
    for name in names:
        name = name.strip()
        if not name:
            continue
        await engine.create_room(name, actor="seed")
        seeded += 1
    if seeded:
        logger.info("[OK] %d salle(s) seedée(s) / %d room(s) seeded", seeded, seeded)
    return seeded
