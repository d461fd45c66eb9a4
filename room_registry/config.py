"""
Configuration de l'application / Application configuration.
Utilise pydantic-settings pour charger depuis .env ou variables d'environnement.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Room Registry"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True

    # Database - SQLite par défaut pour le développement
    # Database - SQLite by default for development
    DATABASE_URL: str = "sqlite+aiosqlite:///./room_registry.db"

    # Délai max d'un appel au store / Upper bound for a single store call
    STORE_TIMEOUT_SECONDS: float = 5.0

    # CORS - origines autorisées / allowed origins
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Appairage / Pairing
    REGISTRATION_CODE_TTL_MINUTES: int = 15
    CODE_GENERATION_MAX_ATTEMPTS: int = 10
    # Purge périodique des demandes expirées (0 = désactivée) /
    # Periodic purge of expired requests (0 = disabled)
    EXPIRED_REQUEST_REAPER_SECONDS: int = 0

    # Clé admin (vide = pas de contrôle) / Admin key (empty = no check)
    ADMIN_API_KEY: str = ""

    # Rate Limiting
    RATE_LIMIT_REGISTER: str = "10/minute"
    RATE_LIMIT_ASSIGN: str = "20/minute"
    RATE_LIMIT_ENABLED: bool = True

    # Salles créées au démarrage / Rooms created on startup
    SEED_ROOMS: list[str] = []

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
