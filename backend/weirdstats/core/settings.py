"""
Configuration centralisee pour weirdstats
Utilise pydantic-settings pour la gestion des variables d'environnement
"""
from pydantic_settings import BaseSettings
from pydantic import Field, model_validator
from typing import List
from functools import lru_cache


DEFAULT_STRAVA_BASE_URL = "https://www.strava.com/api/v3"
DEFAULT_STRAVA_AUTH_BASE_URL = "https://www.strava.com"


class Settings(BaseSettings):
    """Configuration de l'application"""

    # Database
    DATABASE_URL: str = Field(
        default="",
        description="URL SQLAlchemy de la base (derivee de DATABASE_PATH si vide)"
    )
    DATABASE_PATH: str = Field(
        default="weirdstats.db",
        description="Fichier SQLite utilise quand DATABASE_URL est vide"
    )

    # Strava API
    STRAVA_BASE_URL: str = Field(default=DEFAULT_STRAVA_BASE_URL)
    STRAVA_AUTH_BASE_URL: str = Field(default=DEFAULT_STRAVA_AUTH_BASE_URL)
    STRAVA_ACCESS_TOKEN: str = Field(
        default="",
        description="Token d'acces statique (optionnel si un refresh token est fourni)"
    )
    STRAVA_REFRESH_TOKEN: str = Field(
        default="",
        description="Refresh Token Strava OAuth (pour le worker)"
    )
    STRAVA_CLIENT_ID: str = Field(default="")
    STRAVA_CLIENT_SECRET: str = Field(default="")
    STRAVA_VERIFY_TOKEN: str = Field(
        default="",
        description="Token de verification pour la subscription webhook Strava"
    )
    STRAVA_INITIAL_SYNC_DAYS: int = Field(
        default=30,
        description="Profondeur (jours) du backfill lance par la commande sync-since"
    )
    STRAVA_USER_ID: int = Field(
        default=1,
        description="Proprietaire des activites ingerees (installation mono-utilisateur)"
    )

    # Overpass (carte)
    OVERPASS_URL: str = Field(default="")
    OVERPASS_URLS: str = Field(
        default="",
        description="Liste de miroirs separes par des virgules (prioritaire sur OVERPASS_URL)"
    )
    OVERPASS_TIMEOUT_SECONDS: int = Field(default=15)
    OVERPASS_CACHE_HOURS: int = Field(
        default=24,
        description="Duree du cache memoire des requetes Overpass (0 = desactive)"
    )

    # Workers
    WORKER_POLL_INTERVAL_MS: int = Field(
        default=2000,
        description="Attente entre deux polls quand la queue est vide"
    )
    JOB_STALE_AFTER_SECONDS: int = Field(
        default=600,
        description="Au-dela, un job bloque en 'running' peut etre repris"
    )

    # Detection des arrets
    STOP_SPEED_THRESHOLD: float = Field(default=0.5, description="Vitesse (m/s) sous laquelle on est arrete")
    STOP_MIN_DURATION_SECONDS: int = Field(default=60)

    # Monitoring (Sentry)
    SENTRY_DSN: str = Field(
        default="",
        description="DSN Sentry pour le error tracking (vide = Sentry desactive)"
    )

    # Redis
    REDIS_URL: str = Field(
        default="redis://localhost:6379",
        description="URL de connexion Redis (suivi des quotas Strava)"
    )

    # Application
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(
        default="",
        description="Niveau de logging (auto-configure selon ENVIRONMENT si vide)"
    )

    @model_validator(mode="after")
    def _configure_environment(self) -> "Settings":
        """Configure DEBUG, LOG_LEVEL et DATABASE_URL selon l'environnement."""
        is_prod = self.ENVIRONMENT == "production"
        # En production, forcer DEBUG=False
        if is_prod:
            self.DEBUG = False
        if not self.LOG_LEVEL:
            self.LOG_LEVEL = "WARNING" if is_prod else "INFO"
        if not self.DATABASE_URL:
            self.DATABASE_URL = f"sqlite:///{self.DATABASE_PATH}"
        return self

    @property
    def overpass_urls(self) -> List[str]:
        """Miroirs Overpass configures, sans entrees vides."""
        return [url.strip() for url in self.OVERPASS_URLS.split(",") if url.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Recupere la configuration"""
    return Settings()
