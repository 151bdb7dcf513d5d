"""
Initialisation du logging et de Sentry, partagee par l'API et la CLI.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler

import sentry_sdk

from weirdstats.core.settings import Settings


def init_sentry(settings: Settings) -> bool:
    """Initialise Sentry uniquement si SENTRY_DSN est configure."""
    if not settings.SENTRY_DSN:
        return False
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.2 if settings.ENVIRONMENT == "production" else 1.0,
        send_default_pii=False,
    )
    return True


def configure_logging(settings: Settings, log_file: str = "weirdstats.log") -> None:
    """Configuration du logging conditionnee par ENVIRONMENT."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)

    if settings.ENVIRONMENT == "production":
        from pythonjsonlogger import jsonlogger
        handler.setFormatter(jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        ))
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    handlers: list[logging.Handler] = [handler]
    if settings.ENVIRONMENT != "production" and log_file:
        handlers.append(RotatingFileHandler(
            log_file, maxBytes=5_000_000, backupCount=3,
        ))

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    # En production, reduire le bruit des modules tiers
    if settings.ENVIRONMENT == "production":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
