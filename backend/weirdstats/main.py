"""
Application FastAPI principale pour weirdstats
Point d'entree : webhook Strava, sante, etat de la queue ; demarre le worker et le runner de jobs.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import JSONResponse

from weirdstats.api.routers import router
from weirdstats.core.database import create_db_and_tables
from weirdstats.core.logging_setup import configure_logging, init_sentry
from weirdstats.core.redis import check_redis_health
from weirdstats.core.settings import get_settings
from weirdstats.domain.services.container import get_services

settings = get_settings()

init_sentry(settings)
configure_logging(settings)

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestionnaire de cycle de vie de l'application"""
    logger.info(f"Demarrage de weirdstats v{APP_VERSION} (environment={settings.ENVIRONMENT})")

    create_db_and_tables()
    logger.info("Base de donnees initialisee")

    if check_redis_health():
        logger.info("Redis connecte")
    else:
        logger.warning("Redis non disponible : suivi des quotas Strava desactive")

    services = get_services()
    services.worker.start_worker()
    services.job_runner.start_worker()

    yield

    services.worker.stop_worker()
    services.job_runner.stop_worker()
    services.overpass.close()
    await services.worker.wait_stopped()
    await services.job_runner.wait_stopped()
    logger.info("Arret de weirdstats termine")


app = FastAPI(
    title="weirdstats API",
    description="Analyse des arrets et regles de masquage pour les activites Strava",
    version=APP_VERSION,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    lifespan=lifespan,
)

app.include_router(router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc):
    """Gestionnaire global des exceptions"""
    logger.error(f"Erreur non geree: {type(exc).__name__}: {str(exc)}", exc_info=True)
    content = {"detail": "Erreur interne du serveur"}
    if settings.DEBUG:
        content["type"] = type(exc).__name__
        content["message"] = str(exc)
    return JSONResponse(status_code=500, content=content)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "weirdstats.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
