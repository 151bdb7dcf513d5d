"""
Routes de supervision : sante, etat de la queue et des jobs, metadonnees des regles.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from weirdstats.core.database import check_database_health
from weirdstats.core.redis import check_redis_health
from weirdstats.domain.services.container import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Point de sante : base obligatoire, Redis optionnel (quotas degrades)."""
    db_ok = check_database_health(services.activities.engine)
    redis_ok = check_redis_health()
    if not db_ok:
        status = "unhealthy"
    elif not redis_ok:
        status = "degraded"
    else:
        status = "healthy"
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": status,
            "environment": services.settings.ENVIRONMENT,
            "services": {
                "database": "connected" if db_ok else "disconnected",
                "redis": "connected" if redis_ok else "disconnected",
            },
        },
    )


@router.get("/api/queue/status")
async def queue_status(services: Services = Depends(get_services)):
    """Etat de la file d'activites, des jobs et des quotas Strava."""
    content = {
        "queue": services.queue.get_queue_status(),
        "jobs": services.jobs.status_counts(),
        "worker_running": services.worker.is_running,
        "job_runner_running": services.job_runner.is_running,
    }
    if services.quota is not None:
        content["strava_quota"] = services.quota.get_status()
    return content


@router.get("/api/rules/metadata")
async def rules_metadata(services: Services = Depends(get_services)):
    """Metriques et operateurs disponibles pour construire une regle."""
    return services.hide_rules.metadata().model_dump()


@router.get("/api/rules")
async def list_rules(
    user_id: Optional[int] = Query(default=None),
    services: Services = Depends(get_services),
):
    """Regles de l'utilisateur et leur description lisible."""
    owner = user_id if user_id is not None else services.settings.STRAVA_USER_ID
    return [
        {
            "id": rule.id,
            "name": rule.name,
            "enabled": rule.enabled,
            "condition": rule.condition,
            "description": description,
        }
        for rule, description in services.hide_rules.describe_rules(owner)
    ]
