"""
Routes webhook Strava : challenge de subscription et reception des evenements.
Routes = validation + delegation au handler. Pas de logique metier ici.
"""
import json
import logging
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from weirdstats.domain.services.container import Services, get_services
from weirdstats.domain.services.strava_webhook_handler import WebhookValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/webhook")
async def strava_webhook_validation(
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    services: Services = Depends(get_services),
):
    """Validation du challenge Strava pour la subscription webhook."""
    try:
        result = services.webhook.verify(hub_challenge, hub_verify_token)
    except WebhookValidationError as e:
        return JSONResponse(status_code=e.status_code, content={"detail": str(e)})
    return JSONResponse(status_code=200, content=result)


@router.post("/webhook")
async def strava_webhook_event(request: Request, services: Services = Depends(get_services)):
    """Recoit les evenements webhook de Strava."""
    raw = (await request.body()).decode("utf-8", errors="replace")
    try:
        event = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Webhook Strava: payload invalide: {e}")
        return JSONResponse(status_code=400, content={"detail": "invalid json"})

    loop = asyncio.get_running_loop()
    try:
        result = await loop.run_in_executor(None, services.webhook.handle_event, event, raw)
    except WebhookValidationError as e:
        return JSONResponse(status_code=e.status_code, content={"detail": str(e)})
    return JSONResponse(status_code=200, content=result)
