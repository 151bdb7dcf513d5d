"""
Handler pour les evenements webhook Strava.
Journalise chaque evenement puis enfile l'activite pour activity.create / activity.update.
"""
import json
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from weirdstats.domain.entities.activity_queue import ActivityQueueEntry
from weirdstats.domain.entities.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)

ENQUEUED_ASPECTS = ("create", "update")


class WebhookValidationError(ValueError):
    """Requete webhook rejetee ; `status_code` est le code HTTP a renvoyer."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def validate_webhook_challenge(challenge: Optional[str], verify_token: Optional[str], expected_token: str) -> Dict[str, str]:
    """Reponse au challenge de subscription Strava."""
    if not challenge:
        raise WebhookValidationError("missing challenge", status_code=400)
    if expected_token and verify_token != expected_token:
        raise WebhookValidationError("invalid verify token", status_code=403)
    return {"hub.challenge": challenge}


def _positive_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class WebhookHandler:

    def __init__(
        self,
        engine: Optional[Engine] = None,
        verify_token: str = "",
        on_enqueued: Optional[Callable[[], None]] = None,
    ):
        if engine is None:
            from weirdstats.core.database import engine as default_engine
            engine = default_engine
        self.engine = engine
        self.verify_token = verify_token
        self.on_enqueued = on_enqueued

    def verify(self, challenge: Optional[str], verify_token: Optional[str]) -> Dict[str, str]:
        return validate_webhook_challenge(challenge, verify_token, self.verify_token)

    def handle_event(self, event: Any, raw_payload: str = "") -> Dict[str, Any]:
        """
        Valide, journalise et, si besoin, enfile l'activite dans la meme transaction.
        Leve WebhookValidationError si un champ obligatoire manque.
        """
        if not isinstance(event, dict):
            raise WebhookValidationError("invalid json")

        object_type = event.get("object_type") or ""
        aspect_type = event.get("aspect_type") or ""
        object_id = _positive_int(event.get("object_id"))
        owner_id = _positive_int(event.get("owner_id"))
        if not object_type or not aspect_type or object_id == 0 or owner_id == 0:
            raise WebhookValidationError("missing required fields")

        logger.info(
            f"Webhook Strava: user={owner_id} type={object_type} aspect={aspect_type} object={object_id}"
        )

        enqueue = object_type == "activity" and aspect_type in ENQUEUED_ASPECTS
        with Session(self.engine) as session:
            session.add(WebhookEvent(
                object_id=object_id,
                object_type=object_type,
                aspect_type=aspect_type,
                owner_id=owner_id,
                raw_payload=raw_payload or json.dumps(event),
            ))
            if enqueue:
                session.add(ActivityQueueEntry(activity_id=object_id))
            session.commit()

        if enqueue and self.on_enqueued is not None:
            self.on_enqueued()

        return {"status": "ok", "enqueued": enqueue}
