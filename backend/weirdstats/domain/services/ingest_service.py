"""
Ingestion des activites Strava : detail + streams -> activite et points GPS en base.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from weirdstats.domain.entities.activity import Activity
from weirdstats.domain.gps.types import Point
from weirdstats.domain.services.activity_store import ActivityStore
from weirdstats.domain.services.queue_store import QueueStore
from weirdstats.domain.services.strava_client import StravaClient, StreamSet

logger = logging.getLogger(__name__)

SYNC_PAGE_SIZE = 100


class IngestError(Exception):
    """Donnees amont incoherentes ou client Strava absent."""


def build_points(start: datetime, streams: StreamSet) -> List[Point]:
    """
    Construit les points GPS a partir des streams Strava.
    Sans latlng ou sans time (activite indoor, saisie manuelle) : liste vide.
    """
    if not streams.latlng or not streams.time_offsets_sec:
        return []
    if len(streams.latlng) != len(streams.time_offsets_sec):
        raise IngestError(
            f"latlng/time length mismatch ({len(streams.latlng)} != {len(streams.time_offsets_sec)})"
        )

    points = []
    for idx, (lat, lon) in enumerate(streams.latlng):
        speed = streams.velocity_smooth[idx] if idx < len(streams.velocity_smooth) else 0.0
        points.append(Point(
            lat=lat,
            lon=lon,
            time=start + timedelta(seconds=streams.time_offsets_sec[idx]),
            speed=speed,
        ))
    return points


class Ingestor:

    def __init__(
        self,
        store: ActivityStore,
        queue: QueueStore,
        client: Optional[StravaClient],
        user_id: int = 1,
    ):
        self.store = store
        self.queue = queue
        self.client = client
        self.user_id = user_id

    def _require_client(self) -> StravaClient:
        if self.client is None:
            raise IngestError("strava client not configured")
        return self.client

    def ensure_activity(self, activity_id: int) -> None:
        """Recupere l'activite si elle est absente ou n'a aucun point."""
        if not self.store.has_activity(activity_id):
            self.fetch_and_upsert(activity_id)
            return
        if self.store.count_activity_points(activity_id) == 0:
            self.fetch_and_upsert(activity_id)

    def fetch_and_upsert(self, activity_id: int) -> None:
        client = self._require_client()
        detail = client.get_activity(activity_id)
        streams = client.get_streams(activity_id)

        points = build_points(detail.start_date, streams)
        if not points:
            logger.info(f"Activite {detail.id} ({detail.name}) sans donnees GPS")

        self.store.upsert_activity(
            Activity(
                id=detail.id,
                user_id=self.user_id,
                type=detail.type,
                name=detail.name,
                start_time=detail.start_date,
                description=detail.description,
                distance=detail.distance,
                moving_time=detail.moving_time,
                average_power=detail.average_power,
                average_heartrate=detail.average_heartrate,
                visibility=detail.visibility,
                is_private=detail.private,
                hide_from_home=detail.hide_from_home,
            ),
            points,
        )
        logger.info(f"Activite {detail.id} ingeree ({len(points)} points)")

    def sync_latest_activity(self) -> int:
        """Ingere et enfile l'activite la plus recente. Retourne 0 ou 1."""
        client = self._require_client()
        activities = client.list_activities(page=1, per_page=1)
        if not activities:
            return 0

        self.fetch_and_upsert(activities[0].id)
        self.queue.enqueue_activity(activities[0].id)
        return 1

    def sync_activities_since(self, after: datetime) -> int:
        """Ingere et enfile toutes les activites depuis `after`. Retourne le nombre synchronise."""
        client = self._require_client()

        summaries = []
        page = 1
        while True:
            activities = client.list_activities(after=after, page=page, per_page=SYNC_PAGE_SIZE)
            if not activities:
                break
            summaries.extend(activities)
            if len(activities) < SYNC_PAGE_SIZE:
                break
            page += 1

        synced = 0
        for summary in summaries:
            self.fetch_and_upsert(summary.id)
            self.queue.enqueue_activity(summary.id)
            synced += 1

        logger.info(f"{synced} activites synchronisees depuis {after.isoformat()}")
        return synced
