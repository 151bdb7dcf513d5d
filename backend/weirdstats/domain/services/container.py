"""
Assemblage des services a partir de la configuration.
Partage par l'application FastAPI et la CLI.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from sqlalchemy.engine import Engine

from weirdstats.core.settings import Settings, get_settings
from weirdstats.domain.gps import StopOptions
from weirdstats.domain.rules import MetricRegistry, default_registry
from weirdstats.domain.services.activity_store import ActivityStore
from weirdstats.domain.services.hide_rule_service import HideRuleService
from weirdstats.domain.services.ingest_service import Ingestor
from weirdstats.domain.services.job_runner import JobRunner, build_handlers
from weirdstats.domain.services.job_store import JobStore
from weirdstats.domain.services.overpass_client import OverpassClient, build_overpass_client
from weirdstats.domain.services.pipeline import PipelineProcessor
from weirdstats.domain.services.queue_store import QueueStore
from weirdstats.domain.services.queue_worker import QueueWorker
from weirdstats.domain.services.redis_quota_manager import StravaQuotaTracker, build_quota_tracker
from weirdstats.domain.services.rules_processor import RulesProcessor
from weirdstats.domain.services.stats_processor import StopStatsProcessor
from weirdstats.domain.services.strava_client import StravaClient, build_token_source
from weirdstats.domain.services.strava_webhook_handler import WebhookHandler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    registry: MetricRegistry
    activities: ActivityStore
    queue: QueueStore
    jobs: JobStore
    strava: Optional[StravaClient]
    quota: Optional[StravaQuotaTracker]
    overpass: OverpassClient
    ingestor: Ingestor
    pipeline: PipelineProcessor
    worker: QueueWorker
    job_runner: JobRunner
    hide_rules: HideRuleService
    webhook: WebhookHandler


def build_services(settings: Settings, engine: Optional[Engine] = None) -> Services:
    if engine is None:
        from weirdstats.core.database import engine as default_engine
        engine = default_engine

    registry = default_registry()
    activities = ActivityStore(engine)
    queue = QueueStore(engine)
    jobs = JobStore(engine)

    quota = None
    strava = None
    token_source = build_token_source(settings)
    if token_source is not None:
        quota = build_quota_tracker(settings.REDIS_URL)
        strava = StravaClient(
            base_url=settings.STRAVA_BASE_URL,
            token_source=token_source,
            quota_tracker=quota,
        )
    else:
        logger.warning("Aucun identifiant Strava configure : ingestion desactivee")

    overpass = build_overpass_client(settings)
    ingestor = Ingestor(activities, queue, strava, user_id=settings.STRAVA_USER_ID)
    stats = StopStatsProcessor(
        activities,
        map_provider=overpass,
        stop_options=StopOptions(
            speed_threshold=settings.STOP_SPEED_THRESHOLD,
            min_duration=timedelta(seconds=settings.STOP_MIN_DURATION_SECONDS),
        ),
    )
    pipeline = PipelineProcessor(
        ingest=ingestor,
        stats=stats,
        rules=RulesProcessor(activities, registry),
    )

    poll_interval = settings.WORKER_POLL_INTERVAL_MS / 1000.0
    worker = QueueWorker(queue, pipeline, poll_interval=poll_interval)
    job_runner = JobRunner(
        jobs,
        build_handlers(jobs, queue, strava, ingestor),
        poll_interval=poll_interval,
        stale_after=timedelta(seconds=settings.JOB_STALE_AFTER_SECONDS),
    )

    return Services(
        settings=settings,
        registry=registry,
        activities=activities,
        queue=queue,
        jobs=jobs,
        strava=strava,
        quota=quota,
        overpass=overpass,
        ingestor=ingestor,
        pipeline=pipeline,
        worker=worker,
        job_runner=job_runner,
        hide_rules=HideRuleService(activities, registry),
        webhook=WebhookHandler(
            engine,
            verify_token=settings.STRAVA_VERIFY_TOKEN,
            on_enqueued=worker.notify_new_items,
        ),
    )


@lru_cache()
def get_services() -> Services:
    """Services de l'application (singleton)."""
    return build_services(get_settings())
