"""
Initialisation des entites du domaine
Importer ce module enregistre toutes les tables dans SQLModel.metadata
"""

from .activity import Activity, ActivityPoint
from .activity_stats import ActivityStats, ActivityStop
from .activity_queue import ActivityQueueEntry
from .job import Job, JobStatus, JobType, DEFAULT_MAX_ATTEMPTS
from .hide_rule import HideRule
from .webhook_event import WebhookEvent

__all__ = [
    "Activity", "ActivityPoint",
    "ActivityStats", "ActivityStop",
    "ActivityQueueEntry",
    "Job", "JobStatus", "JobType", "DEFAULT_MAX_ATTEMPTS",
    "HideRule",
    "WebhookEvent",
]
