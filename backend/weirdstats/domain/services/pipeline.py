"""
Pipeline de traitement d'une activite : ingestion -> statistiques -> regles.
Chaque etape est optionnelle ; la premiere erreur interrompt le pipeline.
"""
import logging
from typing import Optional

from weirdstats.domain.services.ingest_service import Ingestor
from weirdstats.domain.services.rules_processor import RulesProcessor
from weirdstats.domain.services.stats_processor import StopStatsProcessor

logger = logging.getLogger(__name__)


class PipelineProcessor:

    def __init__(
        self,
        ingest: Optional[Ingestor] = None,
        stats: Optional[StopStatsProcessor] = None,
        rules: Optional[RulesProcessor] = None,
    ):
        self.ingest = ingest
        self.stats = stats
        self.rules = rules

    def process(self, activity_id: int) -> None:
        if self.ingest is not None:
            self.ingest.ensure_activity(activity_id)
        if self.stats is not None:
            self.stats.process(activity_id)
        if self.rules is not None:
            self.rules.process(activity_id)
        logger.debug(f"Pipeline termine pour l'activite {activity_id}")
