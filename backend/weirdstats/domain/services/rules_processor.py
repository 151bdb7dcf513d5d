"""
Application des regles de masquage de l'utilisateur a une activite.
"""
import logging
from datetime import timezone
from typing import Optional

from weirdstats.domain.entities.activity import Activity
from weirdstats.domain.entities.activity_stats import ActivityStats
from weirdstats.domain.rules import (
    ActivitySource,
    Context,
    MetricRegistry,
    RuleError,
    StatsSource,
    default_registry,
    evaluate,
    parse_rule_json,
    validate_rule,
)
from weirdstats.domain.services.activity_store import ActivityStore

logger = logging.getLogger(__name__)


def build_context(activity: Activity, stats: Optional[ActivityStats]) -> Context:
    """Contexte d'evaluation ; sans statistiques, les compteurs valent 0."""
    start_unix = 0
    if activity.start_time is not None:
        start_unix = int(activity.start_time.replace(tzinfo=timezone.utc).timestamp())
    stats_source = StatsSource()
    if stats is not None:
        stats_source = StatsSource(
            stop_count=stats.stop_count,
            stop_total_seconds=stats.stop_total_seconds,
            traffic_light_stop_count=stats.traffic_light_stop_count,
        )
    return Context(
        activity=ActivitySource(
            id=activity.id,
            type=activity.type,
            name=activity.name,
            start_unix=start_unix,
            distance_m=activity.distance,
            moving_time_s=activity.moving_time,
        ),
        stats=stats_source,
    )


class RulesProcessor:

    def __init__(self, store: ActivityStore, registry: Optional[MetricRegistry] = None):
        self.store = store
        self.registry = registry or default_registry()

    def process(self, activity_id: int) -> bool:
        """Evalue les regles actives et met a jour `hidden_by_rule`. Retourne la decision."""
        activity = self.store.get_activity(activity_id)
        if activity is None:
            raise LookupError(f"activity {activity_id} not found")

        ctx = build_context(activity, self.store.get_activity_stats(activity_id))

        hide = False
        for rule_row in self.store.list_hide_rules(activity.user_id):
            if not rule_row.enabled:
                continue
            try:
                rule = parse_rule_json(rule_row.condition)
                validate_rule(rule, self.registry)
                matched, should_hide = evaluate(rule, self.registry, ctx, rule_row.id)
            except RuleError as exc:
                logger.warning(f"Regle {rule_row.id} ignoree pour l'activite {activity_id}: {exc}")
                continue
            if matched and should_hide:
                logger.info(f"Activite {activity_id} masquee par la regle {rule_row.id} ({rule_row.name})")
                hide = True
                break

        self.store.update_activity_hidden_by_rule(activity_id, hide)
        return hide
