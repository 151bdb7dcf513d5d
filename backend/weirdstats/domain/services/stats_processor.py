"""
Analyse des arrets d'une activite : detection, feux de circulation,
traversees de route et score d'effort.

Les statistiques et les arrets sont recalcules integralement a chaque
passage ; retraiter une activite donne le meme resultat.
"""
import logging
from typing import List, Optional

from weirdstats.domain.entities.activity_stats import ActivityStats, ActivityStop
from weirdstats.domain.gps import (
    EFFORT_HR_WINDOW,
    EFFORT_VERSION,
    StopOptions,
    compute_effort,
    detect_road_crossing,
    detect_stops,
    find_stop_end_index,
    heart_rate_reference,
)
from weirdstats.domain.services.activity_store import ActivityStore
from weirdstats.domain.services.map_features import FeatureType, MapFeatureProvider

logger = logging.getLogger(__name__)

# Rayon de recherche des routes autour d'un arret (metres)
ROAD_SEARCH_RADIUS_M = 30


class StopStatsProcessor:

    def __init__(
        self,
        store: ActivityStore,
        map_provider: Optional[MapFeatureProvider] = None,
        stop_options: Optional[StopOptions] = None,
    ):
        self.store = store
        self.map_provider = map_provider
        self.stop_options = stop_options or StopOptions()

    def process(self, activity_id: int) -> ActivityStats:
        points = self.store.load_activity_points(activity_id)
        stops = detect_stops(points, self.stop_options)
        activity_start = points[0].time if points else None

        stats = ActivityStats(activity_id=activity_id, stop_count=len(stops))
        rows: List[ActivityStop] = []

        for seq, stop in enumerate(stops):
            duration_seconds = int(stop.duration.total_seconds())
            start_seconds = (stop.start_time - activity_start).total_seconds() if activity_start else 0.0
            stats.stop_total_seconds += duration_seconds

            has_light = False
            has_crossing = False
            crossing_road = ""

            if self.map_provider is not None:
                # Les erreurs du fournisseur remontent : l'entree de queue reste a retraiter
                features = self.map_provider.nearby_features(stop.lat, stop.lon)
                has_light = any(feature.type == FeatureType.TRAFFIC_LIGHT for feature in features)
                if has_light:
                    stats.traffic_light_stop_count += 1
                else:
                    stop_end_idx = find_stop_end_index(points, start_seconds, self.stop_options.speed_threshold)
                    if stop_end_idx >= 0:
                        roads = self.map_provider.fetch_nearby_roads(stop.lat, stop.lon, ROAD_SEARCH_RADIUS_M)
                        if roads:
                            result = detect_road_crossing(points, stop_end_idx, roads)
                            if result.crossed:
                                has_crossing = True
                                crossing_road = result.road_name
                                stats.road_crossing_count += 1

            rows.append(ActivityStop(
                activity_id=activity_id,
                seq=seq,
                lat=stop.lat,
                lon=stop.lon,
                start_seconds=start_seconds,
                duration_seconds=duration_seconds,
                has_traffic_light=has_light,
                has_road_crossing=has_crossing,
                crossing_road=crossing_road,
            ))

        stats.effort_score = self._effort(activity_id)
        stats.effort_version = EFFORT_VERSION

        self.store.replace_activity_analysis(stats, rows)
        logger.info(
            f"Activite {activity_id}: {stats.stop_count} arrets, "
            f"{stats.traffic_light_stop_count} aux feux, {stats.road_crossing_count} traversees"
        )
        return stats

    def _effort(self, activity_id: int) -> float:
        activity = self.store.get_activity(activity_id)
        if activity is None:
            return 0.0

        hr_reference = None
        if activity.average_heartrate > 0:
            recent = self.store.list_recent_average_heartrates(
                activity.user_id, activity.start_time, EFFORT_HR_WINDOW
            )
            hr_reference = heart_rate_reference(recent)

        return compute_effort(
            activity.moving_time,
            activity.type,
            average_heartrate=activity.average_heartrate,
            hr_reference=hr_reference,
        )
