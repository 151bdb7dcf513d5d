"""
Detection de traversee de route apres un arret.

A partir de la fin d'un arret, on construit un court segment de trajet
(15 m ou 14 points au plus) et on le teste contre chaque arete des routes
voisines avec un test d'orientation classique (produits vectoriels).
Les cas colineaires et les contacts aux extremites comptent comme traversee.
"""
import math
from typing import Sequence, Tuple

from weirdstats.domain.gps.types import CrossingResult, Point, Road

EARTH_RADIUS_M = 6371000
# Distance minimale du segment de trajet analyse
CROSSING_PATH_METERS = 15
# Nombre max de points consommes apres la fin de l'arret
CROSSING_MAX_POINTS = 14

Segment = Tuple[float, float, float, float]  # x1, y1, x2, y2 (x = lon, y = lat)


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance orthodromique en metres."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (math.sin(d_lat / 2) ** 2
         + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def direction(x1: float, y1: float, x2: float, y2: float, x3: float, y3: float) -> float:
    """Produit vectoriel de (p2 - p1) et (p3 - p1)."""
    return (x3 - x1) * (y2 - y1) - (y3 - y1) * (x2 - x1)


def _on_segment(x1: float, y1: float, x2: float, y2: float, px: float, py: float) -> bool:
    return min(x1, x2) <= px <= max(x1, x2) and min(y1, y2) <= py <= max(y1, y2)


def _straddles(d_a: float, d_b: float) -> bool:
    return (d_a > 0 and d_b < 0) or (d_a < 0 and d_b > 0)


def segments_intersect(a: Segment, b: Segment) -> bool:
    ax1, ay1, ax2, ay2 = a
    bx1, by1, bx2, by2 = b
    d1 = direction(bx1, by1, bx2, by2, ax1, ay1)
    d2 = direction(bx1, by1, bx2, by2, ax2, ay2)
    d3 = direction(ax1, ay1, ax2, ay2, bx1, by1)
    d4 = direction(ax1, ay1, ax2, ay2, bx2, by2)

    if _straddles(d1, d2) and _straddles(d3, d4):
        return True

    # Cas colineaires : le point touche l'autre segment
    if d1 == 0 and _on_segment(bx1, by1, bx2, by2, ax1, ay1):
        return True
    if d2 == 0 and _on_segment(bx1, by1, bx2, by2, ax2, ay2):
        return True
    if d3 == 0 and _on_segment(ax1, ay1, ax2, ay2, bx1, by1):
        return True
    if d4 == 0 and _on_segment(ax1, ay1, ax2, ay2, bx2, by2):
        return True
    return False


def detect_road_crossing(points: Sequence[Point], stop_end_idx: int, roads: Sequence[Road]) -> CrossingResult:
    """Verifie si le trajet qui suit un arret traverse une des routes.

    Un index hors bornes, l'absence de routes ou de point suivant donnent
    simplement « pas de traversee ».
    """
    if stop_end_idx < 0 or stop_end_idx >= len(points) - 1 or not roads:
        return CrossingResult()

    start = points[stop_end_idx]
    end_idx = stop_end_idx + 1
    limit = min(len(points), stop_end_idx + CROSSING_MAX_POINTS + 1)
    for i in range(stop_end_idx + 1, limit):
        end_idx = i
        if haversine_meters(start.lat, start.lon, points[i].lat, points[i].lon) >= CROSSING_PATH_METERS:
            break

    end = points[end_idx]
    path: Segment = (start.lon, start.lat, end.lon, end.lat)

    for road in roads:
        geometry = road.geometry
        for i in range(len(geometry) - 1):
            edge: Segment = (geometry[i].lon, geometry[i].lat, geometry[i + 1].lon, geometry[i + 1].lat)
            if segments_intersect(path, edge):
                return CrossingResult(crossed=True, road_name=road.name, road_type=road.highway)

    return CrossingResult()


def find_stop_end_index(points: Sequence[Point], stop_start_seconds: float, threshold: float) -> int:
    """Index du premier point au-dessus du seuil a partir du debut de l'arret, -1 sinon.

    `stop_start_seconds` est compte depuis le premier point de la trace.
    """
    if not points:
        return -1
    origin = points[0].time
    for i, point in enumerate(points):
        elapsed = (point.time - origin).total_seconds()
        if elapsed >= stop_start_seconds and point.speed > threshold:
            return i
    return -1
