"""
GPS Analyzer : fonctions pures sur des sequences de points ordonnees.
"""

from .types import Point, Stop, StopOptions, LatLon, Road, CrossingResult
from .stops import detect_stops
from .crossing import detect_road_crossing, find_stop_end_index, haversine_meters
from .effort import compute_effort, heart_rate_reference, EFFORT_VERSION, EFFORT_HR_WINDOW

__all__ = [
    "Point", "Stop", "StopOptions", "LatLon", "Road", "CrossingResult",
    "detect_stops",
    "detect_road_crossing", "find_stop_end_index", "haversine_meters",
    "compute_effort", "heart_rate_reference", "EFFORT_VERSION", "EFFORT_HR_WINDOW",
]
