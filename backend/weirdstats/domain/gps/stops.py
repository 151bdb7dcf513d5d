"""
Detection des arrets dans une trace GPS.

Machine a deux etats (en mouvement / arrete) pilotee par les points successifs :
un point a vitesse <= seuil ouvre un arret, le premier point au-dessus du seuil
le ferme. L'arret est emis s'il dure au moins `min_duration`, avec la position
de son premier point et une duree = dernier point arrete - premier point arrete.
Les vitesses sont prises telles quelles (pas de lissage).
"""
from typing import List, Optional, Sequence

from weirdstats.domain.gps.types import Point, Stop, StopOptions


def _close_stop(start: Point, last: Point, options: StopOptions) -> Optional[Stop]:
    duration = last.time - start.time
    if duration < options.min_duration:
        return None
    return Stop(lat=start.lat, lon=start.lon, start_time=start.time, duration=duration)


def detect_stops(points: Sequence[Point], options: Optional[StopOptions] = None) -> List[Stop]:
    """Retourne la liste complete des arrets de la trace."""
    options = options or StopOptions()
    stops: List[Stop] = []
    if not points:
        return stops

    stop_start: Optional[Point] = None
    last = points[0]

    for point in points:
        if point.speed <= options.speed_threshold:
            if stop_start is None:
                stop_start = point
        elif stop_start is not None:
            # `last` est encore le dernier point arrete
            stop = _close_stop(stop_start, last, options)
            if stop is not None:
                stops.append(stop)
            stop_start = None
        last = point

    if stop_start is not None:
        stop = _close_stop(stop_start, last, options)
        if stop is not None:
            stops.append(stop)

    return stops
