"""
Types partages par l'analyse GPS (points, arrets, geometrie des routes).
Aucune I/O : ce sont des valeurs simples.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional


@dataclass(frozen=True)
class Point:
    """Echantillon GPS ordonne."""
    lat: float
    lon: float
    time: datetime
    speed: float = 0.0  # m/s


@dataclass(frozen=True)
class StopOptions:
    speed_threshold: float = 0.5  # m/s
    min_duration: timedelta = timedelta(seconds=60)


@dataclass(frozen=True)
class Stop:
    """Intervalle a basse vitesse, positionne sur son premier point."""
    lat: float
    lon: float
    start_time: Optional[datetime]
    duration: timedelta


@dataclass(frozen=True)
class LatLon:
    lat: float
    lon: float


@dataclass
class Road:
    """Troncon de route OSM et sa geometrie."""
    id: int
    name: str = ""
    highway: str = ""  # primary, secondary, residential...
    geometry: List[LatLon] = field(default_factory=list)


@dataclass(frozen=True)
class CrossingResult:
    crossed: bool = False
    road_name: str = ""
    road_type: str = ""
