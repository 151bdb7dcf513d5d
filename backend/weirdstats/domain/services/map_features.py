"""
Types du fournisseur de donnees cartographiques (feux, routes).
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol

from weirdstats.domain.gps.types import Road


class FeatureType(str, Enum):
    TRAFFIC_LIGHT = "traffic_light"


@dataclass(frozen=True)
class Feature:
    type: str
    name: str = ""


class MapFeatureProvider(Protocol):
    """Ce dont l'analyse des arrets a besoin du fournisseur de carte."""

    def nearby_features(self, lat: float, lon: float) -> List[Feature]:
        ...

    def fetch_nearby_roads(self, lat: float, lon: float, radius_m: int) -> List[Road]:
        ...
