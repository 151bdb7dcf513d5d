"""
Entites ActivityStats et ActivityStop - Domain Layer
Statistiques derivees des traces GPS, recalculees integralement a chaque analyse
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import BigInteger
from datetime import datetime


class ActivityStats(SQLModel, table=True):
    """Statistiques d'arrets et d'effort d'une activite"""
    __tablename__ = "activity_stats"

    activity_id: int = Field(sa_column=Column(BigInteger, primary_key=True, autoincrement=False))
    stop_count: int = 0
    stop_total_seconds: int = 0
    traffic_light_stop_count: int = 0
    road_crossing_count: int = 0
    effort_score: float = 0.0
    effort_version: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ActivityStop(SQLModel, table=True):
    """Arret detecte dans une trace (remplace en bloc, jamais patche)"""
    __tablename__ = "activity_stops"

    activity_id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    seq: int = Field(primary_key=True)
    lat: float
    lon: float
    start_seconds: float  # depuis le debut de l'activite
    duration_seconds: int
    has_traffic_light: bool = False
    has_road_crossing: bool = False
    crossing_road: str = ""
    updated_at: datetime = Field(default_factory=datetime.utcnow)
