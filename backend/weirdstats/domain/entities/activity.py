"""
Entite Activity - Domain Layer
Represente une activite Strava et ses points GPS bruts
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import BigInteger
import sqlalchemy as sa
from typing import Optional
from datetime import datetime


class Activity(SQLModel, table=True):
    """Entite Activity complete pour la base de donnees.

    L'identifiant est celui de Strava : pas d'auto-increment.
    Seul le Rule Engine modifie `hidden_by_rule`.
    """
    __tablename__ = "activities"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(default=1, index=True)
    type: str = ""
    name: str = ""
    start_time: datetime = Field(index=True)
    description: str = Field(default="", sa_column=Column(sa.Text, nullable=False, default=""))
    distance: float = 0.0  # en metres
    moving_time: int = 0  # en secondes
    average_power: float = 0.0  # watts
    average_heartrate: float = 0.0  # bpm, 0 = inconnu

    # Visibilite cote Strava
    visibility: str = ""
    is_private: bool = False
    hide_from_home: bool = False

    # Decision du moteur de regles
    hidden_by_rule: bool = False

    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ActivityPoint(SQLModel, table=True):
    """Echantillon GPS ordonne d'une activite (immuable une fois ecrit)"""
    __tablename__ = "activity_points"

    activity_id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    seq: int = Field(primary_key=True)
    lat: float
    lon: float
    ts: datetime
    speed: float = 0.0  # m/s
