"""
Entite WebhookEvent - Domain Layer
Journal brut des evenements webhook Strava recus
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import BigInteger
import sqlalchemy as sa
from typing import Optional
from datetime import datetime


class WebhookEvent(SQLModel, table=True):
    """Table webhook_events"""
    __tablename__ = "webhook_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    object_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    object_type: str
    aspect_type: str
    owner_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    raw_payload: str = Field(sa_column=Column(sa.Text, nullable=False))
    received_at: datetime = Field(default_factory=datetime.utcnow)
