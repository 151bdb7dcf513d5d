"""
Entite ActivityQueueEntry - Domain Layer
File FIFO des activites a (re)traiter. Une meme activite peut y figurer plusieurs fois.
Une entree en echec est repoussee (`next_attempt_at`) sans bloquer celles qui la suivent.
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import BigInteger
from typing import Optional
from datetime import datetime


class ActivityQueueEntry(SQLModel, table=True):
    """Table activity_queue : une entree par demande de traitement"""
    __tablename__ = "activity_queue"

    id: Optional[int] = Field(default=None, primary_key=True)
    activity_id: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)
    processed_at: Optional[datetime] = Field(default=None, index=True)

    # Echecs successifs (pas de plafond : l'entree reste eligible)
    attempts: int = Field(default=0)
    last_error: str = ""
    next_attempt_at: Optional[datetime] = Field(default=None, index=True)
