"""
Entite Job - Domain Layer
Unite de travail de backfill reprenable : payload immuable + curseur de progression
"""
from sqlmodel import SQLModel, Field, Column
import sqlalchemy as sa
from typing import Optional
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    """Statuts possibles d'un job"""
    QUEUED = "queued"
    RUNNING = "running"
    RETRY = "retry"
    FAILED = "failed"
    COMPLETED = "completed"


class JobType(str, Enum):
    """Types de jobs connus du runner"""
    SYNC_ACTIVITIES_SINCE = "sync_activities_since"
    SYNC_LATEST = "sync_latest"


DEFAULT_MAX_ATTEMPTS = 10


class Job(SQLModel, table=True):
    """Table jobs. `payload` et `cursor` sont du JSON opaque, interprete par le handler du type."""
    __tablename__ = "jobs"

    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(index=True)
    status: JobStatus = Field(default=JobStatus.QUEUED, index=True)
    payload: str = Field(default="{}", sa_column=Column(sa.Text, nullable=False, default="{}"))
    cursor: str = Field(default="{}", sa_column=Column(sa.Text, nullable=False, default="{}"))
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS)
    last_error: str = ""
    next_run_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
