"""
Entite HideRule - Domain Layer
Regle utilisateur stockee sous forme de JSON valide (voir domain.rules)
"""
from sqlmodel import SQLModel, Field, Column
import sqlalchemy as sa
from typing import Optional
from datetime import datetime


class HideRule(SQLModel, table=True):
    """Table hide_rules"""
    __tablename__ = "hide_rules"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    name: str = ""
    condition: str = Field(sa_column=Column(sa.Text, nullable=False))
    enabled: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
