"""
Configuration de la base de donnees avec SQLModel
"""
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from sqlmodel import create_engine, SQLModel, Session
from weirdstats.core.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _connect_args(url: str) -> dict:
    # Les deux boucles (worker + jobs) partagent l'engine depuis des threads differents
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


# Creer l'engine de base de donnees
engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.DATABASE_URL),
)


def create_db_and_tables(bind=None):
    """Creer toutes les tables de la base de donnees"""
    # Import des entites pour enregistrer les tables dans la metadata
    import weirdstats.domain.entities  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Generateur de session de base de donnees pour l'injection de dependance"""
    with Session(engine) as session:
        yield session


def check_database_health(bind=None) -> bool:
    """Verifie que la base repond a un SELECT 1."""
    try:
        with (bind or engine).connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.warning(f"Base de donnees indisponible: {exc}")
        return False
