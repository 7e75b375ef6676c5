# src/marches_ted/persistence/db.py

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from marches_ted.persistence.tables import Base

logger = logging.getLogger(__name__)


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Crée le moteur SQLAlchemy d'un run. Pour SQLite, le dossier du
    fichier de base est créé si besoin.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(url, pool_pre_ping=True, echo=echo, future=True)


def create_schema(engine: Engine) -> None:
    """Crée les tables si elles n'existent pas (idempotent)."""
    Base.metadata.create_all(bind=engine)
    logger.info("Tables créées / vérifiées: %s", ", ".join(sorted(Base.metadata.tables)))


def check_connection(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return True
    except Exception as exc:
        logger.error("Connexion à la base impossible: %s", exc)
        return False
