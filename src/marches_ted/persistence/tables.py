# src/marches_ted/persistence/tables.py

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class RawNoticeXml(Base):
    """Copie d'archive du XML d'origine, clé naturelle (source, source_id)."""

    __tablename__ = "ted_raw_xml"

    source: Mapped[str] = mapped_column(String(32), primary_key=True)
    source_id: Mapped[str] = mapped_column(Text, primary_key=True)
    xml_text: Mapped[str] = mapped_column(Text, nullable=False)
    inserted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=True,
    )


class StagingNotice(Base):
    """
    Avis normalisé prêt pour la suite de la chaîne, clé tb_id.

    Les valeurs issues du XML sont stockées en Text : aucune longueur
    n'est garantie par la source.
    """

    __tablename__ = "ted_staging_std"

    tb_id: Mapped[str] = mapped_column(Text, primary_key=True)
    native_id: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text)
    short_description: Mapped[Optional[str]] = mapped_column(Text)
    buyer_name: Mapped[Optional[str]] = mapped_column(Text)
    buyer_country: Mapped[Optional[str]] = mapped_column(Text)
    buyer_city: Mapped[Optional[str]] = mapped_column(Text)
    buyer_street: Mapped[Optional[str]] = mapped_column(Text)
    language: Mapped[Optional[str]] = mapped_column(Text)
    cpv_main: Mapped[Optional[str]] = mapped_column(Text)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    raw_deadline_date: Mapped[Optional[str]] = mapped_column(Text)
    raw_deadline_time: Mapped[Optional[str]] = mapped_column(Text)
    detail_url: Mapped[Optional[str]] = mapped_column(Text)
    is_award: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    competition_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    run_id: Mapped[Optional[str]] = mapped_column(Text)
    source_row_hash: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        Index("ix_ted_staging_std_source_native_id", "source", "native_id"),
        Index("ix_ted_staging_std_published_at", "published_at"),
        Index("ix_ted_staging_std_run_id", "run_id"),
    )


STAGING_COLUMNS = [c.name for c in StagingNotice.__table__.columns]
RAW_COLUMNS = ["source", "source_id", "xml_text"]
