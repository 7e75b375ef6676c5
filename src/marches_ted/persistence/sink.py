# src/marches_ted/persistence/sink.py

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from marches_ted.models.notice import NormalizedNotice
from marches_ted.persistence.tables import (
    RAW_COLUMNS,
    STAGING_COLUMNS,
    RawNoticeXml,
    StagingNotice,
)

logger = logging.getLogger(__name__)


@dataclass
class SinkResult:
    """Bilan d'une écriture par lots."""

    written: int = 0
    failed: int = 0
    batches: int = 0
    failed_batches: int = 0

    def __iadd__(self, other: "SinkResult") -> "SinkResult":
        self.written += other.written
        self.failed += other.failed
        self.batches += other.batches
        self.failed_batches += other.failed_batches
        return self


def _dialect_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert non supporté pour le dialecte {dialect_name!r}")
    return insert


def _chunks(rows: Sequence[Dict[str, Any]], size: int) -> Iterable[Sequence[Dict[str, Any]]]:
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


def _dedupe_last(rows: Iterable[Dict[str, Any]], key: Tuple[str, ...]) -> List[Dict[str, Any]]:
    """
    Une même clé ne peut apparaître qu'une fois par requête d'upsert :
    on garde la dernière occurrence, à la position de la première.
    """
    by_key: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row[k] for k in key)] = row
    return list(by_key.values())


class NoticeSink:
    """
    Écriture idempotente des avis dans la base.

    - ted_raw_xml     : upsert sur (source, source_id), le XML est remplacé
    - ted_staging_std : upsert sur tb_id, toutes les colonnes sont remplacées
                        sauf published_at, qui garde sa valeur si la nouvelle est NULL

    Chaque lot est une transaction ; un lot en échec est journalisé et
    compté, les lots suivants sont tout de même tentés.
    """

    def __init__(self, engine: Engine, source: str = "TED", max_bind_params: int = 2000) -> None:
        self.engine = engine
        self.source = source
        self.max_bind_params = max_bind_params
        self._insert = _dialect_insert(engine.dialect.name)

    # ================================================
    #                 ÉLIGIBILITÉ
    # ================================================

    @staticmethod
    def eligible(notices: Iterable[NormalizedNotice]) -> Tuple[List[NormalizedNotice], Counter]:
        """
        Sépare les avis persistables des autres.
        Les avis écartés sont comptés par premier motif manquant.
        """
        kept: List[NormalizedNotice] = []
        skipped: Counter = Counter()
        for notice in notices:
            missing = notice.missing_required()
            if missing:
                skipped[f"missing_{missing[0]}"] += 1
                continue
            kept.append(notice)
        return kept, skipped

    def batch_size(self, columns: int) -> int:
        return max(1, self.max_bind_params // max(1, columns))

    # ================================================
    #                   ÉCRITURE
    # ================================================

    def _staging_row(self, notice: NormalizedNotice, run_id: str) -> Dict[str, Any]:
        return {
            "tb_id": notice.tb_id,
            "native_id": notice.native_id,
            "source": self.source,
            "title": notice.title,
            "short_description": notice.short_description,
            "buyer_name": notice.buyer_name,
            "buyer_country": notice.buyer_country,
            "buyer_city": notice.buyer_city,
            "buyer_street": notice.buyer_street,
            "language": notice.language,
            "cpv_main": notice.cpv_main,
            "deadline": notice.deadline,
            "raw_deadline_date": notice.raw_deadline_date,
            "raw_deadline_time": notice.raw_deadline_time,
            "detail_url": notice.detail_url,
            "is_award": bool(notice.is_award),
            "competition_flag": bool(notice.competition_flag),
            "published_at": notice.published_at,
            "run_id": run_id,
            "source_row_hash": notice.source_row_hash,
        }

    def _staging_stmt(self, rows: Sequence[Dict[str, Any]]):
        table = StagingNotice.__table__
        stmt = self._insert(table).values(list(rows))
        excluded = stmt.excluded
        set_ = {name: excluded[name] for name in STAGING_COLUMNS if name != "tb_id"}
        set_["published_at"] = func.coalesce(excluded.published_at, table.c.published_at)
        return stmt.on_conflict_do_update(index_elements=[table.c.tb_id], set_=set_)

    def _raw_stmt(self, rows: Sequence[Dict[str, Any]]):
        table = RawNoticeXml.__table__
        stmt = self._insert(table).values(list(rows))
        return stmt.on_conflict_do_update(
            index_elements=[table.c.source, table.c.source_id],
            set_={"xml_text": stmt.excluded.xml_text, "inserted_at": func.now()},
        )

    def _write_batches(self, label: str, rows: Sequence[Dict[str, Any]], columns: int, build_stmt) -> SinkResult:
        result = SinkResult()
        size = self.batch_size(columns)

        for index, batch in enumerate(_chunks(rows, size), start=1):
            result.batches += 1
            try:
                with self.engine.begin() as conn:
                    conn.execute(build_stmt(batch))
            except SQLAlchemyError as exc:
                result.failed += len(batch)
                result.failed_batches += 1
                logger.error("[%s] lot %d en échec (%d lignes): %s", label, index, len(batch), exc)
                continue
            result.written += len(batch)
            logger.debug("[%s] lot %d écrit (%d lignes)", label, index, len(batch))

        return result

    def upsert_notices(self, notices: Iterable[NormalizedNotice], run_id: str) -> SinkResult:
        """
        Upsert des avis normalisés. Les avis non éligibles sont ignorés
        ici ; l'appelant les a normalement déjà filtrés via `eligible()`.
        """
        kept, skipped = self.eligible(notices)
        if skipped:
            logger.warning("Avis non éligibles ignorés à l'écriture: %s", dict(skipped))

        rows = _dedupe_last((self._staging_row(n, run_id) for n in kept), ("tb_id",))
        if not rows:
            return SinkResult()

        result = self._write_batches("staging", rows, len(STAGING_COLUMNS), self._staging_stmt)
        logger.info(
            "Staging: %d lignes écrites, %d en échec (%d lots)",
            result.written,
            result.failed,
            result.batches,
        )
        return result

    def upsert_raw_documents(self, docs: Iterable[Tuple[Optional[str], str]]) -> SinkResult:
        """
        Upsert des XML bruts. `docs` : couples (native_id, xml_text) ;
        les documents sans identifiant natif ne sont pas écrits.
        """
        rows = _dedupe_last(
            (
                {"source": self.source, "source_id": native_id, "xml_text": xml_text}
                for native_id, xml_text in docs
                if native_id
            ),
            ("source", "source_id"),
        )
        if not rows:
            return SinkResult()

        result = self._write_batches("raw", rows, len(RAW_COLUMNS), self._raw_stmt)
        logger.info("XML bruts: %d écrits, %d en échec", result.written, result.failed)
        return result

    # ================================================
    #                 VÉRIFICATION
    # ================================================

    def count_run(self, run_id: str) -> int:
        """Nombre de lignes de staging portant ce jeton de run."""
        stmt = select(func.count()).select_from(StagingNotice).where(StagingNotice.run_id == run_id)
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())
