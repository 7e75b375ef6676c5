# src/marches_ted/services/ingestion.py

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from marches_ted.collectors.issue_resolver import IssueResolver
from marches_ted.collectors.package_stream import PackageStats, stream_package
from marches_ted.collectors.ted_client import TedClient
from marches_ted.config import IngestConfig
from marches_ted.errors import IngestionError, NoticeParseError
from marches_ted.models.notice import (
    NormalizedNotice,
    RawNoticeDocument,
    RunSummary,
    build_run_id,
)
from marches_ted.persistence.sink import NoticeSink
from marches_ted.services.normalization import (
    DEFAULT_BASE_URL,
    DEFAULT_SOURCE,
    normalize_notice,
    sha256_hex,
)

logger = logging.getLogger(__name__)

MAX_FAILURE_SAMPLES = 3

_ROOT_ELEMENT_RE = re.compile(r"<(?![?!])(?:[\w.-]+:)?([\w.-]+)[\s/>]")

Pair = Tuple[RawNoticeDocument, NormalizedNotice]


@dataclass
class FailureSample:
    """Diagnostic d'un document dont l'identifiant natif est introuvable."""

    position: int
    member_name: str
    root_element: str
    has_publication_id: bool

    @classmethod
    def from_document(cls, position: int, doc: RawNoticeDocument) -> "FailureSample":
        text = doc.text()
        m = _ROOT_ELEMENT_RE.search(text)
        return cls(
            position=position,
            member_name=doc.member_name,
            root_element=m.group(1) if m else "inconnu",
            has_publication_id="NoticePublicationID" in text,
        )


# =====================================================
#                NORMALISATION EN FLUX
# =====================================================

def normalize_documents(
    documents: Iterable[RawNoticeDocument],
    fallback_date: date,
    summary: RunSummary,
    samples: Optional[List[FailureSample]] = None,
    *,
    source: str = DEFAULT_SOURCE,
    base_url: str = DEFAULT_BASE_URL,
) -> Iterator[Pair]:
    """
    Normalise chaque document au fil de l'eau.

    Un document en erreur est compté (`decode_error`) puis ignoré :
    il n'interrompt jamais le run.
    """
    samples = samples if samples is not None else []

    for doc in documents:
        summary.documents_seen += 1
        try:
            notice = normalize_notice(
                doc.content,
                fallback_date,
                sha256_hex(doc.content),
                source=source,
                base_url=base_url,
            )
        except NoticeParseError as exc:
            summary.skipped["decode_error"] += 1
            logger.warning("XML illisible ignoré (%s): %s", doc.member_name, exc)
            continue
        except Exception:
            summary.skipped["decode_error"] += 1
            logger.exception("Erreur inattendue sur %s, membre ignoré", doc.member_name)
            continue

        if not notice.native_id and len(samples) < MAX_FAILURE_SAMPLES:
            samples.append(FailureSample.from_document(summary.documents_seen, doc))

        yield doc, notice


def _log_failure_samples(samples: List[FailureSample]) -> None:
    if not samples:
        return
    logger.warning("Échantillon de XML sans identifiant natif:")
    for sample in samples:
        logger.warning(
            "  XML #%d %s : racine=%s, NoticePublicationID présent=%s",
            sample.position,
            sample.member_name,
            sample.root_element,
            sample.has_publication_id,
        )


# =====================================================
#                     ÉCRITURE
# =====================================================

def _flush(sink: NoticeSink, pairs: List[Pair], run_id: str, summary: RunSummary) -> None:
    """
    Écrit un lot d'avis : d'abord les XML bruts, puis les lignes normalisées.
    Les deux écritures sont indépendantes et rejouables.
    """
    if not pairs:
        return

    kept, skipped = sink.eligible(notice for _, notice in pairs)
    summary.skipped.update(skipped)
    summary.records_eligible += len(kept)

    raw = sink.upsert_raw_documents(
        (notice.native_id, doc.text()) for doc, notice in pairs if notice.native_id
    )
    summary.raw_written += raw.written
    summary.failed_rows += raw.failed

    staged = sink.upsert_notices(kept, run_id)
    summary.records_written += staged.written
    summary.failed_rows += staged.failed


def ingest_documents(
    documents: Iterable[RawNoticeDocument],
    fallback_date: date,
    sink: NoticeSink,
    run_id: str,
    *,
    issue_id: Optional[str] = None,
    flush_every: Optional[int] = None,
    source: str = DEFAULT_SOURCE,
    base_url: str = DEFAULT_BASE_URL,
    summary: Optional[RunSummary] = None,
) -> RunSummary:
    """
    Normalise puis persiste une suite de documents XML.

    - flush_every=None : tout est écrit en fin de séquence (mode lot)
    - flush_every=N    : écriture tous les N documents normalisés (mode incrémental)
    - summary          : bilan à remplir ; fourni par l'appelant, il reste
                         lisible même si la séquence lève en cours de route

    Sert à l'archive quotidienne comme aux sources alternatives
    (sondage par identifiant, avis unique, dossier de XML bruts).
    """
    if flush_every is not None and flush_every < 1:
        raise ValueError(f"flush_every doit être >= 1 (reçu {flush_every})")

    if summary is None:
        summary = RunSummary(run_id=run_id, issue_id=issue_id)
    samples: List[FailureSample] = []
    buffer: List[Pair] = []

    for pair in normalize_documents(
        documents,
        fallback_date,
        summary,
        samples,
        source=source,
        base_url=base_url,
    ):
        buffer.append(pair)
        if flush_every is not None and len(buffer) >= flush_every:
            _flush(sink, buffer, run_id, summary)
            buffer = []

    _flush(sink, buffer, run_id, summary)
    _log_failure_samples(samples)

    if summary.records_written:
        try:
            found = sink.count_run(run_id)
            logger.info("Vérification: %d lignes en base pour ce run", found)
        except SQLAlchemyError as exc:
            logger.warning("Vérification du run impossible: %s", exc)

    return summary


def log_summary(summary: RunSummary) -> None:
    level = logging.INFO if summary.ok else logging.WARNING
    logger.log(level, "==== Bilan du run ====")
    for line in summary.as_log_lines():
        logger.log(level, line)


# =====================================================
#               ARCHIVE QUOTIDIENNE
# =====================================================

def run_daily_ingestion(
    target_date: date,
    *,
    issue_id: Optional[str] = None,
    client: TedClient,
    sink: NoticeSink,
    config: Optional[IngestConfig] = None,
    flush_every: Optional[int] = None,
) -> RunSummary:
    """
    Ingestion complète de l'archive quotidienne du `target_date` :

    1. résolution de l'identifiant d'archive (si non fourni)
    2. téléchargement et lecture en flux des membres XML
    3. normalisation membre par membre
    4. upsert des XML bruts puis des avis normalisés

    IssueNotFoundError et PackageFetchError sont fatales et remontent
    à l'appelant, avec le bilan partiel du run dans `exc.summary` ;
    toute autre erreur par document est comptée et ignorée.

    Le bilan est journalisé dans tous les cas.
    """
    config = config or client.config
    run_id = build_run_id(issue_id, target_date)
    summary = RunSummary(run_id=run_id, issue_id=issue_id)
    stats = PackageStats()
    logger.info("Run %s : ingestion du %s", run_id, target_date.isoformat())

    try:
        if not issue_id:
            issue_id = IssueResolver.from_client(client).resolve(target_date)
            summary.issue_id = issue_id

        ingest_documents(
            stream_package(client, issue_id, stats),
            target_date,
            sink,
            run_id,
            issue_id=issue_id,
            flush_every=flush_every,
            source=config.source,
            base_url=config.base_url,
            summary=summary,
        )
    except IngestionError as exc:
        exc.summary = summary
        raise
    finally:
        if summary.issue_id:
            logger.info(
                "Archive %s : %d entrées, %d membres XML",
                summary.issue_id,
                stats.total_entries,
                stats.xml_members,
            )
        log_summary(summary)

    return summary
