# src/marches_ted/models/notice.py

from __future__ import annotations

import codecs
import logging
import re
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

logger = logging.getLogger(__name__)

_XML_ENCODING_RE = re.compile(rb"""^\s*<\?xml[^>]*?\sencoding\s*=\s*["']([A-Za-z0-9._-]+)["']""")


def decode_xml(content: bytes, name: str = "") -> str:
    """
    Octets XML -> texte, selon l'encodage annoncé par le document :
    BOM, sinon attribut `encoding` du prologue, sinon UTF-8.

    Un contenu qui ne respecte pas son encodage est tout de même décodé
    (octets invalides remplacés), mais la perte est journalisée.
    """
    label = name or "document"
    if content.startswith(codecs.BOM_UTF8):
        encoding = "utf-8-sig"
    elif content.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        encoding = "utf-16"
    else:
        m = _XML_ENCODING_RE.match(content)
        encoding = m.group(1).decode("ascii") if m else "utf-8"
        try:
            codecs.lookup(encoding)
        except LookupError:
            logger.warning("Encodage déclaré inconnu %r (%s), lecture en UTF-8", encoding, label)
            encoding = "utf-8"

    try:
        return content.decode(encoding)
    except UnicodeDecodeError as exc:
        logger.warning("Décodage %s avec pertes (%s): %s", encoding, label, exc)
        return content.decode(encoding, errors="replace")


# =======================
# Document brut
# =======================

@dataclass(frozen=True)
class RawNoticeDocument:
    """
    Contenu XML d'origine d'un avis, tel que trouvé dans l'archive
    (ou téléchargé individuellement), avec le nom du membre source.
    """

    content: bytes
    member_name: str

    def text(self) -> str:
        return decode_xml(self.content, self.member_name)


# =======================
# Avis normalisé
# =======================

@dataclass
class NormalizedNotice:
    """
    Représentation aplatie d'un avis TED (contract notice, award, PIN).
    """

    # Identifiants
    tb_id: Optional[str]
    native_id: Optional[str]

    # Infos principales
    title: Optional[str] = None
    short_description: Optional[str] = None

    buyer_name: Optional[str] = None
    buyer_country: Optional[str] = None   # code ISO-3, ex: "FRA"
    buyer_city: Optional[str] = None
    buyer_street: Optional[str] = None

    language: Optional[str] = None
    cpv_main: Optional[str] = None

    # Date limite (UTC) + composants bruts conservés pour audit
    deadline: Optional[datetime] = None
    raw_deadline_date: Optional[str] = None
    raw_deadline_time: Optional[str] = None

    detail_url: Optional[str] = None

    is_award: bool = False
    competition_flag: bool = True

    published_at: Optional[datetime] = None
    source_row_hash: Optional[str] = None

    def missing_required(self) -> list[str]:
        """Liste des champs obligatoires absents (vide => persistable)."""
        missing = []
        if not self.tb_id:
            missing.append("tb_id")
        if not self.native_id:
            missing.append("native_id")
        if self.published_at is None:
            missing.append("published_at")
        return missing

    @property
    def is_eligible(self) -> bool:
        return not self.missing_required()


# =======================
# Exécution d'ingestion
# =======================

def build_run_id(issue_id: Optional[str], target_date: date) -> str:
    """
    Jeton d'exécution : 'ted-run:<issue|auto>:<YYYY-MM-DD>:<uuid4>'.
    Sert uniquement à tracer les lignes touchées par un run.
    """
    return f"ted-run:{issue_id or 'auto'}:{target_date.isoformat()}:{uuid.uuid4()}"


@dataclass
class RunSummary:
    """Compteurs d'un run, toujours émis même en cas d'échec partiel."""

    run_id: str
    issue_id: Optional[str] = None
    documents_seen: int = 0
    records_eligible: int = 0
    records_written: int = 0
    raw_written: int = 0
    failed_rows: int = 0
    skipped: Counter = field(default_factory=Counter)

    @property
    def ok(self) -> bool:
        return self.failed_rows == 0

    def as_log_lines(self) -> list[str]:
        lines = [
            f"Run ID              : {self.run_id}",
            f"Archive             : {self.issue_id or '-'}",
            f"Documents XML vus   : {self.documents_seen}",
            f"Avis éligibles      : {self.records_eligible}",
            f"Avis écrits         : {self.records_written}",
            f"XML bruts écrits    : {self.raw_written}",
            f"Lignes en échec     : {self.failed_rows}",
        ]
        for reason, count in sorted(self.skipped.items()):
            lines.append(f"Ignorés ({reason}) : {count}")
        return lines
