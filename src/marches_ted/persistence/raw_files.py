# src/marches_ted/persistence/raw_files.py

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator

from marches_ted.models.notice import RawNoticeDocument

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9._-]")


def safe_basename(member_name: str) -> str:
    """
    Nom de fichier sûr pour un membre d'archive : on aplatit les
    sous-dossiers et on remplace les caractères exotiques.
    """
    base = PurePosixPath(member_name.replace("\\", "/")).name
    base = base.lstrip(".")
    return _UNSAFE_CHARS_RE.sub("_", base) or "member.xml"


def save_documents_to_dir(dest_dir: Path, documents: Iterable[RawNoticeDocument]) -> int:
    """
    Écrit chaque document XML dans `dest_dir` (sans toucher à la base).
    Renvoie le nombre de fichiers écrits.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    written = 0
    for doc in documents:
        path = dest_dir / safe_basename(doc.member_name)
        try:
            path.write_bytes(doc.content)
        except OSError as exc:
            logger.error("Erreur d'écriture pour %s: %s", path, exc)
            continue
        written += 1
    return written


def iter_xml_dir(source_dir: Path) -> Iterator[RawNoticeDocument]:
    """Relit les fichiers *.xml d'un dossier, par ordre de nom."""
    for path in sorted(source_dir.iterdir()):
        if path.is_file() and path.suffix.lower() == ".xml":
            yield RawNoticeDocument(content=path.read_bytes(), member_name=path.name)
