# src/marches_ted/services/native_id.py

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Optional

# "00608908-2025" : 8 chiffres, tiret, année sur 4 chiffres
_PUBLICATION_ID_RE = re.compile(r"^(\d{8})-(\d{4})$")

# Dialecte eForms : <efbc:NoticePublicationID schemeName="ojs-notice-id">00608908-2025</...>
_PUBLICATION_TAG_RE = re.compile(
    r"<[^>]*NoticePublicationID[^>]*>([^<]+)</[^>]*NoticePublicationID>",
    re.IGNORECASE,
)

# Ancien dialecte TED : numéro et année dans deux balises séparées
_LEGACY_PAIR_RE = re.compile(
    r"<NOTICE_NUMBER_OJS[^>]*>(\d+)</NOTICE_NUMBER_OJS>.*?<NOTICE_YEAR[^>]*>(\d{4})</NOTICE_YEAR>",
    re.IGNORECASE | re.DOTALL,
)

_FILENAME_RE = re.compile(r"^(\d{8})_(\d{4})$")


def _strip_zeros(number: str) -> str:
    return number.lstrip("0") or "0"


def native_id_from_publication_id(value: Optional[str]) -> Optional[str]:
    """
    "00608908-2025" -> "608908-2025".
    Une valeur présente mais d'une autre forme est renvoyée telle quelle.
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    m = _PUBLICATION_ID_RE.match(s)
    if m:
        return f"{_strip_zeros(m.group(1))}-{m.group(2)}"
    return s


def native_id_from_raw_xml(xml: Optional[str]) -> Optional[str]:
    """
    Repli sur le texte XML brut : balise NoticePublicationID,
    puis couple NOTICE_NUMBER_OJS / NOTICE_YEAR.
    """
    if not xml:
        return None

    m = _PUBLICATION_TAG_RE.search(xml)
    if m:
        found = native_id_from_publication_id(m.group(1))
        if found:
            return found

    m = _LEGACY_PAIR_RE.search(xml)
    if m:
        return f"{_strip_zeros(m.group(1))}-{m.group(2)}"

    return None


def derive_native_id(publication_id: Optional[str], raw_xml: Optional[str]) -> Optional[str]:
    """Champ structuré d'abord, texte brut ensuite."""
    return native_id_from_publication_id(publication_id) or native_id_from_raw_xml(raw_xml)


def native_id_from_filename(name: str) -> Optional[str]:
    """
    Nom de fichier d'un membre d'archive : "00608908_2025.xml" -> "608908-2025".
    """
    stem = PurePosixPath(name).stem
    m = _FILENAME_RE.match(stem)
    if not m:
        return None
    return f"{_strip_zeros(m.group(1))}-{m.group(2)}"
