# src/marches_ted/services/normalization.py

from __future__ import annotations

import hashlib
import logging
import re
from datetime import date
from typing import Any, Dict, Optional, Tuple, Union

from marches_ted.models.notice import NormalizedNotice, decode_xml
from marches_ted.parsers.xml_tree import parse_notice_tree, root_name
from marches_ted.services.deadlines import (
    combine_deadline,
    fallback_published_at,
    parse_publication_date,
)
from marches_ted.services.field_resolver import as_list, dig, first_non_empty, resolve_first
from marches_ted.services.native_id import derive_native_id

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "TED"
DEFAULT_BASE_URL = "https://ted.europa.eu"

NOTICE_ROOTS = ("ContractNotice", "ContractAwardNotice", "PriorInformationNotice")
AWARD_ROOT = "ContractAwardNotice"

# Organisation émettrice (Office des publications) à ignorer comme acheteur
PUBLISHER_MARKER = "Publications Office"

_EFORMS = ("UBLExtensions", "UBLExtension", "ExtensionContent", "EformsExtension")

PUBLICATION_DATE_PATHS = (
    _EFORMS + ("Publication", "PublicationDate"),
    ("UBLExtensions", "UBLExtension", 0, "ExtensionContent", "EformsExtension", "Publication", "PublicationDate"),
    ("IssueDate",),
    ("UBLExtensions", "UBLExtension", "ExtensionContent", "Publication", "PublicationDate"),
)

PUBLICATION_ID_PATHS = (
    _EFORMS + ("Publication", "NoticePublicationID"),
    ("UBLExtensions", "UBLExtension", 0, "ExtensionContent", "EformsExtension", "Publication", "NoticePublicationID"),
    ("UBLExtensions", "UBLExtension", "ExtensionContent", "Publication", "NoticePublicationID"),
)

ORGANIZATIONS_PATH = _EFORMS + ("Organizations", "Organization")

DEADLINE_DATE_PATH = ("TenderingProcess", "TenderSubmissionDeadlinePeriod", "EndDate")
DEADLINE_TIME_PATH = ("TenderingProcess", "TenderSubmissionDeadlinePeriod", "EndTime")

_COUNTRY_RE = re.compile(
    r"<[^>]*IdentificationCode[^>]*listName=\"country\"[^>]*>([A-Z]{3})</[^>]*IdentificationCode>",
    re.IGNORECASE,
)


# =========================
# Helpers
# =========================


def sha256_hex(raw: Union[bytes, str, None]) -> str:
    """Empreinte SHA-256 du document brut (détection de changement)."""
    if raw is None:
        raw = b""
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def detail_url_for(native_id: Optional[str], base_url: str = DEFAULT_BASE_URL) -> Optional[str]:
    if not native_id:
        return None
    return f"{base_url.rstrip('/')}/en/notice/{native_id}"


def _notice_root(tree: Dict[str, Any]) -> Tuple[Any, str]:
    """
    Renvoie (racine, type) : ContractNotice / ContractAwardNotice /
    PriorInformationNotice, sinon l'arbre entier.
    """
    for name in NOTICE_ROOTS:
        if name in tree:
            return tree[name], name
    return tree, root_name(tree)


def _country_from_raw_xml(xml: str) -> Optional[str]:
    m = _COUNTRY_RE.search(xml)
    return m.group(1).upper() if m else None


def _resolve_buyer(root: Any) -> Dict[str, Optional[str]]:
    """
    Premier organisme qui n'est pas l'Office des publications,
    puis replis sur ContractingParty / ProcurementProject.
    """
    buyer: Dict[str, Optional[str]] = {"name": None, "city": None, "street": None, "country": None}

    for org in as_list(dig(root, ORGANIZATIONS_PATH)):
        name = resolve_first(org, ("Company", "PartyName", "Name"))
        if not name or PUBLISHER_MARKER in name:
            continue
        buyer["name"] = name
        buyer["city"] = resolve_first(org, ("Company", "PostalAddress", "CityName"))
        buyer["street"] = resolve_first(org, ("Company", "PostalAddress", "StreetName"))
        buyer["country"] = resolve_first(
            org, ("Company", "PostalAddress", "Country", "IdentificationCode")
        )
        break

    if not buyer["name"]:
        buyer["name"] = resolve_first(root, ("ContractingParty", "Party", "PartyName", "Name"))
    if not buyer["city"]:
        buyer["city"] = resolve_first(
            root,
            ("ProcurementProject", "RealizedLocation", "Address", "CityName"),
            ("ContractingParty", "Party", "PostalAddress", "CityName"),
        )
    if not buyer["street"]:
        buyer["street"] = resolve_first(root, ("ContractingParty", "Party", "PostalAddress", "StreetName"))

    return buyer


def _resolve_deadline_fields(root: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Date/heure limites au niveau de la procédure, sinon au niveau du premier lot
    (certains avis ne les déclarent que par lot).
    """
    raw_date = resolve_first(root, DEADLINE_DATE_PATH)
    raw_time = resolve_first(root, DEADLINE_TIME_PATH)

    if not raw_date:
        lots = as_list(dig(root, ("ProcurementProjectLot",)))
        if lots:
            lot = lots[0]
            raw_date = resolve_first(lot, DEADLINE_DATE_PATH)
            raw_time = resolve_first(lot, DEADLINE_TIME_PATH)

    return raw_date, raw_time


# =========================
# Converter
# =========================


def normalize_tree(
    tree: Dict[str, Any],
    raw_xml: str,
    fallback_date: Optional[date],
    source_row_hash: Optional[str],
    *,
    source: str = DEFAULT_SOURCE,
    base_url: str = DEFAULT_BASE_URL,
) -> NormalizedNotice:
    """
    Transforme un arbre d'avis déjà parsé en avis normalisé.
    Les champs introuvables restent à None ; le filtrage d'éligibilité
    se fait plus loin, au moment de l'écriture.
    """
    root, kind = _notice_root(tree)
    is_award = kind == AWARD_ROOT

    # --- Publication ---
    published_at = parse_publication_date(resolve_first(root, *PUBLICATION_DATE_PATHS))
    if published_at is None and fallback_date is not None:
        published_at = fallback_published_at(fallback_date)

    # --- Acheteur ---
    buyer = _resolve_buyer(root)

    country = first_non_empty(
        resolve_first(
            root,
            ("ProcurementProject", "RealizedLocation", "Address", "Country", "IdentificationCode"),
            ("ContractingParty", "Party", "PostalAddress", "Country", "IdentificationCode"),
        ),
        buyer["country"],
        _country_from_raw_xml(raw_xml),
    )

    # --- Date limite ---
    raw_deadline_date, raw_deadline_time = _resolve_deadline_fields(root)
    deadline = combine_deadline(raw_deadline_date, raw_deadline_time)

    # --- Identifiants ---
    native_id = derive_native_id(resolve_first(root, *PUBLICATION_ID_PATHS), raw_xml)
    tb_id = f"{source}|{native_id}" if native_id else None

    return NormalizedNotice(
        tb_id=tb_id,
        native_id=native_id,
        title=resolve_first(root, ("ProcurementProject", "Name")),
        short_description=resolve_first(root, ("ProcurementProject", "Description")),
        buyer_name=buyer["name"],
        buyer_country=country,
        buyer_city=buyer["city"],
        buyer_street=buyer["street"],
        language=resolve_first(root, ("NoticeLanguageCode",)),
        cpv_main=resolve_first(
            root, ("ProcurementProject", "MainCommodityClassification", "ItemClassificationCode")
        ),
        deadline=deadline,
        raw_deadline_date=raw_deadline_date,
        raw_deadline_time=raw_deadline_time,
        detail_url=detail_url_for(native_id, base_url),
        is_award=is_award,
        competition_flag=not is_award,
        published_at=published_at,
        source_row_hash=source_row_hash,
    )


def normalize_notice(
    xml: Union[bytes, str],
    fallback_date: Optional[date],
    source_row_hash: Optional[str] = None,
    *,
    source: str = DEFAULT_SOURCE,
    base_url: str = DEFAULT_BASE_URL,
) -> NormalizedNotice:
    """
    Parse un document XML d'avis et renvoie l'avis normalisé.

    - source_row_hash : si absent, calculé sur les octets bruts
    - fallback_date   : date cible du run, utilisée si la date de publication
                        du document est introuvable ou illisible

    Lève NoticeParseError uniquement si le XML est mal formé.
    """
    if source_row_hash is None:
        source_row_hash = sha256_hex(xml)

    raw_xml = decode_xml(xml) if isinstance(xml, bytes) else xml
    tree = parse_notice_tree(xml)

    notice = normalize_tree(
        tree,
        raw_xml,
        fallback_date,
        source_row_hash,
        source=source,
        base_url=base_url,
    )
    logger.debug(
        "Avis normalisé: native_id=%s award=%s published_at=%s",
        notice.native_id,
        notice.is_award,
        notice.published_at,
    )
    return notice
