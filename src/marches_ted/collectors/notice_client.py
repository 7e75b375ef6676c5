# src/marches_ted/collectors/notice_client.py
"""
Sources alternatives d'avis, hors archive quotidienne :

- sondage d'une plage d'identifiants natifs (<numéro>-<année>) via /en/notice/<id>/xml
- récupération d'un avis unique par identifiant natif
- récupération d'un avis unique à partir de sa page de détail

Toutes produisent des RawNoticeDocument qui passent par la même
normalisation que les membres d'archive.
"""

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from marches_ted.collectors.ted_client import TedClient
from marches_ted.models.notice import RawNoticeDocument

logger = logging.getLogger(__name__)

_XML_HREF_RE = re.compile(r"\.xml(\?|$)", re.IGNORECASE)


# =====================================================
#                   CONFIG
# =====================================================

@dataclass
class NoticeProbeConfig:
    """
    Politesse du sondage par identifiant.
    """

    max_misses: int = 120              # arrêt après N absences consécutives
    base_delay: float = 0.7            # pause entre deux requêtes
    jitter: float = 0.4
    rate_limit_pause: float = 5.0      # pause supplémentaire sur HTTP 429
    rate_limit_jitter: float = 2.0
    max_rate_limit_retries: int = 5    # par identifiant


# =====================================================
#           SONDAGE D'UNE PLAGE D'IDENTIFIANTS
# =====================================================

def iter_notice_range(
    client: TedClient,
    year: int,
    start: int,
    end: int,
    config: Optional[NoticeProbeConfig] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Iterator[RawNoticeDocument]:
    """
    Parcourt les identifiants `start`, `start-1`, ... `end` (inclus) de l'année
    et produit le XML de chaque avis trouvé.
    """
    if start < end:
        raise ValueError(f"Plage descendante attendue: start={start} < end={end}")

    config = config or NoticeProbeConfig()
    sleep = sleep or client.sleep

    misses = 0
    hits = 0
    rate_limited = 0
    number = start

    while number >= end:
        native_id = f"{number}-{year}"
        resp = client.notice_xml_response(native_id)

        if resp is not None and resp.status_code == 429 and rate_limited < config.max_rate_limit_retries:
            rate_limited += 1
            logger.warning("%s : limitation de débit, pause puis nouvel essai", native_id)
            sleep(config.rate_limit_pause + random.uniform(0, config.rate_limit_jitter))
            continue

        rate_limited = 0
        if resp is not None and resp.ok:
            hits += 1
            misses = 0
            logger.info("+ %s", native_id)
            yield RawNoticeDocument(content=resp.content, member_name=f"{native_id}.xml")
        else:
            misses += 1
            status = resp.status_code if resp is not None else "réseau"
            logger.debug("- %s (%s)", native_id, status)

        if misses >= config.max_misses:
            logger.info("Arrêt après %d absences consécutives.", misses)
            break

        sleep(config.base_delay + random.uniform(0, config.jitter))
        number -= 1

    logger.info("Sondage terminé : %d avis trouvés.", hits)


# =====================================================
#           AVIS UNIQUE PAR IDENTIFIANT
# =====================================================

def fetch_notice_by_id(client: TedClient, native_id: str) -> Optional[RawNoticeDocument]:
    """XML d'un avis par identifiant natif (ex: 608908-2025), None si absent."""
    logger.info("[avis] %s", native_id)
    content = client.get_notice_xml(native_id)
    if content is None:
        logger.warning("Avis %s introuvable", native_id)
        return None
    return RawNoticeDocument(content=content, member_name=f"{native_id}.xml")


# =====================================================
#           AVIS UNIQUE DEPUIS SA PAGE DE DÉTAIL
# =====================================================

def find_xml_url(html: str, page_url: str) -> Optional[str]:
    """
    Cherche le lien XML d'un avis dans sa page de détail :

    1. un lien direct en .xml
    2. sinon un lien de téléchargement qui mentionne xml
    """
    soup = BeautifulSoup(html, "html.parser")
    hrefs = [a.get("href", "") for a in soup.find_all("a", href=True)]

    for href in hrefs:
        if _XML_HREF_RE.search(href):
            return urljoin(page_url, href)

    for href in hrefs:
        lowered = href.lower()
        if "download" in lowered and "xml" in lowered:
            return urljoin(page_url, href)

    return None


def fetch_notice_from_page(client: TedClient, page_url: str) -> Optional[RawNoticeDocument]:
    """
    Télécharge le XML d'un avis à partir de l'URL de sa page de détail.
    Renvoie None si aucun lien XML n'est trouvé.
    """
    logger.info("[avis] %s", page_url)
    html = client.get_page(page_url)

    xml_url = find_xml_url(html, page_url)
    if not xml_url:
        logger.warning("Aucun lien XML trouvé sur %s", page_url)
        return None

    logger.info("  -> xml %s", xml_url)
    content = client.get_bytes(xml_url)

    parts = [p for p in urlparse(xml_url).path.split("/") if p]
    # ".../notice/608908-2025/xml" -> "608908-2025.xml"
    if len(parts) >= 2 and parts[-1].lower() == "xml":
        parts = parts[:-1]
    name = parts[-1] if parts else "notice"
    if not name.lower().endswith(".xml"):
        name = f"{name}.xml"
    return RawNoticeDocument(content=content, member_name=name)
