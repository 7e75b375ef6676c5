# src/marches_ted/collectors/ted_client.py

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Optional

import requests
from requests import Response, Session
from requests.exceptions import RequestException

from marches_ted.config import IngestConfig
from marches_ted.errors import PackageFetchError

logger = logging.getLogger(__name__)

# Statuts qui justifient une nouvelle tentative (limitation de débit, erreurs serveur)
RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})

XML_ACCEPT = "application/xml,text/xml;q=0.9,*/*;q=0.8"


def parse_retry_after_seconds(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return max(0.0, float(value.strip()))
    except ValueError:
        # Retry-After au format date HTTP : on garde le backoff par défaut
        return 0.0


class TedClient:
    """
    Client HTTP pour les archives quotidiennes et les avis individuels TED.

    - GET  /packages/daily/<id>   -> archive tar.gz de l'édition du jour
    - HEAD /packages/daily/<id>   -> existence + nom de fichier (Content-Disposition)
    - GET  /en/notice/<id>/xml    -> XML d'un avis
    """

    def __init__(
        self,
        config: Optional[IngestConfig] = None,
        session: Optional[Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or IngestConfig()
        self.session: Session = session or requests.Session()
        self.sleep = sleep

        self.session.headers.update(
            {
                "User-Agent": self.config.user_agent,
                "Accept": "*/*",
            }
        )

    # ================================================
    #             HELPERS HTTP ROBUSTES
    # ================================================

    def package_url(self, issue_id: str) -> str:
        return f"{self.config.base_url}/packages/daily/{issue_id}"

    def notice_xml_url(self, native_id: str) -> str:
        return f"{self.config.base_url}/en/notice/{native_id}/xml"

    def backoff_delay(self, attempt: int, retry_after: float = 0.0) -> float:
        """Délai exponentiel avec gigue, plafonné."""
        delay = self.config.backoff_base * (2 ** attempt)
        delay += random.uniform(0, self.config.backoff_base)
        return min(self.config.backoff_max, max(delay, retry_after))

    def _request(self, method: str, url: str, *, stream: bool = False, **kwargs: Any) -> Response:
        """
        Envoie la requête avec retry sur 429/5xx et erreurs réseau.

        Renvoie la dernière réponse obtenue (éventuellement non-ok) ;
        lève RequestException si le réseau échoue à chaque tentative.
        """
        attempts = self.config.retries + 1
        for attempt in range(attempts):
            try:
                resp = self.session.request(
                    method,
                    url,
                    timeout=self.config.timeout,
                    stream=stream,
                    allow_redirects=True,
                    **kwargs,
                )
            except RequestException as exc:
                if attempt + 1 >= attempts:
                    logger.error("Erreur réseau %s %s: %s", method, url, exc)
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Erreur réseau %s %s (tentative %d/%d): %s, nouvel essai dans %.1fs",
                    method,
                    url,
                    attempt + 1,
                    attempts,
                    exc,
                    delay,
                )
                self.sleep(delay)
                continue

            if resp.status_code in RETRY_STATUSES and attempt + 1 < attempts:
                retry_after = parse_retry_after_seconds(resp.headers.get("Retry-After"))
                delay = self.backoff_delay(attempt, retry_after)
                logger.warning(
                    "HTTP %s sur %s %s (tentative %d/%d), nouvel essai dans %.1fs",
                    resp.status_code,
                    method,
                    url,
                    attempt + 1,
                    attempts,
                    delay,
                )
                resp.close()
                self.sleep(delay)
                continue

            return resp

        raise RuntimeError("Boucle de retry épuisée de façon inattendue.")

    # ================================================
    #                   API PUBLIQUE
    # ================================================

    def head_package(self, issue_id: str) -> Optional[Response]:
        """
        HEAD léger sur une archive candidate.
        Renvoie la réponse si elle existe (2xx), None sinon.
        """
        url = self.package_url(issue_id)
        try:
            resp = self._request("HEAD", url)
        except RequestException as exc:
            logger.debug("HEAD %s en échec: %s", url, exc)
            return None

        if not resp.ok:
            logger.debug("HEAD %s -> HTTP %s", url, resp.status_code)
            return None
        return resp

    def open_package(self, issue_id: str) -> Response:
        """
        GET en streaming de l'archive. Toute réponse non-ok est fatale.
        L'appelant doit fermer la réponse.
        """
        url = self.package_url(issue_id)
        logger.info("Téléchargement de l'archive: %s", url)
        try:
            resp = self._request("GET", url, stream=True)
        except RequestException as exc:
            raise PackageFetchError(f"Erreur réseau en téléchargeant {url}") from exc

        if not resp.ok:
            logger.error(
                "Erreur HTTP archive: url=%s status=%s body=%s",
                url,
                resp.status_code,
                (resp.text or "")[:500],
            )
            resp.close()
            raise PackageFetchError(f"HTTP {resp.status_code} en téléchargeant {url}")

        return resp

    def notice_xml_response(self, native_id: str) -> Optional[Response]:
        """Réponse brute du GET XML d'un avis (None sur erreur réseau)."""
        url = self.notice_xml_url(native_id)
        try:
            return self._request("GET", url, headers={"Accept": XML_ACCEPT})
        except RequestException as exc:
            logger.warning("Erreur réseau GET %s: %s", url, exc)
            return None

    def get_notice_xml(self, native_id: str) -> Optional[bytes]:
        """
        XML d'un avis par identifiant natif. None si l'avis n'existe pas (404).
        """
        resp = self.notice_xml_response(native_id)
        if resp is None:
            return None
        url = self.notice_xml_url(native_id)
        if resp.status_code == 404:
            return None
        if not resp.ok:
            logger.warning("HTTP %s sur GET %s", resp.status_code, url)
            return None
        return resp.content

    def get_page(self, url: str) -> str:
        """GET d'une page HTML (page de détail d'un avis)."""
        try:
            resp = self._request("GET", url)
        except RequestException as exc:
            raise RuntimeError(f"Erreur réseau lors de l'appel GET vers {url}") from exc
        if not resp.ok:
            logger.error("Erreur HTTP GET: url=%s status=%s", url, resp.status_code)
            raise RuntimeError(f"Erreur HTTP GET {resp.status_code} sur {url}")
        return resp.text

    def get_bytes(self, url: str) -> bytes:
        try:
            resp = self._request("GET", url)
        except RequestException as exc:
            raise RuntimeError(f"Erreur réseau lors de l'appel GET vers {url}") from exc
        if not resp.ok:
            raise RuntimeError(f"Erreur HTTP GET {resp.status_code} sur {url}")
        return resp.content
