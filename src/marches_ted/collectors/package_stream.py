# src/marches_ted/collectors/package_stream.py

from __future__ import annotations

import logging
import tarfile
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

from urllib3.exceptions import HTTPError as TransportError

from marches_ted.collectors.ted_client import TedClient
from marches_ted.errors import PackageFetchError
from marches_ted.models.notice import RawNoticeDocument

logger = logging.getLogger(__name__)


@dataclass
class PackageStats:
    """Compteurs de lecture d'une archive."""

    total_entries: int = 0
    xml_members: int = 0


def is_xml_member(name: str) -> bool:
    return name.lower().endswith(".xml")


def iter_package_members(
    fileobj: BinaryIO,
    stats: Optional[PackageStats] = None,
) -> Iterator[RawNoticeDocument]:
    """
    Lit une archive tar.gz en flux et produit un RawNoticeDocument par membre XML.

    - décompression et découpage en membres sont chaînés (mode "r|gz") :
      seul le membre courant est gardé en mémoire
    - les membres non XML sont sautés sans être lus
    - la séquence est paresseuse, finie et non redémarrable ; le membre
      suivant n'est lu qu'une fois le précédent consommé

    Une archive corrompue ou un flux interrompu lève PackageFetchError.
    """
    stats = stats if stats is not None else PackageStats()
    try:
        with tarfile.open(fileobj=fileobj, mode="r|gz") as tar:
            for member in tar:
                stats.total_entries += 1
                if not member.isfile():
                    continue
                name = member.name or ""
                if not is_xml_member(name):
                    logger.debug("Membre ignoré (non XML): %s", name)
                    continue

                handle = tar.extractfile(member)
                if handle is None:
                    continue
                content = handle.read()
                stats.xml_members += 1
                yield RawNoticeDocument(content=content, member_name=name)
    except (tarfile.TarError, EOFError, zlib.error, OSError, TransportError) as exc:
        raise PackageFetchError(f"Archive illisible ou flux interrompu: {exc}") from exc


def stream_package(
    client: TedClient,
    issue_id: str,
    stats: Optional[PackageStats] = None,
) -> Iterator[RawNoticeDocument]:
    """
    Télécharge l'archive `issue_id` et produit ses documents XML au fil de l'eau.
    La réponse HTTP est fermée quand la séquence se termine ou est abandonnée.
    """
    resp = client.open_package(issue_id)
    try:
        yield from iter_package_members(resp.raw, stats)
    finally:
        resp.close()
