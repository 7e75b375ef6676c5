# src/marches_ted/parsers/xml_tree.py

from __future__ import annotations

from typing import Any, Dict, Union

from lxml import etree

from marches_ted.errors import NoticeParseError

TEXT_KEY = "#text"

# Pas de récupération : un XML mal formé doit être signalé, pas réparé
_PARSER = etree.XMLParser(
    recover=False,
    resolve_entities=False,
    no_network=True,
    huge_tree=True,
    remove_comments=True,
    remove_pis=True,
)


def _local_name(tag: str) -> str:
    return etree.QName(tag).localname


def _element_to_node(el: etree._Element) -> Any:
    """
    Convertit un élément en noeud générique :

    - feuille sans attribut       -> texte nettoyé ("" si vide)
    - sinon                       -> dict {attribut: valeur, enfant: noeud|[noeuds], "#text": texte}

    Les préfixes d'espace de noms sont retirés des balises et des attributs,
    ce qui rend les chemins de champs indépendants du dialecte.
    """
    children = [c for c in el if isinstance(c.tag, str)]

    text_parts = [el.text or ""]
    text_parts.extend(c.tail or "" for c in el)
    text = "".join(text_parts).strip()

    if not children and not el.attrib:
        return text

    node: Dict[str, Any] = {}
    for key, value in el.attrib.items():
        node[_local_name(key)] = value

    for child in children:
        name = _local_name(child.tag)
        value = _element_to_node(child)
        if name in node:
            existing = node[name]
            if isinstance(existing, list):
                existing.append(value)
            else:
                node[name] = [existing, value]
        else:
            node[name] = value

    if text:
        node[TEXT_KEY] = text

    return node


def parse_notice_tree(xml: Union[bytes, str]) -> Dict[str, Any]:
    """
    Parse un document XML d'avis et renvoie {nom_racine: noeud}.

    Lève NoticeParseError si le document n'est pas bien formé.
    """
    if isinstance(xml, str):
        xml = xml.encode("utf-8")

    if not xml or not xml.strip():
        raise NoticeParseError("Document XML vide")

    try:
        root = etree.fromstring(xml, parser=_PARSER)
    except (etree.XMLSyntaxError, ValueError) as exc:
        raise NoticeParseError(f"XML mal formé: {exc}") from exc

    return {_local_name(root.tag): _element_to_node(root)}


def root_name(tree: Dict[str, Any]) -> str:
    """Nom local de l'élément racine d'un arbre produit par parse_notice_tree."""
    return next(iter(tree), "")
