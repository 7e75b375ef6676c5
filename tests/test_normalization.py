import hashlib
from datetime import date, datetime, timezone

import pytest

from marches_ted.errors import NoticeParseError
from marches_ted.parsers.xml_tree import parse_notice_tree
from marches_ted.services.normalization import detail_url_for, normalize_notice, sha256_hex

from conftest import BUYER_LYON, LEGACY_NOTICE, MALFORMED_NOTICE, eforms_notice

UTC = timezone.utc
RUN_DATE = date(2025, 10, 10)


def test_parse_tree_strips_namespaces_and_keeps_attributes():
    tree = parse_notice_tree(eforms_notice())
    assert list(tree) == ["ContractNotice"]
    project = tree["ContractNotice"]["ProcurementProject"]
    assert project["Name"] == {"languageID": "FRA", "#text": "Travaux de voirie"}
    orgs = tree["ContractNotice"]["UBLExtensions"]["UBLExtension"]["ExtensionContent"][
        "EformsExtension"
    ]["Organizations"]["Organization"]
    assert isinstance(orgs, list) and len(orgs) == 2


def test_parse_tree_rejects_malformed_xml():
    with pytest.raises(NoticeParseError):
        parse_notice_tree(MALFORMED_NOTICE)
    with pytest.raises(NoticeParseError):
        parse_notice_tree(b"   ")


def test_contract_notice_fields():
    raw = eforms_notice()
    notice = normalize_notice(raw, RUN_DATE)

    assert notice.native_id == "608908-2025"
    assert notice.tb_id == "TED|608908-2025"
    assert notice.detail_url == "https://ted.europa.eu/en/notice/608908-2025"
    assert notice.title == "Travaux de voirie"
    assert notice.short_description == "Entretien des chaussées communales"
    assert notice.language == "FRA"
    assert notice.cpv_main == "45233140"
    assert notice.is_award is False
    assert notice.competition_flag is True
    assert notice.published_at == datetime(2025, 10, 9, 22, 0, tzinfo=UTC)
    assert notice.source_row_hash == hashlib.sha256(raw).hexdigest()


def test_buyer_skips_publications_office():
    notice = normalize_notice(eforms_notice(), RUN_DATE)
    assert notice.buyer_name == "Ville de Lyon"
    assert notice.buyer_city == "Lyon"
    assert notice.buyer_street == "1 place de la Comédie"
    assert notice.buyer_country == "FRA"


def test_buyer_falls_back_to_contracting_party():
    party = """
  <cac:ContractingParty>
    <cac:Party>
      <cac:PartyName><cbc:Name>Département du Rhône</cbc:Name></cac:PartyName>
      <cac:PostalAddress>
        <cbc:StreetName>29-31 cours de la Liberté</cbc:StreetName>
        <cbc:CityName>Lyon</cbc:CityName>
      </cac:PostalAddress>
    </cac:Party>
  </cac:ContractingParty>"""
    xml = eforms_notice(organizations="", lots=party)
    notice = normalize_notice(xml, RUN_DATE)
    assert notice.buyer_name == "Département du Rhône"
    assert notice.buyer_city == "Lyon"
    assert notice.buyer_street == "29-31 cours de la Liberté"


def test_country_falls_back_to_raw_text():
    buyer = BUYER_LYON.replace(
        """<cac:Country><cbc:IdentificationCode listName="country">FRA</cbc:IdentificationCode></cac:Country>""",
        "",
    )
    # code pays uniquement au niveau du lot, hors des chemins structurés
    lots = """
  <cac:ProcurementProjectLot>
    <cac:ProcurementProject>
      <cac:RealizedLocation>
        <cac:Address>
          <cac:Country><cbc:IdentificationCode listName="country">DEU</cbc:IdentificationCode></cac:Country>
        </cac:Address>
      </cac:RealizedLocation>
    </cac:ProcurementProject>
  </cac:ProcurementProjectLot>"""
    notice = normalize_notice(eforms_notice(organizations=buyer, lots=lots), RUN_DATE)
    assert notice.buyer_name == "Ville de Lyon"
    assert notice.buyer_country == "DEU"

    no_org = eforms_notice(organizations="")
    assert normalize_notice(no_org, RUN_DATE).buyer_country is None


def test_deadline_at_procedure_level():
    notice = normalize_notice(eforms_notice(), RUN_DATE)
    assert notice.raw_deadline_date == "2025-11-14+01:00"
    assert notice.raw_deadline_time == "12:00:00+01:00"
    assert notice.deadline == datetime(2025, 11, 14, 11, 0, tzinfo=UTC)


def test_deadline_from_first_lot():
    lots = """
  <cac:ProcurementProjectLot>
    <cbc:ID schemeName="Lot">LOT-0001</cbc:ID>
    <cac:TenderingProcess>
      <cac:TenderSubmissionDeadlinePeriod>
        <cbc:EndDate>2025-12-01Z</cbc:EndDate>
        <cbc:EndTime>10:00:00Z</cbc:EndTime>
      </cac:TenderSubmissionDeadlinePeriod>
    </cac:TenderingProcess>
  </cac:ProcurementProjectLot>
  <cac:ProcurementProjectLot>
    <cbc:ID schemeName="Lot">LOT-0002</cbc:ID>
    <cac:TenderingProcess>
      <cac:TenderSubmissionDeadlinePeriod>
        <cbc:EndDate>2026-01-01Z</cbc:EndDate>
      </cac:TenderSubmissionDeadlinePeriod>
    </cac:TenderingProcess>
  </cac:ProcurementProjectLot>"""
    notice = normalize_notice(eforms_notice(tendering_process="", lots=lots), RUN_DATE)
    assert notice.raw_deadline_date == "2025-12-01Z"
    assert notice.deadline == datetime(2025, 12, 1, 10, 0, tzinfo=UTC)


def test_missing_deadline_is_unknown():
    notice = normalize_notice(eforms_notice(tendering_process=""), RUN_DATE)
    assert notice.deadline is None
    assert notice.raw_deadline_date is None


def test_award_notice():
    notice = normalize_notice(eforms_notice(root="ContractAwardNotice", publication_id="00612345-2025"), RUN_DATE)
    assert notice.is_award is True
    assert notice.competition_flag is False
    assert notice.native_id == "612345-2025"


def test_prior_information_notice_is_not_award():
    notice = normalize_notice(eforms_notice(root="PriorInformationNotice"), RUN_DATE)
    assert notice.is_award is False


def test_publication_date_falls_back_to_run_date():
    notice = normalize_notice(eforms_notice(publication_date=None), RUN_DATE)
    assert notice.published_at == datetime(2025, 10, 10, tzinfo=UTC)

    unreadable = normalize_notice(eforms_notice(publication_date="n/a"), RUN_DATE)
    assert unreadable.published_at == datetime(2025, 10, 10, tzinfo=UTC)


def test_legacy_notice_uses_raw_text_identifier():
    notice = normalize_notice(LEGACY_NOTICE, RUN_DATE)
    assert notice.native_id == "42-2024"
    assert notice.tb_id == "TED|42-2024"
    assert notice.title is None
    assert notice.published_at == datetime(2025, 10, 10, tzinfo=UTC)


def test_notice_without_identifier_has_no_keys():
    notice = normalize_notice(eforms_notice(publication_id=None), RUN_DATE)
    assert notice.native_id is None
    assert notice.tb_id is None
    assert notice.detail_url is None
    assert notice.is_eligible is False
    assert notice.missing_required() == ["tb_id", "native_id"]


def test_source_label_and_precomputed_hash():
    notice = normalize_notice(eforms_notice(), RUN_DATE, "abc", source="TEDX")
    assert notice.tb_id == "TEDX|608908-2025"
    assert notice.source_row_hash == "abc"


def test_malformed_notice_raises_parse_error():
    with pytest.raises(NoticeParseError):
        normalize_notice(MALFORMED_NOTICE, RUN_DATE)


def test_helpers():
    assert sha256_hex("abc") == hashlib.sha256(b"abc").hexdigest()
    assert detail_url_for(None) is None
    assert detail_url_for("1-2025", "https://example.org/") == "https://example.org/en/notice/1-2025"


def test_latin1_notice_keeps_accents():
    utf8 = eforms_notice(title="Rénovation du théâtre").decode("utf-8")
    latin1 = utf8.replace('encoding="UTF-8"', 'encoding="ISO-8859-1"').encode("latin-1")

    notice = normalize_notice(latin1, RUN_DATE)
    assert notice.title == "Rénovation du théâtre"
    assert notice.buyer_street == "1 place de la Comédie"
    assert notice.native_id == "608908-2025"
    assert notice.source_row_hash == hashlib.sha256(latin1).hexdigest()
