import io
import tarfile

import pytest
from requests.structures import CaseInsensitiveDict

from marches_ted.collectors.ted_client import TedClient
from marches_ted.config import IngestConfig
from marches_ted.persistence.db import create_schema, make_engine
from marches_ted.persistence.sink import NoticeSink


# =====================================================
#                 FAUX CLIENT HTTP
# =====================================================

class FakeResponse:
    def __init__(self, status_code=200, headers=None, content=b"", raw=None):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.content = content
        self.raw = raw if raw is not None else io.BytesIO(content)
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    @property
    def text(self):
        return self.content.decode("utf-8", errors="replace")

    def close(self):
        self.closed = True


class FakeSession:
    """
    Session minimale : `handler(method, url, **kwargs)` renvoie une
    FakeResponse ou une exception à lever.
    """

    def __init__(self, handler):
        self.handler = handler
        self.headers = {}
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url))
        result = self.handler(method, url, **kwargs)
        if isinstance(result, Exception):
            raise result
        return result


class SleepRecorder:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def config():
    return IngestConfig(
        retries=2,
        backoff_base=0.0,
        backoff_max=15.0,
        probe_delay=0.0,
        probe_jitter=0.0,
        issue_window_start=1,
        issue_window_end=5,
    )


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def make_client(config, sleeper):
    def _make(handler):
        return TedClient(config, session=FakeSession(handler), sleep=sleeper)

    return _make


# =====================================================
#                 ARCHIVES EN MÉMOIRE
# =====================================================

def build_tar_gz(members, with_dir=True):
    """`members` : liste de (nom, octets)."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        if with_dir:
            info = tarfile.TarInfo("20251010_2025198")
            info.type = tarfile.DIRTYPE
            tar.addfile(info)
        for name, content in members:
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


# =====================================================
#                 AVIS XML D'EXEMPLE
# =====================================================

NAMESPACES = (
    'xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2" '
    'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2" '
    'xmlns:ext="urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2" '
    'xmlns:efac="http://data.europa.eu/p27/eforms-ubl-extension-aggregate-components/1" '
    'xmlns:efbc="http://data.europa.eu/p27/eforms-ubl-extension-basic-components/1" '
    'xmlns:efext="http://data.europa.eu/p27/eforms-ubl-extensions/1"'
)

PUBLICATIONS_OFFICE = """
            <efac:Organization>
              <efac:Company>
                <cac:PartyName><cbc:Name languageID="ENG">Publications Office of the European Union</cbc:Name></cac:PartyName>
                <cac:PostalAddress>
                  <cbc:CityName>Luxembourg</cbc:CityName>
                  <cac:Country><cbc:IdentificationCode listName="country">LUX</cbc:IdentificationCode></cac:Country>
                </cac:PostalAddress>
              </efac:Company>
            </efac:Organization>"""

BUYER_LYON = """
            <efac:Organization>
              <efac:Company>
                <cac:PartyName><cbc:Name languageID="FRA">Ville de Lyon</cbc:Name></cac:PartyName>
                <cac:PostalAddress>
                  <cbc:StreetName>1 place de la Comédie</cbc:StreetName>
                  <cbc:CityName>Lyon</cbc:CityName>
                  <cac:Country><cbc:IdentificationCode listName="country">FRA</cbc:IdentificationCode></cac:Country>
                </cac:PostalAddress>
              </efac:Company>
            </efac:Organization>"""


def eforms_notice(
    root="ContractNotice",
    publication_id="00608908-2025",
    publication_date="2025-10-10+02:00",
    organizations=PUBLICATIONS_OFFICE + BUYER_LYON,
    tendering_process="""
  <cac:TenderingProcess>
    <cac:TenderSubmissionDeadlinePeriod>
      <cbc:EndDate>2025-11-14+01:00</cbc:EndDate>
      <cbc:EndTime>12:00:00+01:00</cbc:EndTime>
    </cac:TenderSubmissionDeadlinePeriod>
  </cac:TenderingProcess>""",
    lots="",
    title="Travaux de voirie",
):
    publication_id_tag = (
        f'<efbc:NoticePublicationID schemeName="ojs-notice-id">{publication_id}</efbc:NoticePublicationID>'
        if publication_id
        else ""
    )
    publication_date_tag = (
        f"<efbc:PublicationDate>{publication_date}</efbc:PublicationDate>" if publication_date else ""
    )
    xml = f"""<?xml version="1.0" encoding="UTF-8"?>
<{root} xmlns="urn:oasis:names:specification:ubl:schema:xsd:{root}-2" {NAMESPACES}>
  <ext:UBLExtensions>
    <ext:UBLExtension>
      <ext:ExtensionContent>
        <efext:EformsExtension>
          <efac:Organizations>{organizations}
          </efac:Organizations>
          <efac:Publication>
            {publication_id_tag}
            <efbc:GazetteID schemeName="ojs-id">198/2025</efbc:GazetteID>
            {publication_date_tag}
          </efac:Publication>
        </efext:EformsExtension>
      </ext:ExtensionContent>
    </ext:UBLExtension>
  </ext:UBLExtensions>
  <cbc:UBLVersionID>2.3</cbc:UBLVersionID>
  <cbc:NoticeLanguageCode>FRA</cbc:NoticeLanguageCode>{tendering_process}
  <cac:ProcurementProject>
    <cbc:Name languageID="FRA">{title}</cbc:Name>
    <cbc:Description languageID="FRA">Entretien des chaussées communales</cbc:Description>
    <cac:MainCommodityClassification>
      <cbc:ItemClassificationCode listName="cpv">45233140</cbc:ItemClassificationCode>
    </cac:MainCommodityClassification>
  </cac:ProcurementProject>{lots}
</{root}>
"""
    return xml.encode("utf-8")


LEGACY_NOTICE = b"""<?xml version="1.0" encoding="UTF-8"?>
<TED_EXPORT>
  <CODED_DATA_SECTION>
    <NOTICE_DATA>
      <NO_DOC_OJS>2024/S 001-000042</NO_DOC_OJS>
    </NOTICE_DATA>
  </CODED_DATA_SECTION>
  <TECHNICAL_SECTION>
    <NOTICE_NUMBER_OJS>0042</NOTICE_NUMBER_OJS>
    <NOTICE_YEAR>2024</NOTICE_YEAR>
  </TECHNICAL_SECTION>
</TED_EXPORT>
"""

MALFORMED_NOTICE = b"<ContractNotice><cbc:Name>oops</ContractNotice"


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sink(engine):
    return NoticeSink(engine, source="TED", max_bind_params=2000)
