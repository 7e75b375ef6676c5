from datetime import date

import pytest
import requests

from marches_ted.collectors.issue_resolver import IssueResolver, date_needle
from marches_ted.errors import IssueNotFoundError

from conftest import FakeResponse

TARGET = date(2025, 10, 10)


def archive_handler(existing):
    """`existing` : {identifiant: nom de fichier annoncé}."""

    def handler(method, url, **kw):
        assert method == "HEAD"
        issue_id = url.rsplit("/", 1)[-1]
        if issue_id not in existing:
            return FakeResponse(404)
        filename = existing[issue_id]
        return FakeResponse(200, headers={"Content-Disposition": f'attachment; filename="{filename}"'})

    return handler


def test_date_needle():
    assert date_needle(TARGET) == "20251010_"


def test_candidate_ids_are_zero_padded(make_client):
    resolver = IssueResolver(make_client(archive_handler({})), window=(1, 3))
    assert list(resolver.candidate_ids(2025)) == ["202500001", "202500002", "202500003"]


def test_resolves_the_matching_archive(make_client):
    client = make_client(
        archive_handler(
            {
                "202500001": "20251008_2025196.tar.gz",
                "202500002": "20251009_2025197.tar.gz",
                "202500003": "20251010_2025198.tar.gz",
                "202500004": "20251013_2025199.tar.gz",
            }
        )
    )
    resolver = IssueResolver.from_client(client)
    assert resolver.resolve(TARGET) == "202500003"
    # arrêt au premier candidat correspondant
    assert len(client.session.calls) == 3


def test_not_found_after_exhausting_window(make_client):
    client = make_client(archive_handler({"202500002": "20251009_2025197.tar.gz"}))
    resolver = IssueResolver.from_client(client)

    with pytest.raises(IssueNotFoundError) as excinfo:
        resolver.resolve(TARGET)

    assert excinfo.value.start == 202500001
    assert excinfo.value.end == 202500005
    assert len(client.session.calls) == 5


def test_probe_errors_do_not_abort(make_client):
    existing = {"202500002": "20251010_2025198.tar.gz"}
    plain = archive_handler(existing)

    def handler(method, url, **kw):
        if url.endswith("202500001"):
            return requests.ConnectionError("reset")
        return plain(method, url, **kw)

    client = make_client(handler)
    assert IssueResolver.from_client(client).resolve(TARGET) == "202500002"


def test_window_override_and_pauses(make_client, sleeper):
    client = make_client(archive_handler({"202500007": "20251010_2025198.tar.gz"}))
    resolver = IssueResolver(client, window=(6, 8), delay=0.5, jitter=0.0, sleep=sleeper)
    assert resolver.resolve(TARGET) == "202500007"
    assert sleeper.delays == [0.5]


def test_invalid_window(make_client):
    with pytest.raises(ValueError):
        IssueResolver(make_client(archive_handler({})), window=(10, 1))
