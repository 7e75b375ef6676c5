import importlib.util
import sys
from datetime import date
from pathlib import Path

import pytest

from marches_ted.collectors.issue_resolver import IssueResolver

ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def pipeline():
    location = importlib.util.spec_from_file_location("run_pipeline", ROOT / "run_pipeline.py")
    module = importlib.util.module_from_spec(location)
    location.loader.exec_module(module)
    return module


def test_module_loads_without_package_imports(pipeline):
    assert not {"IssueResolver", "TedClient", "IngestConfig"} & set(vars(pipeline))
    assert pipeline.SRC_DIR == ROOT / "src"


def test_child_env_prefixes_src(pipeline, monkeypatch):
    monkeypatch.setenv("PYTHONPATH", "/opt/autre")
    env = pipeline.build_env()
    assert env["PYTHONPATH"].split(pipeline.os.pathsep) == [str(ROOT / "src"), "/opt/autre"]


def test_resolve_issue_puts_src_on_path(pipeline, monkeypatch):
    monkeypatch.setattr(sys, "path", [p for p in sys.path if p != str(pipeline.SRC_DIR)])
    seen = []

    class StubResolver:
        def resolve(self, target_date):
            seen.append(target_date)
            return "202500198"

    monkeypatch.setattr(IssueResolver, "from_client", classmethod(lambda cls, client: StubResolver()))

    assert pipeline.resolve_issue(date(2025, 10, 10)) == "202500198"
    assert seen == [date(2025, 10, 10)]
    assert sys.path[0] == str(pipeline.SRC_DIR)


def test_ingestion_runs_script_in_subprocess(pipeline, monkeypatch):
    calls = []

    class Completed:
        returncode = 3

    def fake_run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        return Completed()

    monkeypatch.setattr(pipeline.subprocess, "run", fake_run)

    assert pipeline.run_ingestion(date(2025, 10, 10), "202500198") == 3
    ((cmd, kwargs),) = calls
    assert cmd == [
        sys.executable,
        str(ROOT / "scripts" / "ingest_daily_package.py"),
        "--date=2025-10-10",
        "--issue=202500198",
    ]
    assert kwargs["cwd"] == str(ROOT)
    assert kwargs["env"]["PYTHONPATH"].startswith(str(ROOT / "src"))
