"""Tests for the HTTP surface."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import StubFetcher, make_document
from greenlit.config import settings
from greenlit.db.database import Database
from greenlit.errors import ScannerInvocationFailed, UpstreamUnavailable
from greenlit.guidelines.cache import GuidelineCache
from greenlit.main import create_app
from greenlit.scan.runner import ScannerOutput

SCAN_OUTPUT = json.dumps(
    {
        "summary": {"status": "BLOCKED", "critical": 1, "warnings": 0, "info": 1},
        "findings": [
            {"severity": "CRITICAL", "title": "Missing Sign in with Apple", "guideline": "4.8"},
            {"severity": "INFO", "title": "Uses camera"},
        ],
    }
)


class FakeScanner:
    def __init__(self, output: ScannerOutput | None = None, error: Exception | None = None):
        self.output = output or ScannerOutput(stdout=SCAN_OUTPUT, exit_code=1)
        self.error = error
        self.paths: list[str] = []
        self.calls: list[tuple] = []

    async def _answer(self, *call) -> ScannerOutput:
        self.calls.append(call)
        if self.error:
            raise self.error
        return self.output

    async def scan_ipa(self, ipa_path: str) -> ScannerOutput:
        self.paths.append(ipa_path)
        return await self._answer("ipa", ipa_path)

    async def preflight(self, project_path: str, ipa_path: str | None = None) -> ScannerOutput:
        return await self._answer("preflight", project_path, ipa_path)

    async def codescan(self, project_path: str) -> ScannerOutput:
        return await self._answer("codescan", project_path)

    async def privacy(self, project_path: str) -> ScannerOutput:
        return await self._answer("privacy", project_path)

    async def search_guidelines(self, query: str) -> ScannerOutput:
        return await self._answer("search", query)


def _client(tmp_path, fetcher=None, scanner=None, transport=None) -> TestClient:
    app = create_app(
        cache=GuidelineCache(fetcher or StubFetcher(make_document())),
        scanner=scanner or FakeScanner(ScannerOutput(stdout=SCAN_OUTPUT, exit_code=1)),
        enricher=None,
        database=Database(str(tmp_path / "test.db")),
        warm_cache=False,
        download_transport=transport,
    )
    return TestClient(app)


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "upload_dir", str(path))
    return path


class TestGuidelines:
    def test_health_reports_cache_state(self, tmp_path):
        with _client(tmp_path) as client:
            body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["guidelines"]["cached"] is False

    def test_guidelines_are_served(self, tmp_path):
        with _client(tmp_path) as client:
            response = client.get("/api/guidelines")
            health = client.get("/health").json()

        assert response.status_code == 200
        assert response.json()["sections"][0]["title"] == "Safety"
        assert health["guidelines"]["cached"] is True

    def test_upstream_down_without_cache_is_503(self, tmp_path):
        fetcher = StubFetcher(UpstreamUnavailable("connection refused"))
        with _client(tmp_path, fetcher=fetcher) as client:
            response = client.get("/api/guidelines")

        assert response.status_code == 503
        assert response.json()["error"]["kind"] == "UpstreamUnavailable"

    def test_refresh_refetches(self, tmp_path):
        fetcher = StubFetcher(make_document("Safety"), make_document("Design"))
        with _client(tmp_path, fetcher=fetcher) as client:
            client.get("/api/guidelines")
            response = client.post("/api/guidelines/refresh")

        assert response.status_code == 200
        assert response.json()["sections"][0]["title"] == "Design"
        assert fetcher.calls == 2


class TestReports:
    def test_report_from_scan_output(self, tmp_path):
        with _client(tmp_path) as client:
            response = client.post(
                "/api/scan/report",
                json={"output": SCAN_OUTPUT, "exit_code": 1, "file_name": "MyApp.ipa"},
            )
            body = response.json()
            report = client.get(f"/api/reports/{body['report_id']}")
            download = client.get(body["download_url"])

        assert response.status_code == 200
        assert body["status"] == "BLOCKED"
        assert body["counts"] == {"critical": 1, "warning": 0, "info": 1}
        assert body["page_count"] >= 2
        assert report.json()["page_count"] == body["page_count"]
        assert report.json()["document"]["scan"]["status"] == "BLOCKED"
        assert download.status_code == 200
        assert "#pagebreak()" in download.text
        assert "attachment" in download.headers["content-disposition"]

    def test_unparsed_output_still_yields_report(self, tmp_path):
        with _client(tmp_path) as client:
            body = client.post("/api/scan/report", json={"output": "Scanning... done"}).json()

        assert body["status"] == "UNKNOWN"
        assert body["results"]["unparsed"] == "Scanning... done"
        assert body["diagnostics"][0].startswith("MalformedScanOutput")

    def test_report_without_guidelines(self, tmp_path):
        fetcher = StubFetcher(UpstreamUnavailable("connection refused"))
        with _client(tmp_path, fetcher=fetcher) as client:
            response = client.post("/api/scan/report", json={"output": SCAN_OUTPUT})

        assert response.status_code == 200
        assert any("UpstreamUnavailable" in d for d in response.json()["diagnostics"])

    def test_enrichment_requested_without_enricher(self, tmp_path):
        with _client(tmp_path) as client:
            body = client.post(
                "/api/scan/report", json={"output": SCAN_OUTPUT, "enrich": True}
            ).json()
            report = client.get(f"/api/reports/{body['report_id']}").json()

        assert report["document"]["enrichmentError"] == "Enrichment not configured"

    def test_unknown_report_is_404(self, tmp_path):
        with _client(tmp_path) as client:
            assert client.get("/api/reports/nope").status_code == 404
            assert client.get("/api/reports/nope/download").status_code == 404


class TestUpload:
    def test_upload_scans_and_removes_file(self, tmp_path, upload_dir):
        scanner = FakeScanner(ScannerOutput(stdout=SCAN_OUTPUT, exit_code=1))
        with _client(tmp_path, scanner=scanner) as client:
            response = client.post(
                "/api/scan/upload",
                files={"ipa": ("MyApp.ipa", b"PK\x03\x04 fake", "application/octet-stream")},
            )

        assert response.status_code == 200
        assert response.json()["status"] == "BLOCKED"
        assert len(scanner.paths) == 1
        assert list(upload_dir.iterdir()) == []

    def test_non_ipa_upload_is_rejected(self, tmp_path):
        with _client(tmp_path) as client:
            response = client.post(
                "/api/scan/upload", files={"ipa": ("notes.txt", b"hello", "text/plain")}
            )

        assert response.status_code == 400

    def test_scanner_failure_is_502(self, tmp_path, upload_dir):
        scanner = FakeScanner(error=ScannerInvocationFailed("Scanner exited with code 2"))
        with _client(tmp_path, scanner=scanner) as client:
            response = client.post(
                "/api/scan/upload", files={"ipa": ("MyApp.ipa", b"PK", "application/octet-stream")}
            )

        assert response.status_code == 502
        assert response.json()["error"]["kind"] == "ScannerInvocationFailed"
        assert list(upload_dir.iterdir()) == []

    def test_oversized_upload_is_413(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 4)
        with _client(tmp_path) as client:
            response = client.post(
                "/api/scan/upload",
                files={"ipa": ("MyApp.ipa", b"0123456789", "application/octet-stream")},
            )

        assert response.status_code == 413

    def test_upload_writes_chunks_off_the_event_loop(self, tmp_path, monkeypatch):
        writes = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            writes.append(func.__name__)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)
        with _client(tmp_path) as client:
            response = client.post(
                "/api/scan/upload",
                files={"ipa": ("MyApp.ipa", b"PK\x03\x04 fake", "application/octet-stream")},
            )

        assert response.status_code == 200
        assert "write" in writes


class TestScanUrl:
    IPA_URL = "https://downloads.example.com/builds/MyApp.ipa"

    def _transport(self, status=200, body=b"PK\x03\x04 fake ipa"):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(status, content=body)

        return httpx.MockTransport(handler), seen

    def test_downloads_and_scans(self, tmp_path, upload_dir):
        transport, seen = self._transport()
        scanner = FakeScanner()
        with _client(tmp_path, scanner=scanner, transport=transport) as client:
            response = client.post("/api/scan/url", json={"url": self.IPA_URL})

        assert response.status_code == 200
        assert response.json()["status"] == "BLOCKED"
        assert str(seen[0].url) == self.IPA_URL
        assert "Greenlit" in seen[0].headers["user-agent"]
        assert len(scanner.paths) == 1
        assert list(upload_dir.iterdir()) == []

    @pytest.mark.parametrize(
        "url", ["", "https://example.com/app.zip", "file:///etc/passwd.ipa"]
    )
    def test_invalid_url_is_400(self, tmp_path, url):
        with _client(tmp_path) as client:
            assert client.post("/api/scan/url", json={"url": url}).status_code == 400

    def test_failed_download_is_502(self, tmp_path, upload_dir):
        transport, _ = self._transport(status=404, body=b"not found")
        scanner = FakeScanner()
        with _client(tmp_path, scanner=scanner, transport=transport) as client:
            response = client.post("/api/scan/url", json={"url": self.IPA_URL})

        assert response.status_code == 502
        assert response.json()["error"]["kind"] == "DownloadFailed"
        assert scanner.calls == []
        assert list(upload_dir.iterdir()) == []

    def test_oversized_download_is_413(self, tmp_path, upload_dir, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 4)
        transport, _ = self._transport(body=b"0123456789")
        with _client(tmp_path, transport=transport) as client:
            response = client.post("/api/scan/url", json={"url": self.IPA_URL})

        assert response.status_code == 413
        assert list(upload_dir.iterdir()) == []


class TestProjectScans:
    def test_preflight_with_ipa(self, tmp_path, upload_dir):
        scanner = FakeScanner()
        with _client(tmp_path, scanner=scanner) as client:
            response = client.post(
                "/api/scan/preflight",
                data={"projectPath": "/src/MyApp"},
                files={"ipa": ("MyApp.ipa", b"PK", "application/octet-stream")},
            )

        assert response.status_code == 200
        kind, project, ipa_path = scanner.calls[0]
        assert (kind, project) == ("preflight", "/src/MyApp")
        assert ipa_path.endswith(".ipa")
        assert list(upload_dir.iterdir()) == []

    def test_preflight_without_ipa(self, tmp_path):
        scanner = FakeScanner()
        with _client(tmp_path, scanner=scanner) as client:
            response = client.post("/api/scan/preflight", data={"projectPath": "/src/MyApp"})

        assert response.status_code == 200
        assert scanner.calls == [("preflight", "/src/MyApp", None)]

    def test_preflight_requires_project_path(self, tmp_path):
        with _client(tmp_path) as client:
            assert client.post("/api/scan/preflight", data={}).status_code == 400

    @pytest.mark.parametrize("route, kind", [("code", "codescan"), ("privacy", "privacy")])
    def test_project_scan_runs_pipeline(self, tmp_path, route, kind):
        scanner = FakeScanner()
        with _client(tmp_path, scanner=scanner) as client:
            response = client.post(f"/api/scan/{route}", json={"projectPath": "/src/MyApp"})
            body = response.json()
            scan = client.get(f"/api/scans/{body['scan_id']}").json()

        assert response.status_code == 200
        assert scanner.calls == [(kind, "/src/MyApp")]
        assert body["counts"]["critical"] == 1
        assert scan["file_name"] == "/src/MyApp"

    @pytest.mark.parametrize("route", ["code", "privacy"])
    def test_project_scan_requires_project_path(self, tmp_path, route):
        with _client(tmp_path) as client:
            assert client.post(f"/api/scan/{route}", json={}).status_code == 400

    def test_scanner_failure_is_502(self, tmp_path):
        scanner = FakeScanner(error=ScannerInvocationFailed("Could not start scanner"))
        with _client(tmp_path, scanner=scanner) as client:
            response = client.post("/api/scan/code", json={"projectPath": "/src/MyApp"})

        assert response.status_code == 502


class TestGuidelineSearch:
    def test_search_returns_scanner_text(self, tmp_path):
        scanner = FakeScanner(ScannerOutput(stdout="4.8 Login Services\n", stderr=""))
        with _client(tmp_path, scanner=scanner) as client:
            response = client.get("/api/guidelines/search", params={"q": "sign in"})

        assert response.status_code == 200
        assert response.json() == {
            "query": "sign in",
            "results": "4.8 Login Services\n",
            "stderr": "",
        }
        assert scanner.calls == [("search", "sign in")]

    def test_search_requires_query(self, tmp_path):
        with _client(tmp_path) as client:
            assert client.get("/api/guidelines/search").status_code == 400
            assert client.get("/api/guidelines/search", params={"q": ""}).status_code == 400


class TestScanRecords:
    def test_stored_scan_is_returned(self, tmp_path):
        with _client(tmp_path) as client:
            body = client.post(
                "/api/scan/report", json={"output": SCAN_OUTPUT, "file_name": "MyApp.ipa"}
            ).json()
            response = client.get(f"/api/scans/{body['scan_id']}")

        scan = response.json()
        assert response.status_code == 200
        assert scan["scan_id"] == body["scan_id"]
        assert scan["file_name"] == "MyApp.ipa"
        assert scan["status"] == "BLOCKED"
        assert scan["counts"] == {"critical": 1, "warning": 0, "info": 1}
        assert scan["results"] == body["results"]

    def test_unknown_scan_is_404(self, tmp_path):
        with _client(tmp_path) as client:
            assert client.get("/api/scans/nope").status_code == 404
