"""Tests for the HTTP boundary, using a script in place of LibreOffice."""

import contextlib

import pytest
from fastapi.testclient import TestClient

from office_pdf_service import webapi
from office_pdf_service.conversion import (
    ArtifactResolver,
    ConversionInvoker,
    ConversionOrchestrator,
    DiskSpaceProbe,
    LocalStorage,
    UploadIngestor,
)

from conftest import FAIL, HANG, MB, WRITE_PDF, ScriptLauncher, fixed_free_space

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture()
def make_client(tmp_path, monkeypatch):
    """Factory returning a started TestClient wired to a fake engine."""
    stack = contextlib.ExitStack()
    monkeypatch.setattr(webapi, "LOG_FILE", str(tmp_path / "service.log"))

    def _make(script=WRITE_PDF, *, free=1024 * MB, max_bytes=100 * MB, engine_timeout=10):
        launcher = ScriptLauncher(script)

        def build_service():
            storage = LocalStorage(tmp_path / "uploads", tmp_path / "converted")
            storage.ensure_dirs()
            probe = fixed_free_space(DiskSpaceProbe(), monkeypatch, free)
            invoker = ConversionInvoker(launcher, ArtifactResolver(), timeout_sec=engine_timeout)
            return UploadIngestor(storage.upload_dir, max_bytes=max_bytes), ConversionOrchestrator(storage, probe, invoker)

        monkeypatch.setattr(webapi, "build_service", build_service)
        client = stack.enter_context(TestClient(webapi.app))
        return client, launcher

    yield _make
    stack.close()


def _empty(tmp_path):
    uploads = sorted(p.name for p in (tmp_path / "uploads").iterdir())
    converted = sorted(p.name for p in (tmp_path / "converted").iterdir())
    return uploads == [] and converted == []


# ------------------------------------------------------------------
# POST /api/convert-docx-to-pdf
# ------------------------------------------------------------------


class TestConvertEndpoint:
    def test_multipart_upload_returns_pdf(self, make_client, tmp_path):
        client, launcher = make_client()
        resp = client.post(
            "/api/convert-docx-to-pdf",
            files={"file": ("Meeting Notes.docx", b"PK\x03\x04" * 256, DOCX_MIME)},
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.headers["content-disposition"] == 'attachment; filename="Meeting_Notes.pdf"'
        assert resp.content.startswith(b"%PDF")
        assert int(resp.headers["content-length"]) == len(resp.content)
        assert len(launcher.calls) == 1
        assert _empty(tmp_path)

    def test_raw_stream_upload(self, make_client, tmp_path):
        client, _ = make_client()
        resp = client.post(
            "/api/convert-docx-to-pdf",
            content=b"\xd0\xcf\x11\xe0" * 100,
            headers={"Content-Type": "application/octet-stream", "X-File-Name": "Quarterly Report.xls"},
        )
        assert resp.status_code == 200
        assert 'filename="Quarterly_Report.pdf"' in resp.headers["content-disposition"]
        assert _empty(tmp_path)

    def test_raw_stream_over_limit_is_400(self, make_client, tmp_path):
        client, launcher = make_client(max_bytes=1024)
        resp = client.post(
            "/api/convert-docx-to-pdf",
            content=b"x" * 4096,
            headers={"Content-Type": "application/octet-stream", "X-File-Name": "big.docx"},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["code"] == "size_exceeded"
        assert launcher.calls == []
        assert _empty(tmp_path)

    def test_multipart_over_limit_is_400(self, make_client, tmp_path):
        client, _ = make_client(max_bytes=1024)
        resp = client.post(
            "/api/convert-docx-to-pdf",
            files={"file": ("big.docx", b"x" * 4096, DOCX_MIME)},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "size_exceeded"
        assert _empty(tmp_path)

    def test_multipart_without_boundary_is_400(self, make_client, tmp_path):
        client, launcher = make_client()
        resp = client.post(
            "/api/convert-docx-to-pdf",
            content=b"not really multipart",
            headers={"Content-Type": "multipart/form-data"},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "malformed_upload"
        assert launcher.calls == []
        assert _empty(tmp_path)

    def test_unsupported_type_is_400(self, make_client, tmp_path):
        client, _ = make_client()
        resp = client.post(
            "/api/convert-docx-to-pdf",
            files={"file": ("tool.exe", b"MZ", "application/x-msdownload")},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "unsupported_file_type"
        assert _empty(tmp_path)

    def test_missing_file_field_is_400(self, make_client):
        client, _ = make_client()
        resp = client.post("/api/convert-docx-to-pdf", data={"note": "no file here"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_engine_failure_is_500(self, make_client, tmp_path):
        client, _ = make_client(FAIL)
        resp = client.post(
            "/api/convert-docx-to-pdf",
            files={"file": ("report.docx", b"PK", DOCX_MIME)},
        )
        assert resp.status_code == 500
        body = resp.json()
        assert body == {
            "success": False,
            "error": "file conversion failed: conversion engine exited with code 1: Error: source file could not be loaded",
            "code": "conversion_failed",
        }
        assert _empty(tmp_path)

    def test_insufficient_disk_space_never_starts_engine(self, make_client, tmp_path):
        client, launcher = make_client(free=1024)
        resp = client.post(
            "/api/convert-docx-to-pdf",
            files={"file": ("report.docx", b"x" * 4096, DOCX_MIME)},
        )
        assert resp.status_code == 500
        assert resp.json()["code"] == "insufficient_disk_space"
        assert launcher.calls == []
        assert _empty(tmp_path)

    def test_request_timeout_aborts_engine(self, make_client, tmp_path, monkeypatch):
        client, _ = make_client(HANG, engine_timeout=30)
        monkeypatch.setattr(webapi, "REQUEST_TIMEOUT_SEC", 0.5)
        resp = client.post(
            "/api/convert-docx-to-pdf",
            files={"file": ("slow.docx", b"PK", DOCX_MIME)},
        )
        assert resp.status_code == 500
        body = resp.json()
        assert body["code"] == "conversion_timeout"
        assert "0.5 seconds" in body["error"]
        assert _empty(tmp_path)


# ------------------------------------------------------------------
# auxiliary endpoints
# ------------------------------------------------------------------


class TestAuxiliaryEndpoints:
    def test_info(self, make_client):
        client, _ = make_client()
        data = client.get("/api/info").json()
        assert data["supportedFormats"] == ["doc", "docx", "ppt", "pptx", "xls", "xlsx"]
        assert data["launcher"] == "script"
        assert data["engineVersion"] == "LibreOffice 7.6.4.1"
        assert data["maxFileSize"] == f"{webapi.MAX_UPLOAD_MB}MB"

    def test_health(self, make_client):
        client, _ = make_client()
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["disk"]["method"] in {"native", "external-command", "unknown"}

    def test_test_convert_reports_and_discards(self, make_client, tmp_path):
        client, launcher = make_client()
        resp = client.post(
            "/api/test-convert",
            files={"file": ("Meeting Notes.docx", b"PK" * 50, DOCX_MIME)},
        )
        assert resp.status_code == 200
        info = resp.json()["fileInfo"]
        assert info["originalName"] == "Meeting Notes.docx"
        assert info["size"] == 100
        assert launcher.calls == []
        assert _empty(tmp_path)

    def test_test_convert_without_file_is_400(self, make_client, tmp_path):
        client, _ = make_client()
        resp = client.post("/api/test-convert", data={"x": "y"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert "no file uploaded" in body["error"]
        assert _empty(tmp_path)

    def test_test_convert_with_only_text_parts_is_400(self, make_client):
        client, _ = make_client()
        resp = client.post("/api/test-convert", files={"note": (None, "just text")})
        assert resp.status_code == 400
        assert resp.json()["code"] == "unsupported_file_type"

    def test_log_tail(self, make_client, tmp_path):
        client, _ = make_client()
        (tmp_path / "service.log").write_text(
            "".join(f"2026-01-01 00:00:0{i} [INFO] svc: line {i}\n\n" for i in range(5)),
            encoding="utf-8",
        )
        resp = client.get("/log", params={"lines": 2})
        assert resp.status_code == 200
        assert resp.text.splitlines() == [
            "2026-01-01 00:00:03 [INFO] svc: line 3",
            "2026-01-01 00:00:04 [INFO] svc: line 4",
        ]

    def test_log_missing(self, make_client, tmp_path, monkeypatch):
        client, _ = make_client()
        monkeypatch.setattr(webapi, "LOG_FILE", str(tmp_path / "nowhere" / "missing.log"))
        resp = client.get("/log")
        assert resp.status_code == 404
        assert resp.json()["success"] is False

    def test_invalid_query_uses_error_envelope(self, make_client):
        client, _ = make_client()
        resp = client.get("/log", params={"lines": 0})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["code"] == "invalid_request"

    def test_unknown_route(self, make_client):
        client, _ = make_client()
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "endpoint not found"}
