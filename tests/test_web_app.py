"""Tests for the conversion HTTP API."""

from datetime import datetime
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from app import create_app, output_filename
from sie_excel_export import XLSX_MEDIA_TYPE

TEST_CONFIG = {"server": {"cors_origins": ["*"]}, "limits": {"max_upload_mb": 1}}


@pytest.fixture
def client():
    return TestClient(create_app(TEST_CONFIG))


def upload(name, payload):
    return {"file": (name, payload, "application/octet-stream")}


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_security_headers(self, client):
        resp = client.get("/api/health")

        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "default-src 'self'" in resp.headers["Content-Security-Policy"]


class TestConvert:
    def test_convert_returns_workbook(self, client, sample_sie_bytes):
        resp = client.post("/api/conversion/convert", files=upload("bokslut.se", sample_sie_bytes))

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith(XLSX_MEDIA_TYPE)
        assert resp.headers["content-disposition"].startswith('attachment; filename="bokslut_')
        wb = load_workbook(BytesIO(resp.content))
        assert wb["Företagsinfo"]["B3"].value == "Övningsbolaget AB"
        assert "Konton" in wb.sheetnames

    def test_convert_applies_form_options(self, client, sample_sie_bytes):
        resp = client.post(
            "/api/conversion/convert",
            files=upload("bokslut.sie", sample_sie_bytes),
            data={"include_accounts": "false", "flatten_transactions": "false"},
        )

        assert resp.status_code == 200
        wb = load_workbook(BytesIO(resp.content))
        assert "Konton" not in wb.sheetnames
        assert "Verifikationer" in wb.sheetnames

    def test_rejects_unknown_extension(self, client, sample_sie_bytes):
        resp = client.post("/api/conversion/convert", files=upload("bokslut.pdf", sample_sie_bytes))

        assert resp.status_code == 400
        assert "invalid file type" in resp.json()["detail"]

    def test_rejects_non_sie_content(self, client):
        resp = client.post("/api/conversion/convert", files=upload("notes.txt", b"just some notes"))

        assert resp.status_code == 400
        assert resp.json()["detail"] == "file does not look like a SIE file"

    def test_rejects_empty_upload(self, client):
        resp = client.post("/api/conversion/convert", files=upload("empty.se", b""))

        assert resp.status_code == 400
        assert resp.json()["detail"] == "uploaded file is empty"

    def test_rejects_oversized_upload(self, sample_sie_bytes):
        small = TestClient(create_app({"limits": {"max_upload_mb": 0.0001}}))

        resp = small.post("/api/conversion/convert", files=upload("bokslut.se", sample_sie_bytes))

        assert resp.status_code == 400
        assert "maximum size" in resp.json()["detail"]


class TestValidate:
    def test_valid_file(self, client, sample_sie_bytes):
        resp = client.post("/api/conversion/validate", files=upload("bokslut.se", sample_sie_bytes))

        assert resp.status_code == 200
        body = resp.json()
        assert body["valid"] is True
        assert body["company"] == "Övningsbolaget AB"
        assert body["accounts"] == 4
        assert body["verifications"] == 2
        assert body["version"] == "4"

    def test_invalid_file(self, client):
        resp = client.post("/api/conversion/validate", files=upload("notes.txt", b"just some notes"))

        assert resp.status_code == 200
        assert resp.json()["valid"] is False

    def test_whitespace_file(self, client):
        resp = client.post("/api/conversion/validate", files=upload("blank.se", b"   \r\n"))

        assert resp.status_code == 200
        assert resp.json()["valid"] is False


class TestOptions:
    def test_default_options(self, client):
        resp = client.get("/api/conversion/options")

        assert resp.status_code == 200
        body = resp.json()
        assert body["sheets"]["include_verifications"] is True
        assert body["columns"]["transaction_amount_column_name"] == "Belopp"


class TestOutputFilename:
    def test_sanitizes_and_stamps(self):
        name = output_filename("../exports/Bok 2021!.se", now=datetime(2021, 3, 10, 12, 30, 5))

        assert name == "Bok 2021_20210310_123005.xlsx"

    def test_falls_back_when_nothing_left(self):
        name = output_filename("???.se", now=datetime(2021, 3, 10, 12, 30, 5))

        assert name == "sie_20210310_123005.xlsx"
