"""
API Tests for the statement import endpoints
"""
import base64
import json
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from rumbo.api.main import app
from rumbo.api.state import get_oracle, get_orchestrator, get_settings
from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import OracleUnavailableError, PDFPasswordError
from rumbo.parsing.pipeline import ImportOrchestrator


# ============================================================================
# FIXTURES
# ============================================================================

STATEMENT_CSV = b"""BANCOLOMBIA S.A.
Cuenta de Ahorros
Fecha,Referencia,Descripcion,Retiros,Consignaciones
01/01/2024,001,ABONO NOMINA,,2000000
05/01/2024,002,COMPRA EXITO,45000,
Saldo final,,,,1955000.00
"""

OCR_ANSWER = json.dumps({
    "bankName": "Nequi",
    "accountType": "SAVINGS",
    "finalBalance": 50000,
    "transactions": [{"date": "2024-03-01", "description": "Recarga", "amount": 50000}],
})

CATEGORY_ANSWER = json.dumps([{"index": 0, "categoryKey": "SALARY", "confidence": 0.95}])


@pytest.fixture
def audit_log():
    return Mock()


@pytest.fixture
def oracle():
    return Mock(return_value=OCR_ANSWER)


@pytest.fixture
def client(audit_log, oracle):
    settings = ImportSettings()
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_oracle] = lambda: oracle
    app.dependency_overrides[get_orchestrator] = lambda: ImportOrchestrator(
        oracle=oracle, audit_log=audit_log, settings=settings
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


# ============================================================================
# TESTS
# ============================================================================

def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Request-ID" in response.headers


class TestCsvEndpoint:

    def test_import(self, client, audit_log):
        response = client.post("/api/import/csv", files={"file": ("enero.csv", STATEMENT_CSV, "text/csv")})

        assert response.status_code == 200
        data = response.json()
        assert data["account"]["bank_name"] == "Bancolombia"
        assert [tx["amount"] for tx in data["transactions"]] == [2000000.0, -45000.0]
        assert data["requires_reconciliation"] is False
        audit_log.record.assert_called_once()

    def test_append_with_existing_history(self, client):
        existing = [
            {"date": "2024-01-01", "amount": 2000000, "description": "ABONO NOMINA"},
            {"date": "2024-01-05", "amount": -45000, "description": "COMPRA EXITO"},
        ]
        response = client.post(
            "/api/import/csv",
            files={"file": ("enero.csv", STATEMENT_CSV, "text/csv")},
            data={"existing_transactions": json.dumps(existing)},
        )

        data = response.json()
        assert len(data["duplicates"]) == 2
        assert data["transactions"] == []

    def test_invalid_existing_history(self, client):
        response = client.post(
            "/api/import/csv",
            files={"file": ("enero.csv", STATEMENT_CSV, "text/csv")},
            data={"existing_transactions": '[{"date": "ayer"}]'},
        )
        assert response.status_code == 422

    def test_unknown_format(self, client, audit_log):
        response = client.post("/api/import/csv", files={"file": ("otro.csv", b"foo,bar\n1,2\n", "text/csv")})

        assert response.status_code == 400
        assert "no reconocido" in response.json()["detail"]
        audit_log.record.assert_called_once()


class TestPdfEndpoint:

    def test_pages(self, client, oracle):
        response = client.post("/api/import/pdf", json={
            "file_name": "extracto.pdf",
            "pages": [_b64(b"page-1"), _b64(b"page-2")],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["account"]["bank_name"] == "Nequi"
        assert data["confidence"] == pytest.approx(0.8)
        assert data["estimated_cost"] == pytest.approx(0.01)
        assert oracle.call_args[0][0].images == [b"page-1", b"page-2"]

    def test_requires_content(self, client):
        response = client.post("/api/import/pdf", json={"file_name": "extracto.pdf"})
        assert response.status_code == 400

    def test_invalid_base64(self, client):
        response = client.post("/api/import/pdf", json={"file_name": "extracto.pdf", "file_content": "%%%"})
        assert response.status_code == 400

    def test_password_error(self, client):
        orchestrator = Mock()
        orchestrator.import_statement.side_effect = PDFPasswordError("El PDF está protegido con contraseña.")
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator

        response = client.post("/api/import/pdf", json={"file_name": "x.pdf", "file_content": _b64(b"%PDF")})
        assert response.status_code == 401

    def test_oracle_down(self, client, oracle):
        oracle.side_effect = OracleUnavailableError("quota")
        response = client.post("/api/import/pdf", json={"file_name": "x.pdf", "pages": [_b64(b"p")]})
        assert response.status_code == 502


class TestAnalysisEndpoints:

    def test_duplicates(self, client):
        tx = {"date": "2024-01-05", "amount": -45000, "description": "Compra en Éxito"}
        other = {"date": "2024-01-06", "amount": -12000, "description": "UBER"}
        response = client.post("/api/import/duplicates", json={
            "new_transactions": [tx, other],
            "existing_transactions": [{**tx, "description": "Compra en Exito"}],
        })

        data = response.json()
        assert len(data["duplicates"]) == 1
        assert data["unique"][0]["description"] == "UBER"
        assert data["duplicate_percentage"] == 50

    def test_account_suggestions(self, client):
        transactions = [
            {"date": f"2024-01-{d:02d}", "amount": -100000, "description": "PAGO TC VISA"} for d in (1, 2, 3)
        ]
        response = client.post("/api/import/account-suggestions", json={"transactions": transactions})

        suggestion = response.json()["suggestions"][0]
        assert suggestion["type"] == "CREDIT_CARD"
        assert suggestion["label"] == "Tarjeta de Crédito"

    def test_categorize(self, client, oracle):
        oracle.return_value = CATEGORY_ANSWER
        response = client.post("/api/import/categorize", json={
            "transactions": [{"date": "2024-01-01", "amount": 2000000, "description": "ABONO NOMINA"}],
            "categories": [{"key": "SALARY", "name": "Salario", "type": "INCOME"}],
        })

        data = response.json()
        assert data["transactions"][0]["category_key"] == "SALARY"
        assert data["categorized_count"] == 1

    def test_categorize_without_oracle(self, client):
        app.dependency_overrides[get_oracle] = lambda: None
        response = client.post("/api/import/categorize", json={
            "transactions": [{"date": "2024-01-01", "amount": 2000000, "description": "ABONO NOMINA"}],
            "categories": [{"key": "SALARY", "name": "Salario", "type": "INCOME"}],
        })
        assert response.status_code == 502

    def test_zero_amount_rejected(self, client):
        response = client.post("/api/import/categorize", json={
            "transactions": [{"date": "2024-01-01", "amount": 0, "description": "AJUSTE"}],
            "categories": [],
        })
        assert response.status_code == 422
