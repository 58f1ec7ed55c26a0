"""
Unit Tests for StatementOCRAdapter

The oracle is a stub; pdf2image is patched so no poppler install is needed.
"""
import json
from datetime import date
from unittest.mock import Mock, patch

import pytest
from pdf2image.exceptions import PDFPageCountError

from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import (
    EmptyStatementError,
    OracleMalformedError,
    OracleUnavailableError,
    PDFPasswordError,
    StatementImportError,
)
from rumbo.common.models import AccountType, TransactionType
from rumbo.parsing.extractors.ocr import StatementOCRAdapter, estimate_ocr_cost


# ============================================================================
# FIXTURES
# ============================================================================

def _payload(**overrides):
    data = {
        "bankName": "Bancolombia",
        "accountType": "CHECKING",
        "initialBalance": 100000,
        "finalBalance": 2055000,
        "transactions": [
            {"date": "2024-01-01", "description": "ABONO NOMINA", "amount": 2000000},
            {"date": "2024-01-05", "description": "COMPRA EXITO", "amount": -45000},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def oracle():
    return Mock(return_value=json.dumps(_payload()))


@pytest.fixture
def adapter(oracle):
    return StatementOCRAdapter(oracle)


def _fake_page(content=b'png-bytes'):
    page = Mock()
    page.save.side_effect = lambda buffer, format: buffer.write(content)
    return page


# ============================================================================
# TESTS: parse_images
# ============================================================================

class TestParseImages:

    def test_single_request_with_all_pages(self, adapter, oracle):
        adapter.parse_images([b'page-1', b'page-2', b'page-3'])

        oracle.assert_called_once()
        request = oracle.call_args[0][0]
        assert request.images == [b'page-1', b'page-2', b'page-3']
        assert request.temperature == 0.1
        assert "MÚLTIPLES PÁGINAS" in request.prompt

    def test_result(self, adapter):
        result = adapter.parse_images([b'page-1'])

        assert result.confidence == pytest.approx(0.8)
        assert result.account.bank_name == "Bancolombia"
        assert result.account.account_type == AccountType.CHECKING
        assert result.account.suggested_name == "Corriente Bancolombia"
        assert result.account.reported_balance == 2055000.0

        assert [tx.date for tx in result.transactions] == [date(2024, 1, 1), date(2024, 1, 5)]
        assert [tx.type for tx in result.transactions] == [TransactionType.INCOME, TransactionType.EXPENSE]

    def test_confidence_from_settings(self, oracle):
        adapter = StatementOCRAdapter(oracle, ImportSettings(ocr_confidence=0.6))
        assert adapter.parse_images([b'page-1']).confidence == pytest.approx(0.6)

    def test_markdown_fences_tolerated(self, oracle, adapter):
        oracle.return_value = "```json\n" + json.dumps(_payload()) + "\n```"
        assert len(adapter.parse_images([b'page-1']).transactions) == 2

    def test_zero_final_balance_accepted(self, oracle, adapter):
        oracle.return_value = json.dumps(_payload(finalBalance=0))
        assert adapter.parse_images([b'page-1']).account.reported_balance == 0.0

    @pytest.mark.parametrize("field_name", ["bankName", "accountType", "finalBalance", "transactions"])
    def test_missing_required_field(self, oracle, adapter, field_name):
        payload = _payload()
        del payload[field_name]
        oracle.return_value = json.dumps(payload)

        with pytest.raises(OracleMalformedError):
            adapter.parse_images([b'page-1'])

    def test_unknown_account_type(self, oracle, adapter):
        oracle.return_value = json.dumps(_payload(accountType="LOAN"))
        with pytest.raises(OracleMalformedError):
            adapter.parse_images([b'page-1'])

    def test_non_json(self, oracle, adapter):
        oracle.return_value = "No puedo leer este documento."
        with pytest.raises(OracleMalformedError):
            adapter.parse_images([b'page-1'])

    def test_bad_entries_skipped(self, oracle, adapter):
        oracle.return_value = json.dumps(_payload(transactions=[
            {"date": "2024-01-01", "description": "ABONO NOMINA", "amount": 2000000},
            {"date": "ayer", "description": "FECHA RARA", "amount": -1000},
            {"date": "2024-01-02", "description": "MONTO TEXTO", "amount": "mil"},
            {"date": "2024-01-03", "description": "CERO", "amount": 0},
            {"date": "2024-01-04", "description": "", "amount": -500},
        ]))
        result = adapter.parse_images([b'page-1'])
        assert [tx.description for tx in result.transactions] == ["ABONO NOMINA"]

    def test_non_finite_amounts_skipped(self, oracle, adapter):
        oracle.return_value = json.dumps(_payload(transactions=[
            {"date": "2024-01-01", "description": "ABONO NOMINA", "amount": 2000000},
            {"date": "2024-01-02", "description": "SIN NUMERO", "amount": float("nan")},
            {"date": "2024-01-03", "description": "DESBORDE", "amount": float("-inf")},
        ]))
        assert "NaN" in oracle.return_value

        result = adapter.parse_images([b'page-1'])
        assert [tx.amount for tx in result.transactions] == [2000000.0]
        assert result.calculated_balance == 2000000.0

    @pytest.mark.parametrize("final_balance", [float("nan"), float("inf")])
    def test_non_finite_final_balance(self, oracle, adapter, final_balance):
        oracle.return_value = json.dumps(_payload(finalBalance=final_balance))
        with pytest.raises(OracleMalformedError):
            adapter.parse_images([b'page-1'])

    def test_no_surviving_transactions(self, oracle, adapter):
        oracle.return_value = json.dumps(_payload(transactions=[{"date": "x", "description": "y", "amount": 0}]))
        with pytest.raises(EmptyStatementError):
            adapter.parse_images([b'page-1'])

    def test_no_pages(self, adapter, oracle):
        with pytest.raises(EmptyStatementError):
            adapter.parse_images([])
        oracle.assert_not_called()

    def test_oracle_failure_is_fatal(self, oracle, adapter):
        oracle.side_effect = OracleUnavailableError("quota")
        with pytest.raises(OracleUnavailableError):
            adapter.parse_images([b'page-1'])

    def test_unexpected_oracle_error_wrapped(self, oracle, adapter):
        oracle.side_effect = ConnectionError("connection reset")
        with pytest.raises(OracleUnavailableError):
            adapter.parse_images([b'page-1'])


# ============================================================================
# TESTS: parse_pdf
# ============================================================================

class TestParsePdf:

    @patch('rumbo.parsing.extractors.ocr.convert_from_bytes')
    def test_rasterizes_then_parses(self, mock_convert, adapter, oracle):
        mock_convert.return_value = [_fake_page(b'one'), _fake_page(b'two')]

        result = adapter.parse_pdf(b'%PDF-1.4', password="1234")

        mock_convert.assert_called_once_with(b'%PDF-1.4', dpi=200, userpw="1234", fmt='png')
        assert oracle.call_args[0][0].images == [b'one', b'two']
        assert len(result.transactions) == 2

    @patch('rumbo.parsing.extractors.ocr.convert_from_bytes')
    def test_wrong_password(self, mock_convert, adapter, oracle):
        mock_convert.side_effect = PDFPageCountError(
            "Unable to get page count.\nCommand Line Error: Incorrect password"
        )
        with pytest.raises(PDFPasswordError):
            adapter.parse_pdf(b'%PDF-1.4', password="wrong")
        oracle.assert_not_called()

    @patch('rumbo.parsing.extractors.ocr.convert_from_bytes')
    def test_corrupt_pdf(self, mock_convert, adapter):
        mock_convert.side_effect = PDFPageCountError("Unable to get page count.\nSyntax Error")
        with pytest.raises(StatementImportError) as exc_info:
            adapter.parse_pdf(b'not a pdf')
        assert not isinstance(exc_info.value, PDFPasswordError)


@pytest.mark.parametrize("size,expected", [
    (0, 0.0),
    (1, 0.01),
    (1024 * 1024, 0.01),
    (1024 * 1024 + 1, 0.02),
    (5 * 1024 * 1024, 0.05),
])
def test_estimate_ocr_cost(size, expected):
    assert estimate_ocr_cost(size) == pytest.approx(expected)
