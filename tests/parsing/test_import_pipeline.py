"""
Unit Tests for ImportOrchestrator

Tests:
- File type routing (CSV registry, PDF OCR)
- Exactly one audit record per attempt
- Duplicate filtering when appending
- Reconciliation flag for new accounts
"""
from datetime import date
from unittest.mock import Mock

import pytest

from rumbo.common.activity_log import STATUS_COMPLETED, STATUS_FAILED
from rumbo.common.exceptions import (
    EmptyStatementError,
    FormatNotRecognizedError,
    OracleUnavailableError,
    UnsupportedFileTypeError,
)
from rumbo.common.logging_config import current_context
from rumbo.common.models import (
    AccountType,
    DetectedAccount,
    FileType,
    ParsedTransaction,
    ParseResult,
    SuggestedAccountType,
    Transaction,
)
from rumbo.parsing.extractors.ocr import StatementOCRAdapter
from rumbo.parsing.pipeline import ImportOrchestrator, StatementUpload


# ============================================================================
# FIXTURES
# ============================================================================

STATEMENT_CSV = """BANCOLOMBIA S.A.
Cuenta de Ahorros
Fecha,Referencia,Descripcion,Retiros,Consignaciones
01/01/2024,001,ABONO NOMINA,,2000000
05/01/2024,002,COMPRA EXITO,45000,
Saldo final,,,,{balance}
"""


def _csv(balance="1955000.00"):
    return STATEMENT_CSV.format(balance=balance).encode('utf-8')


@pytest.fixture
def audit_log():
    return Mock()


@pytest.fixture
def orchestrator(audit_log):
    return ImportOrchestrator(audit_log=audit_log)


def _audited(audit_log):
    audit_log.record.assert_called_once()
    return audit_log.record.call_args[0][0]


# ============================================================================
# TESTS: CSV imports
# ============================================================================

class TestCsvImport:

    def test_new_account(self, orchestrator, audit_log):
        result = orchestrator.import_statement(StatementUpload("enero.csv", _csv()))

        assert result.file_type == FileType.CSV
        assert result.account.bank_name == "Bancolombia"
        assert [tx.amount for tx in result.transactions] == [2000000.0, -45000.0]
        assert result.confidence == pytest.approx(0.9)
        assert result.calculated_balance == 1955000.0
        assert result.requires_reconciliation is False
        assert result.duplicates == []

        record = _audited(audit_log)
        assert record.status == STATUS_COMPLETED
        assert record.file_name == "enero.csv"
        assert record.file_type == "CSV"
        assert record.detected_bank == "Bancolombia"
        assert record.reported_balance == 1955000.0
        assert record.transactions_found == 2
        assert record.error_message is None
        assert record.import_id == result.import_id

    def test_balance_gap_requires_reconciliation(self, orchestrator):
        result = orchestrator.import_statement(StatementUpload("enero.csv", _csv("1930000.00")))
        assert result.requires_reconciliation is True

    def test_reimport_against_existing_account(self, orchestrator, audit_log):
        existing = [
            Transaction(date(2024, 1, 1), 2000000.0, "ABONO NOMINA"),
            Transaction(date(2024, 1, 5), -45000.0, "COMPRA EXITO"),
        ]
        result = orchestrator.import_statement(StatementUpload("enero.csv", _csv("1930000.00")), existing)

        assert len(result.duplicates) == 2
        assert len(result.transactions) == 0
        assert result.requires_reconciliation is False
        assert _audited(audit_log).duplicates_found == 2

    def test_append_keeps_unique(self, orchestrator):
        existing = [Transaction(date(2024, 1, 1), 2000000.0, "ABONO NOMINA")]
        result = orchestrator.import_statement(StatementUpload("enero.csv", _csv()), existing)

        assert [tx.description for tx in result.transactions] == ["COMPRA EXITO"]
        assert [tx.description for tx in result.duplicates] == ["ABONO NOMINA"]

    def test_utf8_bom(self, orchestrator):
        content = b'\xef\xbb\xbf' + _csv()
        result = orchestrator.import_statement(StatementUpload("enero.csv", content))
        assert len(result.transactions) == 2

    def test_account_suggestions_attached(self, orchestrator):
        content = _csv().replace(b"COMPRA EXITO", b"PAGO TC VISA")
        result = orchestrator.import_statement(StatementUpload("enero.csv", content))

        assert [s.type for s in result.account_suggestions] == [SuggestedAccountType.CREDIT_CARD]

    def test_to_dict(self, orchestrator):
        data = orchestrator.import_statement(StatementUpload("enero.csv", _csv())).to_dict()

        assert data['file_type'] == 'CSV'
        assert data['account']['account_type'] == 'SAVINGS'
        assert data['transactions'][0]['date'] == '2024-01-01'
        assert data['requires_reconciliation'] is False


# ============================================================================
# TESTS: failures
# ============================================================================

class TestFailures:

    def test_unrecognized_format_audited_then_raised(self, orchestrator, audit_log):
        with pytest.raises(FormatNotRecognizedError):
            orchestrator.import_statement(StatementUpload("otro.csv", b"foo,bar\n1,2\n"))

        record = _audited(audit_log)
        assert record.status == STATUS_FAILED
        assert record.file_type == "CSV"
        assert record.detected_bank is None
        assert "no reconocido" in record.error_message

    def test_empty_statement(self, orchestrator, audit_log):
        with pytest.raises(EmptyStatementError):
            orchestrator.import_statement(StatementUpload("vacio.csv", b"BANCOLOMBIA\nFecha,Descripcion,Valor\n"))
        assert _audited(audit_log).status == STATUS_FAILED

    def test_unsupported_extension(self, orchestrator, audit_log):
        with pytest.raises(UnsupportedFileTypeError):
            orchestrator.import_statement(StatementUpload("extracto.xlsx", b"PK"))

        record = _audited(audit_log)
        assert record.file_type == "UNKNOWN"
        assert record.status == STATUS_FAILED

    def test_pdf_without_oracle(self, orchestrator, audit_log):
        with pytest.raises(OracleUnavailableError):
            orchestrator.import_statement(StatementUpload("extracto.pdf", b"%PDF-1.4"))
        assert _audited(audit_log).file_type == "PDF"

    def test_unexpected_error_still_audited(self, audit_log):
        registry = Mock()
        registry.parse.side_effect = RuntimeError("boom")
        orchestrator = ImportOrchestrator(registry=registry, audit_log=audit_log)

        with pytest.raises(RuntimeError):
            orchestrator.import_statement(StatementUpload("enero.csv", _csv()))
        assert _audited(audit_log).error_message == "boom"

    def test_import_id_cleared(self, orchestrator):
        result = orchestrator.import_statement(StatementUpload("enero.csv", _csv()))
        assert current_context().get("import_id") != result.import_id


# ============================================================================
# TESTS: PDF imports
# ============================================================================

class TestPdfImport:

    @pytest.fixture
    def ocr(self):
        ocr = Mock(spec=StatementOCRAdapter)
        parse_result = ParseResult(
            account=DetectedAccount("Nequi", AccountType.SAVINGS, "Ahorros Nequi", reported_balance=50000.0),
            transactions=[ParsedTransaction.from_amount(date(2024, 3, 1), 50000.0, "Recarga")],
            confidence=0.8,
        )
        ocr.parse_images.return_value = parse_result
        ocr.parse_pdf.return_value = parse_result
        return ocr

    def test_pages_go_straight_to_ocr(self, ocr, audit_log):
        orchestrator = ImportOrchestrator(ocr=ocr, audit_log=audit_log)
        result = orchestrator.import_statement(StatementUpload("extracto.pdf", pages=[b'p1', b'p2']))

        ocr.parse_images.assert_called_once_with([b'p1', b'p2'])
        ocr.parse_pdf.assert_not_called()
        assert result.file_type == FileType.PDF
        assert result.confidence == pytest.approx(0.8)
        assert _audited(audit_log).detected_bank == "Nequi"

    def test_pdf_bytes_rasterized(self, ocr, audit_log):
        orchestrator = ImportOrchestrator(ocr=ocr, audit_log=audit_log)
        orchestrator.import_statement(StatementUpload("extracto.PDF", b"%PDF-1.4", password="1234"))

        ocr.parse_pdf.assert_called_once_with(b"%PDF-1.4", "1234")

    def test_oracle_builds_default_adapter(self, audit_log):
        orchestrator = ImportOrchestrator(oracle=Mock(), audit_log=audit_log)
        assert isinstance(orchestrator.ocr, StatementOCRAdapter)
