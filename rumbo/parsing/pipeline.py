"""
Import Pipeline

Orchestrates one statement import end to end:

    upload -> file type -> CSV registry / vision OCR -> ParseResult
           -> duplicate detection (append to existing account)
           -> reconciliation check (new account)
           -> account type suggestions
           -> audit record

Exactly one audit record is written per attempt, on success and on failure.
Failures are re-raised after auditing.
"""
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from rumbo.common.activity_log import (
    ImportAuditLog,
    ImportAuditRecord,
    STATUS_COMPLETED,
    STATUS_FAILED,
    get_audit_log,
)
from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import OracleUnavailableError, StatementImportError, UnsupportedFileTypeError
from rumbo.common.logging_config import clear_import_id, get_logger, set_import_id
from rumbo.common.models import (
    AccountSuggestion,
    DetectedAccount,
    FileType,
    ParsedTransaction,
    ParseResult,
)
from rumbo.common.oracle import Oracle
from rumbo.core.advisor import detect_additional_accounts
from rumbo.core.duplicates import DuplicateDetector
from rumbo.core.reconciler import needs_reconciliation
from .extractors.ocr import StatementOCRAdapter
from .registry import BankParserRegistry

logger = get_logger(__name__)

EXTENSIONS = {
    '.csv': FileType.CSV,
    '.pdf': FileType.PDF,
}


@dataclass
class StatementUpload:
    file_name: str
    content: bytes = b''
    file_type: Optional[FileType] = None
    password: Optional[str] = None
    # Pre-rendered PNG pages; when set the PDF bytes are not rasterized
    pages: Optional[List[bytes]] = None

    def resolve_file_type(self) -> FileType:
        if self.file_type is not None:
            return FileType(self.file_type)
        suffix = Path(self.file_name).suffix.lower()
        if suffix in EXTENSIONS:
            return EXTENSIONS[suffix]
        if self.pages:
            return FileType.PDF
        raise UnsupportedFileTypeError(
            f"Tipo de archivo no soportado: '{suffix or self.file_name}'. Usa CSV o PDF.",
            filename=self.file_name,
        )


@dataclass
class ImportResult:
    import_id: str
    file_name: str
    file_type: FileType
    account: DetectedAccount
    transactions: List[ParsedTransaction]
    confidence: float
    calculated_balance: float
    requires_reconciliation: bool = False
    duplicates: List[ParsedTransaction] = field(default_factory=list)
    account_suggestions: List[AccountSuggestion] = field(default_factory=list)

    def to_dict(self):
        return {
            'import_id': self.import_id,
            'file_name': self.file_name,
            'file_type': self.file_type.value,
            'account': self.account.to_dict(),
            'transactions': [tx.to_dict() for tx in self.transactions],
            'duplicates': [tx.to_dict() for tx in self.duplicates],
            'confidence': self.confidence,
            'calculated_balance': self.calculated_balance,
            'requires_reconciliation': self.requires_reconciliation,
            'account_suggestions': [s.to_dict() for s in self.account_suggestions],
        }


class ImportOrchestrator:
    """
    Entry point for statement imports.

    All collaborators are injectable; defaults are the bank parser registry,
    the vision OCR adapter (only when an oracle is available) and the JSONL
    audit log.
    """

    def __init__(self, registry: Optional[BankParserRegistry] = None,
                 oracle: Optional[Oracle] = None,
                 ocr: Optional[StatementOCRAdapter] = None,
                 audit_log: Optional[ImportAuditLog] = None,
                 settings: ImportSettings = ImportSettings()):
        self.settings = settings
        self.registry = registry or BankParserRegistry()
        self.ocr = ocr or (StatementOCRAdapter(oracle, settings) if oracle is not None else None)
        self.audit_log = audit_log or get_audit_log()
        self.duplicate_detector = DuplicateDetector.from_settings(settings)

    def import_statement(self, upload: StatementUpload,
                         existing_transactions: Optional[Sequence] = None) -> ImportResult:
        """
        Parses the upload and prepares it for commit.

        Args:
            upload: The uploaded statement
            existing_transactions: History of the target account when appending;
                None for a new account

        Returns:
            ImportResult with the transactions to commit

        Raises:
            StatementImportError subclasses, after the failure has been audited
        """
        import_id = str(uuid.uuid4())
        set_import_id(import_id)
        file_type = None
        parse_result = None

        try:
            file_type = upload.resolve_file_type()
            logger.info(f"Starting import: {upload.file_name}", file_type=file_type.value, size=len(upload.content))

            parse_result = self._parse(upload, file_type)
            result = self._build_result(import_id, upload, file_type, parse_result, existing_transactions)
        except StatementImportError as e:
            logger.error(f"Import failed: {e.reason}", error_type=type(e).__name__)
            self._audit(upload, file_type, import_id, parse_result, error=e.reason)
            raise
        except Exception as e:
            logger.error(f"Unexpected import failure: {e}", exc_info=True)
            self._audit(upload, file_type, import_id, parse_result, error=str(e))
            raise
        else:
            self._audit(upload, file_type, import_id, parse_result, result=result)
            return result
        finally:
            clear_import_id()

    def _parse(self, upload: StatementUpload, file_type: FileType) -> ParseResult:
        if file_type == FileType.CSV:
            raw_text = upload.content.decode('utf-8-sig', errors='replace')
            return self.registry.parse(raw_text, filename=upload.file_name)

        if self.ocr is None:
            raise OracleUnavailableError("La importación de PDF requiere el servicio de IA", filename=upload.file_name)
        if upload.pages:
            return self.ocr.parse_images(upload.pages)
        return self.ocr.parse_pdf(upload.content, upload.password)

    def _build_result(self, import_id: str, upload: StatementUpload, file_type: FileType,
                      parse_result: ParseResult, existing_transactions: Optional[Sequence]) -> ImportResult:
        transactions = list(parse_result.transactions)
        duplicates: List[ParsedTransaction] = []
        is_new_account = existing_transactions is None

        if not is_new_account:
            detection = self.duplicate_detector.find_duplicates(transactions, existing_transactions)
            transactions = detection.unique
            duplicates = detection.duplicates

        calculated_balance = parse_result.calculated_balance
        requires_reconciliation = needs_reconciliation(
            parse_result.account.reported_balance, calculated_balance, is_new_account, self.settings
        )
        if requires_reconciliation:
            logger.info(
                "Balance mismatch detected.",
                reported=parse_result.account.reported_balance,
                calculated=calculated_balance,
            )

        return ImportResult(
            import_id=import_id,
            file_name=upload.file_name,
            file_type=file_type,
            account=parse_result.account,
            transactions=transactions,
            confidence=parse_result.confidence,
            calculated_balance=calculated_balance,
            requires_reconciliation=requires_reconciliation,
            duplicates=duplicates,
            account_suggestions=detect_additional_accounts(parse_result.transactions),
        )

    def _audit(self, upload: StatementUpload, file_type: Optional[FileType], import_id: str,
               parse_result: Optional[ParseResult], result: Optional[ImportResult] = None,
               error: Optional[str] = None) -> None:
        account = parse_result.account if parse_result else None
        self.audit_log.record(ImportAuditRecord(
            file_name=upload.file_name,
            file_type=file_type.value if file_type else 'UNKNOWN',
            status=STATUS_FAILED if error is not None else STATUS_COMPLETED,
            import_id=import_id,
            detected_bank=account.bank_name if account else None,
            reported_balance=account.reported_balance if account else None,
            transactions_found=len(parse_result.transactions) if parse_result else 0,
            duplicates_found=len(result.duplicates) if result else 0,
            error_message=error,
        ))
