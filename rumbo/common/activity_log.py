"""
Import Audit Log

Every statement parse attempt, successful or not, produces exactly one
`ImportAuditRecord`. Records are written as JSON lines to a daily file and
mirrored to the structured logger. Persistence to the application database is
out of scope; any object with a `record()` method can stand in.
"""
import json
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from rumbo.common.logging_config import get_logger

logger = get_logger(__name__)

LOG_DIR = Path(__file__).parent.parent.parent / "logs" / "imports"

STATUS_COMPLETED = 'COMPLETED'
STATUS_FAILED = 'FAILED'


@dataclass
class ImportAuditRecord:
    file_name: str
    file_type: str
    status: str
    import_id: Optional[str] = None
    detected_bank: Optional[str] = None
    reported_balance: Optional[float] = None
    transactions_found: int = 0
    duplicates_found: int = 0
    error_message: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_COMPLETED


class ImportAuditLog(Protocol):
    def record(self, entry: ImportAuditRecord) -> None:
        ...


class JsonlImportAuditLog:
    """
    Logs import attempts to JSON files.

    Logs are stored in logs/imports/imports_{date}.jsonl
    """

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir) if log_dir else LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def record(self, entry: ImportAuditRecord) -> None:
        logger.info(
            f"Import {entry.status.lower()}: {entry.file_name}",
            file_type=entry.file_type,
            detected_bank=entry.detected_bank,
            transactions_found=entry.transactions_found,
            error_message=entry.error_message,
        )

        log_file = self.log_dir / f"imports_{datetime.now().strftime('%Y-%m-%d')}.jsonl"

        # Write failures are logged, never raised
        try:
            with open(log_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(asdict(entry), ensure_ascii=False) + '\n')
        except OSError as e:
            logger.error(f"Failed to write import audit record: {e}", exc_info=True)


_audit_log = None


def get_audit_log() -> JsonlImportAuditLog:
    """Get global audit log instance."""
    global _audit_log
    if _audit_log is None:
        _audit_log = JsonlImportAuditLog()
    return _audit_log
