"""
Import Settings

Tolerances and thresholds used across the statement-import pipeline.
The duplicate and reconciliation constants were chosen empirically and are
kept configurable rather than hardcoded.
"""
import os
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_GEMINI_MODEL = 'gemini-2.5-flash'


@dataclass(frozen=True)
class ImportSettings:
    """
    Attributes:
        date_tolerance_days: Max posting-date shift between two duplicates
        description_similarity: Min normalized similarity for duplicates
        balance_tolerance: Reported/calculated gap treated as exact match
        negligible_difference: Gaps below this are rounding noise (no AI call)
        suggestion_validity_tolerance: Remaining gap accepted as "valid" fix
        reconciliation_max_transactions: Transactions sent to the oracle
        categorization_batch_size: Transactions per categorization request
        categorization_confidence_threshold: Below this a category is dropped
        ocr_confidence: Confidence attached to vision-extracted statements
        ocr_dpi: Resolution used when rasterizing PDF pages
    """
    date_tolerance_days: int = 1
    description_similarity: float = 0.85
    balance_tolerance: float = 0.01
    negligible_difference: float = 100.0
    suggestion_validity_tolerance: float = 1000.0
    reconciliation_max_transactions: int = 50
    categorization_batch_size: int = 50
    categorization_confidence_threshold: float = 0.5
    ocr_confidence: float = 0.8
    ocr_dpi: int = 200
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_api_key: Optional[str] = None
    audit_log_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ImportSettings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            date_tolerance_days=int(os.getenv('RUMBO_DATE_TOLERANCE_DAYS', defaults.date_tolerance_days)),
            description_similarity=float(os.getenv('RUMBO_DESCRIPTION_SIMILARITY', defaults.description_similarity)),
            balance_tolerance=float(os.getenv('RUMBO_BALANCE_TOLERANCE', defaults.balance_tolerance)),
            negligible_difference=float(os.getenv('RUMBO_NEGLIGIBLE_DIFFERENCE', defaults.negligible_difference)),
            suggestion_validity_tolerance=float(
                os.getenv('RUMBO_SUGGESTION_TOLERANCE', defaults.suggestion_validity_tolerance)
            ),
            reconciliation_max_transactions=int(
                os.getenv('RUMBO_RECONCILIATION_MAX_TX', defaults.reconciliation_max_transactions)
            ),
            categorization_batch_size=int(os.getenv('RUMBO_CATEGORIZATION_BATCH', defaults.categorization_batch_size)),
            categorization_confidence_threshold=float(
                os.getenv('RUMBO_CATEGORIZATION_THRESHOLD', defaults.categorization_confidence_threshold)
            ),
            ocr_confidence=float(os.getenv('RUMBO_OCR_CONFIDENCE', defaults.ocr_confidence)),
            ocr_dpi=int(os.getenv('RUMBO_OCR_DPI', defaults.ocr_dpi)),
            gemini_model=os.getenv('RUMBO_GEMINI_MODEL', defaults.gemini_model),
            gemini_api_key=os.getenv('GEMINI_API_KEY'),
            audit_log_dir=os.getenv('RUMBO_AUDIT_LOG_DIR'),
        )

    def with_overrides(self, **changes) -> "ImportSettings":
        return replace(self, **changes)
