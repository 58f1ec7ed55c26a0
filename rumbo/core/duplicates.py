"""
Duplicate detection between a freshly parsed statement and the history of the
account it is being appended to.

Two transactions are duplicates when the amounts are exactly equal, the dates
are within a tolerance window, and the normalized descriptions are similar
enough. Every new transaction is compared against every existing one; batches
are statement-sized so the O(N*M) cross product is fine.
"""
from typing import Sequence

from rumbo.common.config import ImportSettings
from rumbo.common.logging_config import get_logger
from rumbo.common.models import DuplicateDetectionResult, as_date
from rumbo.core.similarity import string_similarity

logger = get_logger(__name__)

DEFAULT_DATE_TOLERANCE = 1
DEFAULT_DESCRIPTION_SIMILARITY = 0.85


def is_duplicate(tx1, tx2, date_tolerance: int = DEFAULT_DATE_TOLERANCE,
                 description_similarity: float = DEFAULT_DESCRIPTION_SIMILARITY) -> bool:
    """
    Accepts any objects exposing `date`, `amount` and `description`.
    """
    if tx1.amount != tx2.amount:
        return False

    days_diff = abs((as_date(tx1.date) - as_date(tx2.date)).days)
    if days_diff > date_tolerance:
        return False

    return string_similarity(tx1.description, tx2.description) >= description_similarity


def find_duplicates(new_transactions: Sequence, existing_transactions: Sequence,
                    date_tolerance: int = DEFAULT_DATE_TOLERANCE,
                    description_similarity: float = DEFAULT_DESCRIPTION_SIMILARITY) -> DuplicateDetectionResult:
    result = DuplicateDetectionResult()

    for new_tx in new_transactions:
        if any(is_duplicate(new_tx, existing_tx, date_tolerance, description_similarity)
               for existing_tx in existing_transactions):
            result.duplicates.append(new_tx)
        else:
            result.unique.append(new_tx)

    return result


def calculate_duplicate_percentage(result: DuplicateDetectionResult) -> float:
    """Percentage (0-100) of the batch flagged as duplicates."""
    total = len(result.duplicates) + len(result.unique)
    if total == 0:
        return 0.0
    return len(result.duplicates) / total * 100


class DuplicateDetector:
    """Holds the configured tolerances and applies them to a whole batch."""

    def __init__(self, date_tolerance: int = DEFAULT_DATE_TOLERANCE,
                 description_similarity: float = DEFAULT_DESCRIPTION_SIMILARITY):
        self.date_tolerance = date_tolerance
        self.description_similarity = description_similarity

    @classmethod
    def from_settings(cls, settings: ImportSettings) -> "DuplicateDetector":
        return cls(settings.date_tolerance_days, settings.description_similarity)

    def is_duplicate(self, tx1, tx2) -> bool:
        return is_duplicate(tx1, tx2, self.date_tolerance, self.description_similarity)

    def find_duplicates(self, new_transactions: Sequence, existing_transactions: Sequence) -> DuplicateDetectionResult:
        result = find_duplicates(new_transactions, existing_transactions,
                                 self.date_tolerance, self.description_similarity)
        logger.info(
            "Duplicate detection completed.",
            new_count=len(new_transactions),
            existing_count=len(existing_transactions),
            duplicates=len(result.duplicates),
            percentage=round(calculate_duplicate_percentage(result), 2),
        )
        return result
