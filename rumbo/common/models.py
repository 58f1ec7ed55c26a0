import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class TransactionType(str, Enum):
    EXPENSE = 'EXPENSE'
    INCOME = 'INCOME'

    @classmethod
    def for_amount(cls, amount: float) -> "TransactionType":
        return cls.INCOME if amount > 0 else cls.EXPENSE


class AccountType(str, Enum):
    SAVINGS = 'SAVINGS'
    CHECKING = 'CHECKING'
    CREDIT_CARD = 'CREDIT_CARD'


class SuggestedAccountType(str, Enum):
    CREDIT_CARD = 'CREDIT_CARD'
    CASH = 'CASH'
    INVESTMENT = 'INVESTMENT'
    SAVINGS_ACCOUNT = 'SAVINGS_ACCOUNT'


class FileType(str, Enum):
    CSV = 'CSV'
    PDF = 'PDF'


ACCOUNT_TYPE_NAME_PREFIX = {
    AccountType.SAVINGS: 'Ahorros',
    AccountType.CHECKING: 'Corriente',
    AccountType.CREDIT_CARD: 'Tarjeta',
}


def suggested_account_name(account_type: AccountType, bank_name: str) -> str:
    return f"{ACCOUNT_TYPE_NAME_PREFIX[account_type]} {bank_name}"


def as_date(value) -> date:
    """Coerces datetime/date values to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass(frozen=True)
class Transaction:
    """
    Minimal transaction shape used for duplicate detection and for the
    history of an existing account.
    """
    date: date
    amount: float
    description: str

    def to_dict(self):
        return {
            'date': as_date(self.date).isoformat(),
            'amount': self.amount,
            'description': self.description,
        }


@dataclass(frozen=True)
class ParsedTransaction:
    """
    Canonical representation of a statement line after parsing.
    The sign of `amount` is the source of truth; `type` must agree with it.
    """
    date: date
    amount: float
    description: str
    raw_description: str
    type: TransactionType

    def __post_init__(self):
        if not math.isfinite(self.amount):
            raise ValueError(f"Amount must be finite, got {self.amount}")
        if self.amount == 0:
            raise ValueError("Zero-amount transactions are not valid")
        if self.type != TransactionType.for_amount(self.amount):
            raise ValueError(f"Type {self.type} disagrees with amount {self.amount}")

    @classmethod
    def from_amount(cls, date, amount: float, raw_description: str,
                    description: Optional[str] = None) -> "ParsedTransaction":
        raw = raw_description if raw_description is not None else ''
        clean = description if description is not None else " ".join(str(raw).split())
        return cls(
            date=as_date(date),
            amount=amount,
            description=clean,
            raw_description=raw,
            type=TransactionType.for_amount(amount),
        )

    def to_dict(self):
        return {
            'date': self.date.isoformat(),
            'amount': self.amount,
            'description': self.description,
            'raw_description': self.raw_description,
            'type': self.type.value,
        }


@dataclass(frozen=True)
class DetectedAccount:
    bank_name: str
    account_type: AccountType
    suggested_name: str
    reported_balance: Optional[float] = None

    def to_dict(self):
        return {
            'bank_name': self.bank_name,
            'account_type': self.account_type.value,
            'suggested_name': self.suggested_name,
            'reported_balance': self.reported_balance,
        }


@dataclass
class ParseResult:
    account: DetectedAccount
    transactions: List[ParsedTransaction]
    confidence: float

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}")

    @property
    def calculated_balance(self) -> float:
        return sum(tx.amount for tx in self.transactions)

    def to_dict(self):
        return {
            'account': self.account.to_dict(),
            'transactions': [tx.to_dict() for tx in self.transactions],
            'confidence': self.confidence,
        }


@dataclass
class DuplicateDetectionResult:
    duplicates: list = field(default_factory=list)
    unique: list = field(default_factory=list)


@dataclass
class AccountSuggestion:
    type: SuggestedAccountType
    reason: str
    transactions: list = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self):
        return {
            'type': self.type.value,
            'reason': self.reason,
            'transactions': [
                {'date': as_date(t.date).isoformat(), 'amount': t.amount, 'description': t.description}
                for t in self.transactions
            ],
            'confidence': self.confidence,
        }


@dataclass(frozen=True)
class SuggestedTransaction:
    """A transaction proposed by the oracle to close a balance gap. Never auto-committed."""
    date: date
    description: str
    amount: float
    type: TransactionType
    confidence: float
    reasoning: str

    def to_parsed(self) -> ParsedTransaction:
        return ParsedTransaction.from_amount(self.date, self.amount, self.description)

    def to_dict(self):
        return {
            'date': self.date.isoformat(),
            'description': self.description,
            'amount': self.amount,
            'type': self.type.value,
            'confidence': self.confidence,
            'reasoning': self.reasoning,
        }


@dataclass(frozen=True)
class Category:
    key: str
    name: str
    type: TransactionType


@dataclass(frozen=True)
class CategorizationResult:
    index: int
    category_key: str
    confidence: float


@dataclass(frozen=True)
class CategorizedTransaction:
    transaction: ParsedTransaction
    category_key: Optional[str] = None
    confidence: float = 0.0

    def to_dict(self):
        return {
            **self.transaction.to_dict(),
            'category_key': self.category_key,
            'confidence': self.confidence,
        }
