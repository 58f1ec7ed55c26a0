"""
Request models for the import API
"""
import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from rumbo.common.models import Category, ParsedTransaction, Transaction, TransactionType
from rumbo.core.reconciler import ReconciliationMethod


class TransactionIn(BaseModel):
    """Existing or new transaction used for comparisons"""
    date: dt.date
    amount: float
    description: str

    def to_transaction(self) -> Transaction:
        return Transaction(date=self.date, amount=self.amount, description=self.description)


class ParsedTransactionIn(BaseModel):
    """Transaction as returned by the import endpoints, sent back by the client"""
    date: dt.date
    amount: float
    description: str
    raw_description: Optional[str] = None

    @field_validator('amount')
    @classmethod
    def amount_not_zero(cls, value: float) -> float:
        if value == 0:
            raise ValueError('amount must not be zero')
        return value

    def to_parsed(self) -> ParsedTransaction:
        return ParsedTransaction.from_amount(
            self.date, self.amount, self.raw_description or self.description, self.description
        )


class CategoryIn(BaseModel):
    key: str
    name: str
    type: TransactionType

    def to_category(self) -> Category:
        return Category(key=self.key, name=self.name, type=self.type)


class PdfImportRequest(BaseModel):
    file_name: str
    file_content: Optional[str] = Field(None, description="Base64 encoded PDF bytes")
    pages: Optional[List[str]] = Field(None, description="Base64 encoded PNG page images, in page order")
    password: Optional[str] = None
    existing_transactions: Optional[List[TransactionIn]] = None


class DuplicateCheckRequest(BaseModel):
    new_transactions: List[TransactionIn]
    existing_transactions: List[TransactionIn]


class AccountSuggestionRequest(BaseModel):
    transactions: List[TransactionIn]


class CategorizeRequest(BaseModel):
    transactions: List[ParsedTransactionIn]
    categories: List[CategoryIn]


class ReconciliationCreateRequest(BaseModel):
    reported_balance: float
    transactions: List[ParsedTransactionIn]


class ReconciliationMethodRequest(BaseModel):
    method: ReconciliationMethod


class ReconciliationSelectionRequest(BaseModel):
    indices: List[int] = Field(default_factory=list)


class ReconciliationEntriesRequest(BaseModel):
    transactions: List[ParsedTransactionIn]
