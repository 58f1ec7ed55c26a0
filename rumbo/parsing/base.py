"""
Base Classes for Parsing Module

Every supported institution is a `BaseBankParser` subclass that declares how
to recognize its exports (`signatures`, `header_patterns`) and, when needed,
overrides column defaults or date formats. The row algorithm is shared:

1. tokenize the CSV into rows
2. skip preamble/header rows until a row carries a date cell
3. per row take date, description and amount (credit if present else -debit)
4. coerce everything with pandas and drop rows that do not survive

Rows that fail to parse are skipped, not fatal. Zero surviving transactions is.
"""
import csv
import io
import re
from abc import ABC
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from rumbo.common.exceptions import EmptyStatementError
from rumbo.common.logging_config import get_logger
from rumbo.common.models import (
    AccountType,
    DetectedAccount,
    ParsedTransaction,
    ParseResult,
    suggested_account_name,
)
from rumbo.core.similarity import normalize_string

logger = get_logger(__name__)

DATE_CELL = re.compile(r"^\s*(\d{2}/\d{2}/\d{4}|\d{4}-\d{2}-\d{2})\s*$")
AMOUNT_CELL = re.compile(r"^-?\s*\$?\s*-?\d[\d,]*(\.\d+)?$")
AMOUNT_IN_TEXT = re.compile(r"-?\$?\s?\d[\d,]*\.\d{2}")
AMOUNT_STRIP = r"[$,\s]"
EMPTY_MARKERS = {'', '-'}

# Header keywords (accent-free, lowercase) mapped to logical columns.
# Order inside a tuple does not matter; the first header cell that matches wins.
HEADER_KEYWORDS = {
    'date': ('fecha',),
    'description': ('descripcion', 'concepto', 'detalle'),
    'debit': ('retiro', 'debito', 'cargo'),
    'credit': ('consignacion', 'credito', 'abono', 'deposito'),
    'amount': ('valor', 'monto'),
}

BALANCE_LABELS = ('saldo', 'balance')


def tokenize(raw_text: str) -> List[List[str]]:
    """Splits CSV text into rows, dropping rows that are entirely blank."""
    sample = raw_text[:2048]
    delimiter = ';' if sample.count(';') > sample.count(',') else ','
    reader = csv.reader(io.StringIO(raw_text), delimiter=delimiter)
    return [row for row in reader if any(cell.strip() for cell in row)]


def is_date_cell(cell: str) -> bool:
    return bool(DATE_CELL.match(cell or ''))


def non_transaction_text(rows: Sequence[Sequence[str]]) -> str:
    """Text of every row that does not start with a date (preamble, headers, footers)."""
    return "\n".join(",".join(row) for row in rows if not (row and is_date_cell(row[0])))


def parse_amount_token(token: str) -> Optional[float]:
    cleaned = re.sub(AMOUNT_STRIP, "", token or "")
    if cleaned in EMPTY_MARKERS:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


class BaseBankParser(ABC):
    """
    Abstract base for per-institution statement parsers.

    Subclasses set:
        bank_name: Display name of the institution
        confidence: Certainty attached to results from this format
        signatures: Literal strings (bank name, domain) outside the transaction rows
        header_patterns: Regexes describing the institution's header shape
        date_formats: strptime formats tried in order
        default_columns: Column positions used when no header row is present
    """
    bank_name: str = 'Unknown Bank'
    confidence: float = 0.8
    signatures: Tuple[str, ...] = ()
    header_patterns: Tuple[re.Pattern, ...] = ()
    date_formats: Tuple[str, ...] = ('%d/%m/%Y',)
    default_columns: Dict[str, int] = {'date': 0, 'description': 1, 'debit': 2, 'credit': 3}

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def matches_signature(self, raw_text: str) -> bool:
        text = non_transaction_text(tokenize(raw_text)).upper()
        return any(sig.upper() in text for sig in self.signatures)

    def matches_header(self, raw_text: str) -> bool:
        return any(p.search(raw_text) for p in self.header_patterns)

    def detect(self, raw_text: str) -> bool:
        return self.matches_signature(raw_text) or self.matches_header(raw_text)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, raw_text: str) -> ParseResult:
        rows = tokenize(raw_text)
        data_start = self.find_data_start(rows)
        if data_start is None:
            raise EmptyStatementError("No se encontraron filas con fecha", bank_name=self.bank_name)

        preamble = rows[:data_start]
        header_index, columns = self.resolve_columns(preamble)

        records = []
        for row in rows[data_start:]:
            if self.is_header_row(row):
                continue
            record = self.extract_record(row, columns)
            if record is not None:
                records.append(record)

        transactions = self.normalize_records(records)
        if not transactions:
            raise EmptyStatementError("No se encontraron transacciones válidas", bank_name=self.bank_name)

        info_rows = [r for i, r in enumerate(preamble) if i != header_index]
        account_type = self.detect_account_type(info_rows)
        account = DetectedAccount(
            bank_name=self.bank_name,
            account_type=account_type,
            suggested_name=suggested_account_name(account_type, self.bank_name),
            reported_balance=self.find_reported_balance(rows),
        )

        logger.info(
            f"{self.bank_name} statement parsed.",
            parser=self.__class__.__name__,
            tx_count=len(transactions),
            skipped=len(rows) - data_start - len(transactions),
            reported_balance=account.reported_balance,
        )
        return ParseResult(account=account, transactions=transactions, confidence=self.confidence)

    def find_data_start(self, rows: Sequence[Sequence[str]]) -> Optional[int]:
        for i, row in enumerate(rows):
            if any(is_date_cell(cell) for cell in row):
                return i
        return None

    def is_header_row(self, row: Sequence[str]) -> bool:
        return any(cell.strip().lower().startswith('fecha') for cell in row)

    def resolve_columns(self, preamble: Sequence[Sequence[str]]) -> Tuple[Optional[int], Dict[str, int]]:
        """
        Maps logical columns from the last header row before the data.
        Falls back to `default_columns` when no header row is found.
        """
        for index in range(len(preamble) - 1, -1, -1):
            row = preamble[index]
            if not self.is_header_row(row):
                continue
            columns: Dict[str, int] = {}
            for position, cell in enumerate(row):
                name = normalize_string(cell)
                for field_name, keywords in HEADER_KEYWORDS.items():
                    if field_name not in columns and any(k in name for k in keywords):
                        columns[field_name] = position
                        break
            if 'date' in columns and 'description' in columns:
                return index, columns
        return None, dict(self.default_columns)

    def extract_record(self, row: Sequence[str], columns: Dict[str, int]) -> Optional[dict]:
        def cell(name):
            position = columns.get(name)
            if position is None or position >= len(row):
                return None
            return row[position]

        date_str = cell('date')
        description = cell('description')
        if not date_str or not description or not description.strip():
            return None

        return {
            'date': date_str.strip(),
            'description': description,
            'amount': cell('amount'),
            'debit': cell('debit'),
            'credit': cell('credit'),
        }

    def normalize_records(self, records: List[dict]) -> List[ParsedTransaction]:
        if not records:
            return []

        df = pd.DataFrame(records, columns=['date', 'description', 'amount', 'debit', 'credit'])
        df['date'] = self._parse_dates(df['date'])

        amount = self._to_number(df['amount'])
        credit = self._to_number(df['credit'])
        debit = self._to_number(df['debit'])
        # A 0 in the unused column means "absent"
        credit = credit.mask(credit == 0)
        debit = debit.mask(debit == 0)
        df['signed'] = amount.fillna(credit).fillna(-debit).replace([float('inf'), float('-inf')], float('nan'))

        before = len(df)
        df = df.dropna(subset=['date', 'signed'])
        df = df[df['signed'] != 0]
        if len(df) < before:
            logger.debug("Skipped unparsable rows.", parser=self.__class__.__name__, skipped=before - len(df))

        return [
            ParsedTransaction.from_amount(row.date.date(), float(row.signed), row.description.strip())
            for row in df.itertuples(index=False)
        ]

    def _parse_dates(self, series: pd.Series) -> pd.Series:
        parsed = pd.Series(pd.NaT, index=series.index)
        for fmt in self.date_formats:
            attempt = pd.to_datetime(series, format=fmt, errors='coerce')
            parsed = parsed.fillna(attempt)
        return parsed

    @staticmethod
    def _to_number(series: pd.Series) -> pd.Series:
        cleaned = series.fillna('').astype(str).str.replace(AMOUNT_STRIP, '', regex=True)
        cleaned = cleaned.mask(cleaned.isin(EMPTY_MARKERS))
        return pd.to_numeric(cleaned, errors='coerce')

    # ------------------------------------------------------------------
    # Account metadata
    # ------------------------------------------------------------------

    def detect_account_type(self, info_rows: Sequence[Sequence[str]]) -> AccountType:
        text = normalize_string(" ".join(" ".join(row) for row in info_rows))
        if 'credito' in text:
            return AccountType.CREDIT_CARD
        if 'corriente' in text:
            return AccountType.CHECKING
        return AccountType.SAVINGS

    def find_reported_balance(self, rows: Sequence[Sequence[str]]) -> Optional[float]:
        """
        Closing balance from the last labelled "saldo"/"balance" row that is not
        a transaction row. Returns None when the statement has none.
        """
        for row in reversed(rows):
            if row and is_date_cell(row[0]):
                continue
            if not any(label in cell.lower() for cell in row for label in BALANCE_LABELS):
                continue

            for cell in row:
                if AMOUNT_CELL.match(cell.strip()):
                    value = parse_amount_token(cell)
                    if value is not None:
                        return value
            for cell in row:
                match = AMOUNT_IN_TEXT.search(cell)
                if match:
                    return parse_amount_token(match.group(0))
        return None
