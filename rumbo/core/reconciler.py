"""
Balance Reconciliation

When a new account's reported closing balance disagrees with the sum of its
parsed transactions, the user resolves the gap through one of three methods:

- OVERRIDE: accept the calculated balance as ground truth
- AI_FIND:  ask the oracle for likely missing transactions, pick a subset
- MANUAL:   type the missing transactions by hand

`ReconciliationSession` is the state machine for a single gap. The oracle's
suggestions are advisory: each one passes the validation gate below and the
user's selection is checked against the gap but never enforced.
"""
import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Sequence

from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import OracleError, ReconciliationStateError, SuggestionValidationError
from rumbo.common.logging_config import get_logger
from rumbo.common.models import ParsedTransaction, SuggestedTransaction, TransactionType, as_date
from rumbo.common.oracle import Oracle, OracleRequest, parse_json_block

logger = get_logger(__name__)

SYSTEM_PROMPT = 'Eres un asistente de reconciliación bancaria experto para Colombia.'

RECONCILIATION_PROMPT = """Eres un asistente experto en reconciliación bancaria para Colombia.

Analiza este estado de cuenta bancario que tiene una discrepancia de balance.

**Situación:**
- Balance reportado por el banco: {reported_balance}
- Balance calculado de las transacciones: {calculated_balance}
- Diferencia: {difference} ({difference_type})

**Transacciones detectadas:**
{transactions_list}

**Tu tarea:**
Con base en:
1. El monto faltante ({difference})
2. Los patrones en las transacciones existentes (frecuencia, montos típicos, comercios)
3. Las fechas y períodos de las transacciones
4. Conocimiento de cargos bancarios comunes en Colombia (cuotas de manejo, seguros, intereses, retiros en cajero, etc.)

Sugiere entre 1 y 5 transacciones que probablemente estén faltando y expliquen la discrepancia.

**Reglas importantes:**
- Las transacciones sugeridas deben sumar aproximadamente la diferencia
- Considera cargos bancarios típicos en Colombia (cuota de manejo ~$10,000-$30,000, seguros, GMF 4x1000)
- Si la diferencia es pequeña (<$5,000), probablemente sea redondeo o ajuste
- Si la diferencia es grande, pueden ser múltiples transacciones
- Las fechas deben estar dentro del período de las transacciones existentes
- Sé conservador: mejor sugerir menos transacciones con alta confianza

Responde ÚNICAMENTE con un JSON válido (sin markdown, sin texto adicional):

[
  {{
    "date": "YYYY-MM-DD",
    "description": "Descripción clara y específica",
    "amount": número_negativo_para_gastos_o_positivo_para_ingresos,
    "type": "EXPENSE" o "INCOME",
    "confidence": número_entre_0_y_1,
    "reasoning": "Explicación breve de por qué crees que esta transacción falta"
  }}
]

Si no puedes sugerir transacciones con confianza razonable (confidence < 0.4), devuelve un array vacío: []
"""

MAX_SUGGESTIONS = 5
AUTO_SELECT_CONFIDENCE = 0.7


class ReconciliationMethod(str, Enum):
    OVERRIDE = 'OVERRIDE'
    AI_FIND = 'AI_FIND'
    MANUAL = 'MANUAL'


class ReconciliationState(str, Enum):
    AWAITING_METHOD = 'AWAITING_METHOD'
    AWAITING_SELECTION = 'AWAITING_SELECTION'
    AWAITING_ENTRY = 'AWAITING_ENTRY'
    COMPLETED = 'COMPLETED'

    @property
    def is_terminal(self) -> bool:
        return self is ReconciliationState.COMPLETED


@dataclass(frozen=True)
class SuggestionValidation:
    is_valid: bool
    suggested_total: float
    remaining_difference: float
    accuracy_percentage: float

    def to_dict(self):
        return {
            'is_valid': self.is_valid,
            'suggested_total': self.suggested_total,
            'remaining_difference': self.remaining_difference,
            'accuracy_percentage': self.accuracy_percentage,
        }


def _format_cop(value: float) -> str:
    """Colombian peso formatting: $1.234.567"""
    formatted = "$" + f"{abs(value):,.0f}".replace(",", ".")
    return "-" + formatted if value < 0 else formatted


def needs_reconciliation(reported_balance: Optional[float], calculated_balance: float,
                         is_new_account: bool = True,
                         settings: ImportSettings = ImportSettings()) -> bool:
    """
    Appends to an existing account trust that account's running balance and
    rely on duplicate detection instead. Gaps below the negligible threshold
    are rounding noise.
    """
    if not is_new_account or reported_balance is None:
        return False
    gap = abs(reported_balance - calculated_balance)
    return gap > settings.balance_tolerance and gap >= settings.negligible_difference


def is_negligible(difference: float, settings: ImportSettings = ImportSettings()) -> bool:
    return abs(difference) < settings.negligible_difference


def validate_suggestion(raw) -> SuggestedTransaction:
    """
    Validation gate for a single oracle suggestion.
    Raises SuggestionValidationError describing the first problem found.
    """
    if not isinstance(raw, dict):
        raise SuggestionValidationError("Suggestion is not an object")

    for key in ('date', 'description', 'reasoning'):
        if not raw.get(key) or not isinstance(raw.get(key), str):
            raise SuggestionValidationError(f"Missing field: {key}")

    amount = raw.get('amount')
    if (isinstance(amount, bool) or not isinstance(amount, (int, float))
            or not math.isfinite(amount) or amount == 0):
        raise SuggestionValidationError(f"Invalid amount: {amount!r}")

    try:
        tx_type = TransactionType(raw.get('type'))
    except ValueError:
        raise SuggestionValidationError(f"Invalid type: {raw.get('type')!r}")
    if tx_type != TransactionType.for_amount(amount):
        raise SuggestionValidationError(f"Type {tx_type.value} disagrees with amount {amount}")

    confidence = raw.get('confidence')
    if (isinstance(confidence, bool) or not isinstance(confidence, (int, float))
            or not math.isfinite(confidence) or not 0 < confidence <= 1):
        raise SuggestionValidationError(f"Confidence out of range: {confidence!r}")

    try:
        suggested_date = date.fromisoformat(raw['date'][:10])
    except ValueError:
        raise SuggestionValidationError(f"Invalid date: {raw['date']!r}")

    return SuggestedTransaction(
        date=suggested_date,
        description=raw['description'].strip(),
        amount=float(amount),
        type=tx_type,
        confidence=float(confidence),
        reasoning=raw['reasoning'].strip(),
    )


def _most_recent(transactions: Sequence, limit: int) -> list:
    dated = [tx for tx in transactions if getattr(tx, 'date', None) is not None]
    undated = [tx for tx in transactions if getattr(tx, 'date', None) is None]
    dated.sort(key=lambda tx: as_date(tx.date), reverse=True)
    return (dated + undated)[:limit]


def build_reconciliation_prompt(reported_balance: float, calculated_balance: float,
                                transactions: Sequence, limit: int = 50) -> str:
    difference = reported_balance - calculated_balance
    difference_type = 'falta(n) ingreso(s)' if difference > 0 else 'falta(n) gasto(s)'

    lines = []
    for tx in _most_recent(transactions, limit):
        tx_date = as_date(tx.date).isoformat() if getattr(tx, 'date', None) else 'N/A'
        sign = '+' if tx.amount >= 0 else ''
        lines.append(f"{tx_date}: {tx.description} - {sign}{_format_cop(tx.amount)}")

    return RECONCILIATION_PROMPT.format(
        reported_balance=_format_cop(reported_balance),
        calculated_balance=_format_cop(calculated_balance),
        difference=_format_cop(abs(difference)),
        difference_type=difference_type,
        transactions_list="\n".join(lines),
    )


def suggest_missing_transactions(reported_balance: float, calculated_balance: float,
                                 transactions: Sequence, oracle: Oracle,
                                 settings: ImportSettings = ImportSettings()) -> List[SuggestedTransaction]:
    """
    Asks the oracle for up to five transactions that would explain the gap.

    Degrades to an empty list on any oracle failure so the user can fall back
    to manual reconciliation.
    """
    difference = reported_balance - calculated_balance
    if is_negligible(difference, settings):
        logger.debug("Negligible difference, skipping AI reconciliation.", difference=difference)
        return []

    prompt = build_reconciliation_prompt(
        reported_balance, calculated_balance, transactions, settings.reconciliation_max_transactions
    )

    try:
        content = oracle(OracleRequest(prompt=prompt, system=SYSTEM_PROMPT, temperature=0.3, max_output_tokens=1000))
        raw_suggestions = parse_json_block(content, '[')
    except Exception as e:
        logger.error(
            f"AI reconciliation failed: {e}", exc_info=not isinstance(e, OracleError), difference=difference
        )
        return []

    if not isinstance(raw_suggestions, list):
        logger.warning("AI reconciliation returned a non-list payload.")
        return []

    suggestions = []
    for raw in raw_suggestions:
        try:
            suggestions.append(validate_suggestion(raw))
        except SuggestionValidationError as e:
            logger.warning(f"Dropping invalid suggestion: {e}")

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    logger.info(
        "AI reconciliation suggestions received.",
        received=len(raw_suggestions), valid=len(suggestions), difference=difference,
    )
    return suggestions[:MAX_SUGGESTIONS]


def validate_suggestions(suggestions: Sequence, target_difference: float,
                         tolerance: float = 1000.0) -> SuggestionValidation:
    """
    Measures how well a set of suggestions closes the gap. Accuracy is clamped
    at zero when the suggestions overshoot.
    """
    suggested_total = sum(s.amount for s in suggestions)
    remaining = target_difference - suggested_total

    if target_difference == 0:
        accuracy = 100.0 if remaining == 0 else 0.0
    else:
        accuracy = max(0.0, 100 - abs(remaining) / abs(target_difference) * 100)

    return SuggestionValidation(
        is_valid=abs(remaining) < tolerance,
        suggested_total=suggested_total,
        remaining_difference=remaining,
        accuracy_percentage=accuracy,
    )


@dataclass
class ReconciliationSession:
    """
    Reconciliation of one imported statement.

    AWAITING_METHOD -> OVERRIDE -> COMPLETED
                    -> AI_FIND  -> AWAITING_SELECTION -> COMPLETED
                    -> MANUAL   -> AWAITING_ENTRY     -> COMPLETED

    An AI_FIND that yields no suggestions returns to AWAITING_METHOD, and
    AWAITING_SELECTION may still switch to another method.
    """
    reported_balance: float
    transactions: List[ParsedTransaction]
    oracle: Optional[Oracle] = None
    settings: ImportSettings = field(default_factory=ImportSettings)
    state: ReconciliationState = ReconciliationState.AWAITING_METHOD
    method: Optional[ReconciliationMethod] = None
    suggestions: List[SuggestedTransaction] = field(default_factory=list)
    preselected: List[int] = field(default_factory=list)
    appended_transactions: List[ParsedTransaction] = field(default_factory=list)
    validation: Optional[SuggestionValidation] = None

    def __post_init__(self):
        if is_negligible(self.difference, self.settings):
            self.state = ReconciliationState.COMPLETED

    @property
    def calculated_balance(self) -> float:
        return sum(tx.amount for tx in self.transactions)

    @property
    def difference(self) -> float:
        return self.reported_balance - self.calculated_balance

    @property
    def remaining_difference(self) -> float:
        return self.difference - sum(tx.amount for tx in self.appended_transactions)

    @property
    def final_balance(self) -> float:
        if not self.state.is_terminal:
            raise ReconciliationStateError("Reconciliation is not finished yet")
        return self.calculated_balance + sum(tx.amount for tx in self.appended_transactions)

    def _require(self, *expected: ReconciliationState):
        if self.state not in expected:
            allowed = ", ".join(s.value for s in expected)
            raise ReconciliationStateError(
                f"Action requires state {allowed}, session is {self.state.value}"
            )

    def choose(self, method: ReconciliationMethod) -> ReconciliationState:
        """
        Picks (or switches) the reconciliation method. Allowed until the session
        completes or manual entry begins. AI_FIND with no usable suggestions
        leaves the session in AWAITING_METHOD.
        """
        self._require(ReconciliationState.AWAITING_METHOD, ReconciliationState.AWAITING_SELECTION)
        method = ReconciliationMethod(method)
        if method == ReconciliationMethod.AI_FIND and self.oracle is None:
            raise ReconciliationStateError("AI_FIND requires an oracle")
        self.method = method
        self.suggestions = []
        self.preselected = []
        logger.info("Reconciliation method chosen.", method=method.value, difference=self.difference)

        if method == ReconciliationMethod.OVERRIDE:
            self.state = ReconciliationState.COMPLETED
        elif method == ReconciliationMethod.AI_FIND:
            self.suggestions = suggest_missing_transactions(
                self.reported_balance, self.calculated_balance, self.transactions, self.oracle, self.settings
            )
            if not self.suggestions:
                logger.warning("AI reconciliation found nothing, choose another method.")
                self.method = None
                self.state = ReconciliationState.AWAITING_METHOD
                return self.state
            self.preselected = [
                i for i, s in enumerate(self.suggestions) if s.confidence > AUTO_SELECT_CONFIDENCE
            ]
            self.state = ReconciliationState.AWAITING_SELECTION
        else:
            self.state = ReconciliationState.AWAITING_ENTRY

        return self.state

    def select(self, indices: Sequence[int]) -> SuggestionValidation:
        """Appends the chosen suggestions. The gap does not need to close fully."""
        self._require(ReconciliationState.AWAITING_SELECTION)
        chosen_indices = sorted(set(indices))
        for i in chosen_indices:
            if not 0 <= i < len(self.suggestions):
                raise IndexError(f"No suggestion at index {i}")

        chosen = [self.suggestions[i] for i in chosen_indices]
        self.validation = validate_suggestions(chosen, self.difference, self.settings.suggestion_validity_tolerance)
        self.appended_transactions = [s.to_parsed() for s in chosen]
        self.state = ReconciliationState.COMPLETED

        if not self.validation.is_valid:
            logger.warning(
                "Selected suggestions leave a gap.",
                remaining=self.validation.remaining_difference,
                accuracy=round(self.validation.accuracy_percentage, 2),
            )
        return self.validation

    def enter(self, transactions: Sequence[ParsedTransaction]) -> SuggestionValidation:
        self._require(ReconciliationState.AWAITING_ENTRY)
        self.appended_transactions = list(transactions)
        self.validation = validate_suggestions(
            self.appended_transactions, self.difference, self.settings.suggestion_validity_tolerance
        )
        self.state = ReconciliationState.COMPLETED
        return self.validation
