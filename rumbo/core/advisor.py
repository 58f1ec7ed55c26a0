"""
Account Type Advisor

Analyzes transaction descriptions to suggest additional accounts the user
should track (credit card, cash, investments, savings). Patterns are Spanish /
Colombian banking terminology and live in a static table so that the evidence
tiering below stays generic over the categories.
"""
import re
from typing import Dict, List, Sequence

from rumbo.common.logging_config import get_logger
from rumbo.common.models import AccountSuggestion, SuggestedAccountType, Transaction, as_date

logger = get_logger(__name__)

PATTERNS: Dict[SuggestedAccountType, List[re.Pattern]] = {
    SuggestedAccountType.CREDIT_CARD: [
        re.compile(r"pago\s*(automatico|automático)?\s*t\.?c\.?", re.IGNORECASE),
        re.compile(r"pago\s*tarjeta\s*(de\s*)?cr[ée]dito", re.IGNORECASE),
        re.compile(r"pago\s*visa", re.IGNORECASE),
        re.compile(r"pago\s*mastercard", re.IGNORECASE),
        re.compile(r"pago\s*amex", re.IGNORECASE),
        re.compile(r"cuota\s*t\.?c\.?", re.IGNORECASE),
        re.compile(r"avance\s*tarjeta", re.IGNORECASE),
    ],
    SuggestedAccountType.CASH: [
        re.compile(r"retiro\s*cajero", re.IGNORECASE),
        re.compile(r"retiro\s*atm", re.IGNORECASE),
        re.compile(r"retiro\s*efectivo", re.IGNORECASE),
        re.compile(r"cajero\s*autom[áa]tico", re.IGNORECASE),
        re.compile(r"retiro\s*por\s*cajero", re.IGNORECASE),
    ],
    SuggestedAccountType.INVESTMENT: [
        re.compile(r"inversi[óo]n", re.IGNORECASE),
        re.compile(r"compra\s*acciones", re.IGNORECASE),
        re.compile(r"fondos?\s*de\s*inversi[óo]n", re.IGNORECASE),
        re.compile(r"transferencia\s*a\s*cdt", re.IGNORECASE),
        re.compile(r"apertura\s*cdt", re.IGNORECASE),
    ],
    SuggestedAccountType.SAVINGS_ACCOUNT: [
        re.compile(r"ahorro\s*programado", re.IGNORECASE),
        re.compile(r"transferencia\s*a\s*ahorros", re.IGNORECASE),
        re.compile(r"bolsillo", re.IGNORECASE),  # Nequi / Daviplata pockets
    ],
}

REASONS = {
    SuggestedAccountType.CREDIT_CARD: (
        'Detectamos pagos de tarjeta de crédito. Estas transacciones son movimientos (no gastos reales). '
        'Considera agregar tu tarjeta de crédito como cuenta para ver tu cupo disponible.'
    ),
    SuggestedAccountType.CASH: (
        'Detectamos retiros de cajero. Estos son movimientos de tu cuenta a efectivo (no gastos). '
        'Agrega una cuenta de efectivo para rastrear cómo usas el dinero en cash.'
    ),
    SuggestedAccountType.INVESTMENT: (
        'Detectamos inversiones. Agrega una cuenta de inversiones para ver el rendimiento de tu portafolio.'
    ),
    SuggestedAccountType.SAVINGS_ACCOUNT: (
        'Detectamos ahorros automáticos. Configura una cuenta de ahorros para ver tu progreso hacia tus metas.'
    ),
}

LABELS = {
    SuggestedAccountType.CREDIT_CARD: 'Tarjeta de Crédito',
    SuggestedAccountType.CASH: 'Efectivo',
    SuggestedAccountType.INVESTMENT: 'Inversiones',
    SuggestedAccountType.SAVINGS_ACCOUNT: 'Cuenta de Ahorros',
}

HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7
LOW_CONFIDENCE = 0.5


def account_type_label(account_type: SuggestedAccountType) -> str:
    return LABELS[account_type]


def confidence_for(matches: int, total: int) -> float:
    """
    High: 5+ matches or >10% of the transactions.
    Medium: 3+ matches or >5%.
    Low: anything else.
    """
    ratio = matches / total if total else 0.0
    if matches >= 5 or ratio > 0.10:
        return HIGH_CONFIDENCE
    if matches >= 3 or ratio > 0.05:
        return MEDIUM_CONFIDENCE
    return LOW_CONFIDENCE


def detect_additional_accounts(transactions: Sequence) -> List[AccountSuggestion]:
    """
    Returns one suggestion per account type with at least one matching
    description, sorted by confidence (highest first).
    """
    evidence: Dict[SuggestedAccountType, list] = {}

    for tx in transactions:
        for account_type, patterns in PATTERNS.items():
            if any(p.search(tx.description) for p in patterns):
                evidence.setdefault(account_type, []).append(
                    Transaction(date=as_date(tx.date), amount=tx.amount, description=tx.description)
                )

    suggestions = [
        AccountSuggestion(
            type=account_type,
            reason=REASONS[account_type],
            transactions=matched,
            confidence=confidence_for(len(matched), len(transactions)),
        )
        for account_type, matched in evidence.items()
    ]
    suggestions.sort(key=lambda s: s.confidence, reverse=True)

    if suggestions:
        logger.debug(
            "Additional accounts suggested.",
            suggestions={s.type.value: len(s.transactions) for s in suggestions},
        )
    return suggestions
