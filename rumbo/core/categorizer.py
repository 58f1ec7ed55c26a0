"""
AI Categorization

Assigns a category to each imported transaction by asking the oracle, in
batches of at most 50 transactions per request to respect token limits.
Unlike reconciliation, a failed request is fatal for the whole call and is
raised as CategorizationError; invalid individual results are dropped.
"""
from typing import List, Sequence

from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import CategorizationError, OracleError
from rumbo.common.logging_config import get_logger
from rumbo.common.models import CategorizationResult, CategorizedTransaction, Category, ParsedTransaction
from rumbo.common.oracle import Oracle, OracleRequest, parse_json_block

logger = get_logger(__name__)

SYSTEM_PROMPT = 'Eres un asistente financiero que categoriza transacciones bancarias con precisión.'

CATEGORIZATION_PROMPT = """
Eres un asistente financiero experto en categorizar transacciones bancarias colombianas.

Tu tarea es asignar una categoría a cada transacción basándote en su descripción y tipo.

**Categorías disponibles:**
{categories_list}

**Transacciones a categorizar:**
{transactions_list}

IMPORTANTE:
- Analiza el contexto y palabras clave de cada descripción
- Asigna la categoría más apropiada según el tipo de transacción (EXPENSE o INCOME)
- Solo usa categorías que coincidan con el tipo de transacción
- Si no estás seguro, usa "OTHER" con baja confianza
- Devuelve un score de confianza entre 0 y 1

Devuelve SOLO un JSON válido con esta estructura (sin markdown ni texto adicional):
[
  {{
    "index": 0,
    "categoryKey": "FOOD",
    "confidence": 0.95
  }}
]

NO incluyas texto adicional fuera del array JSON.
"""

# USD per 1000 tokens used for estimates
INPUT_COST_PER_1K = 0.01
OUTPUT_COST_PER_1K = 0.03


def build_categorization_prompt(batch: Sequence[ParsedTransaction], categories: Sequence[Category]) -> str:
    categories_list = "\n".join(f"- {c.key}: {c.name} ({c.type.value})" for c in categories)
    transactions_list = "\n".join(
        f'{i}. "{tx.description}" ({tx.type.value}, {"Ingreso" if tx.amount >= 0 else "Gasto"})'
        for i, tx in enumerate(batch)
    )
    return CATEGORIZATION_PROMPT.format(categories_list=categories_list, transactions_list=transactions_list)


def _valid_results(raw_results, batch_len: int, offset: int, category_keys: set) -> List[CategorizationResult]:
    results = []
    for raw in raw_results:
        if not isinstance(raw, dict):
            continue
        index = raw.get('index')
        key = raw.get('categoryKey')
        confidence = raw.get('confidence')
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < batch_len:
            continue
        if key not in category_keys:
            continue
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
            continue
        results.append(CategorizationResult(index=index + offset, category_key=key, confidence=float(confidence)))
    return results


def categorize_transactions(transactions: Sequence[ParsedTransaction], categories: Sequence[Category],
                            oracle: Oracle, batch_size: int = 50) -> List[CategorizationResult]:
    """
    Returns results whose `index` refers to the position in `transactions`.
    """
    category_keys = {c.key for c in categories}
    all_results: List[CategorizationResult] = []

    for offset in range(0, len(transactions), batch_size):
        batch = transactions[offset:offset + batch_size]
        prompt = build_categorization_prompt(batch, categories)

        try:
            content = oracle(OracleRequest(
                prompt=prompt, system=SYSTEM_PROMPT, temperature=0.3, max_output_tokens=2000
            ))
            raw_results = parse_json_block(content, '[')
        except Exception as e:
            logger.error(
                f"AI categorization failed: {e}",
                exc_info=not isinstance(e, OracleError), batch_offset=offset, batch_size=len(batch),
            )
            raise CategorizationError(
                "No se pudo categorizar las transacciones automáticamente."
            ) from e

        if not isinstance(raw_results, list):
            raise CategorizationError("La respuesta de categorización no es una lista")

        batch_results = _valid_results(raw_results, len(batch), offset, category_keys)
        logger.debug("Categorization batch done.", offset=offset, received=len(raw_results), valid=len(batch_results))
        all_results.extend(batch_results)

    logger.info("AI categorization completed.", transactions=len(transactions), categorized=len(all_results))
    return all_results


def apply_categorization(transactions: Sequence[ParsedTransaction], results: Sequence[CategorizationResult],
                         categories: Sequence[Category],
                         confidence_threshold: float = 0.5) -> List[CategorizedTransaction]:
    by_index = {}
    for r in results:
        by_index.setdefault(r.index, r)
    known = {c.key for c in categories}

    categorized = []
    for i, tx in enumerate(transactions):
        result = by_index.get(i)
        if result is None or result.confidence < confidence_threshold or result.category_key not in known:
            categorized.append(CategorizedTransaction(transaction=tx))
        else:
            categorized.append(CategorizedTransaction(tx, result.category_key, result.confidence))
    return categorized


def estimate_categorization_cost(transaction_count: int) -> float:
    """Rough USD estimate: ~100 input tokens and ~20 output tokens per transaction."""
    input_tokens = transaction_count * 100 + 500
    output_tokens = transaction_count * 20
    return input_tokens / 1000 * INPUT_COST_PER_1K + output_tokens / 1000 * OUTPUT_COST_PER_1K


def categorize_with_settings(transactions, categories, oracle, settings: ImportSettings = ImportSettings()):
    results = categorize_transactions(transactions, categories, oracle, settings.categorization_batch_size)
    return apply_categorization(transactions, results, categories, settings.categorization_confidence_threshold)
