"""
Vision-based PDF Extractor

Extracts statement data from PDFs (scanned or digital) by sending every page
image to the oracle in a single multimodal request. The oracle merges the pages
and answers with one JSON object describing the account and its transactions.
"""
import io
import math
from datetime import date
from typing import List, Optional, Sequence

from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError

from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import (
    EmptyStatementError,
    OracleError,
    OracleMalformedError,
    OracleUnavailableError,
    PDFPasswordError,
    StatementImportError,
)
from rumbo.common.logging_config import get_logger
from rumbo.common.models import (
    AccountType,
    DetectedAccount,
    ParsedTransaction,
    ParseResult,
    suggested_account_name,
)
from rumbo.common.oracle import Oracle, OracleRequest, parse_json_block

logger = get_logger(__name__)

PDF_OCR_PROMPT = """
Analiza este estado de cuenta bancario colombiano (puede tener múltiples páginas) y extrae la siguiente información:

1. **Banco**: Nombre del banco (Bancolombia, Nequi, Davivienda, etc.)
2. **Tipo de cuenta**: SAVINGS (ahorros), CHECKING (corriente), o CREDIT_CARD (tarjeta de crédito)
3. **Balance inicial**: Saldo al inicio del período (si está disponible)
4. **Balance final**: Saldo al final del período
5. **Transacciones**: Lista de TODAS las transacciones visibles en TODAS las páginas con:
   - Fecha (formato ISO 8601: YYYY-MM-DD)
   - Descripción (texto completo)
   - Monto (negativo para gastos/débitos, positivo para ingresos/créditos)

IMPORTANTE:
- Si hay MÚLTIPLES PÁGINAS, analiza TODAS las páginas y extrae TODAS las transacciones de cada página
- Combina todas las transacciones de todas las páginas en una sola lista
- Los montos deben ser números (sin símbolos de moneda ni comas)
- Las fechas deben estar en formato YYYY-MM-DD
- Si ves "Retiros" o "Débitos", usa montos negativos
- Si ves "Consignaciones" o "Créditos", usa montos positivos
- NO omitas transacciones por falta de espacio - incluye TODAS las que veas

Devuelve SOLO un JSON válido con esta estructura:
{
  "bankName": string,
  "accountType": "SAVINGS" | "CHECKING" | "CREDIT_CARD",
  "initialBalance": number | null,
  "finalBalance": number,
  "transactions": [
    {
      "date": "YYYY-MM-DD",
      "description": string,
      "amount": number
    }
  ]
}

NO incluyas texto adicional fuera del JSON. NO uses markdown. SOLO el JSON.
"""

REQUIRED_FIELDS = ('bankName', 'accountType', 'finalBalance', 'transactions')

OCR_TEMPERATURE = 0.1
OCR_MAX_OUTPUT_TOKENS = 16384

# Vision pricing approximation: one page image per MB, USD per image
COST_PER_PAGE = 0.01
BYTES_PER_PAGE = 1024 * 1024


def estimate_ocr_cost(file_size: int) -> float:
    return math.ceil(file_size / BYTES_PER_PAGE) * COST_PER_PAGE


def _is_number(value) -> bool:
    """Finite int or float; json.loads lets NaN and Infinity through."""
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class StatementOCRAdapter:
    """
    Turns page images (or a whole PDF) into a ParseResult via the oracle.
    """

    def __init__(self, oracle: Oracle, settings: ImportSettings = ImportSettings()):
        self.oracle = oracle
        self.settings = settings

    def parse_pdf(self, pdf_bytes: bytes, password: Optional[str] = None) -> ParseResult:
        return self.parse_images(self.rasterize(pdf_bytes, password))

    def rasterize(self, pdf_bytes: bytes, password: Optional[str] = None) -> List[bytes]:
        """Renders every PDF page to PNG bytes, in page order."""
        try:
            pages = convert_from_bytes(pdf_bytes, dpi=self.settings.ocr_dpi, userpw=password, fmt='png')
        except PDFInfoNotInstalledError as e:
            logger.error(f"Poppler is not installed: {e}")
            raise StatementImportError("No se pudo procesar el PDF: poppler no está instalado") from e
        except (PDFPageCountError, PDFSyntaxError) as e:
            if 'password' in str(e).lower():
                logger.warning("PDF is password protected.", has_password=password is not None)
                raise PDFPasswordError(
                    "El PDF está protegido con contraseña. Verifica la contraseña e intenta de nuevo."
                ) from e
            raise StatementImportError(
                "No se pudo procesar el PDF. Verifica que sea un estado de cuenta bancario válido y legible."
            ) from e

        images = []
        for page in pages:
            buffer = io.BytesIO()
            page.save(buffer, format='PNG')
            images.append(buffer.getvalue())

        logger.debug("PDF rasterized.", pages=len(images), dpi=self.settings.ocr_dpi)
        return images

    def parse_images(self, images: Sequence[bytes]) -> ParseResult:
        if not images:
            raise EmptyStatementError("El PDF no contiene páginas")

        logger.info("Starting vision OCR.", pages=len(images))
        request = OracleRequest(
            prompt=PDF_OCR_PROMPT,
            images=list(images),
            temperature=OCR_TEMPERATURE,
            max_output_tokens=OCR_MAX_OUTPUT_TOKENS,
        )
        try:
            content = self.oracle(request)
        except OracleError:
            raise
        except Exception as e:
            logger.error(f"Vision OCR request failed: {e}", exc_info=True)
            raise OracleUnavailableError(f"No se pudo contactar el servicio de OCR: {e}") from e

        data = parse_json_block(content, '{')
        if not isinstance(data, dict):
            raise OracleMalformedError("La respuesta del OCR no es un objeto JSON")
        return self._to_result(data)

    def _to_result(self, data: dict) -> ParseResult:
        missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, '')]
        if missing:
            raise OracleMalformedError(f"Respuesta incompleta del OCR: faltan {', '.join(missing)}")

        try:
            account_type = AccountType(data['accountType'])
        except ValueError:
            raise OracleMalformedError(f"Tipo de cuenta desconocido: {data['accountType']}")

        if not _is_number(data['finalBalance']) or not isinstance(data['transactions'], list):
            raise OracleMalformedError("Respuesta del OCR con tipos inválidos")

        bank_name = str(data['bankName']).strip()
        transactions = []
        for entry in data['transactions']:
            tx = self._to_transaction(entry)
            if tx is not None:
                transactions.append(tx)

        skipped = len(data['transactions']) - len(transactions)
        if skipped:
            logger.debug("Skipped invalid OCR transactions.", skipped=skipped)

        if not transactions:
            raise EmptyStatementError("El OCR no encontró transacciones válidas", bank_name=bank_name)

        account = DetectedAccount(
            bank_name=bank_name,
            account_type=account_type,
            suggested_name=suggested_account_name(account_type, bank_name),
            reported_balance=float(data['finalBalance']),
        )
        logger.info("Vision OCR parsed statement.", bank=bank_name, tx_count=len(transactions))
        return ParseResult(account=account, transactions=transactions, confidence=self.settings.ocr_confidence)

    @staticmethod
    def _to_transaction(entry) -> Optional[ParsedTransaction]:
        if not isinstance(entry, dict):
            return None
        amount = entry.get('amount')
        description = entry.get('description')
        if not _is_number(amount) or amount == 0:
            return None
        if not isinstance(description, str) or not description.strip():
            return None
        try:
            tx_date = date.fromisoformat(str(entry.get('date'))[:10])
        except ValueError:
            return None
        return ParsedTransaction.from_amount(tx_date, float(amount), description)
