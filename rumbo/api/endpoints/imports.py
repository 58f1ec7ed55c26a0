import base64
import binascii
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import TypeAdapter, ValidationError

from rumbo.api.errors import to_http_exception
from rumbo.api.schemas import (
    AccountSuggestionRequest,
    CategorizeRequest,
    DuplicateCheckRequest,
    PdfImportRequest,
    TransactionIn,
)
from rumbo.api.state import get_oracle, get_orchestrator, get_settings
from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import OracleUnavailableError, StatementImportError
from rumbo.common.logging_config import get_logger
from rumbo.common.models import FileType
from rumbo.core.advisor import account_type_label, detect_additional_accounts
from rumbo.core.categorizer import categorize_with_settings, estimate_categorization_cost
from rumbo.core.duplicates import DuplicateDetector, calculate_duplicate_percentage
from rumbo.parsing.extractors.ocr import estimate_ocr_cost
from rumbo.parsing.pipeline import ImportOrchestrator, StatementUpload

logger = get_logger(__name__)
router = APIRouter()

_existing_adapter = TypeAdapter(List[TransactionIn])


def _parse_existing(raw: Optional[str]):
    """Existing account history arrives as a JSON array in a form field."""
    if not raw:
        return None
    try:
        return [t.to_transaction() for t in _existing_adapter.validate_json(raw)]
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"existing_transactions inválido: {e.errors()}")


def _b64decode(value: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail=f"{field_name} no es base64 válido")


@router.post("/csv")
async def import_csv(file: UploadFile = File(...),
                     existing_transactions: Optional[str] = Form(None),
                     orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    logger.info(f"CSV upload started: {file.filename}")
    content = await file.read()
    existing = _parse_existing(existing_transactions)

    upload = StatementUpload(file_name=file.filename or 'extracto.csv', content=content, file_type=FileType.CSV)
    try:
        result = orchestrator.import_statement(upload, existing)
    except StatementImportError as e:
        raise to_http_exception(e)

    return result.to_dict()


@router.post("/pdf")
def import_pdf(req: PdfImportRequest, orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    if not req.file_content and not req.pages:
        raise HTTPException(status_code=400, detail="Se requiere file_content o pages")

    content = _b64decode(req.file_content, 'file_content') if req.file_content else b''
    pages = [_b64decode(p, 'pages') for p in req.pages] if req.pages else None
    existing = [t.to_transaction() for t in req.existing_transactions] if req.existing_transactions is not None else None

    upload = StatementUpload(
        file_name=req.file_name, content=content, file_type=FileType.PDF, password=req.password, pages=pages
    )
    try:
        result = orchestrator.import_statement(upload, existing)
    except StatementImportError as e:
        raise to_http_exception(e)

    size = len(content) if content else sum(len(p) for p in pages)
    return {**result.to_dict(), 'estimated_cost': estimate_ocr_cost(size)}


@router.post("/duplicates")
def check_duplicates(req: DuplicateCheckRequest, settings: ImportSettings = Depends(get_settings)):
    detector = DuplicateDetector.from_settings(settings)
    result = detector.find_duplicates(
        [t.to_transaction() for t in req.new_transactions],
        [t.to_transaction() for t in req.existing_transactions],
    )
    return {
        "duplicates": [t.to_dict() for t in result.duplicates],
        "unique": [t.to_dict() for t in result.unique],
        "duplicate_percentage": calculate_duplicate_percentage(result),
    }


@router.post("/account-suggestions")
def account_suggestions(req: AccountSuggestionRequest):
    suggestions = detect_additional_accounts([t.to_transaction() for t in req.transactions])
    return {
        "suggestions": [
            {**s.to_dict(), "label": account_type_label(s.type)} for s in suggestions
        ]
    }


@router.post("/categorize")
def categorize(req: CategorizeRequest, oracle=Depends(get_oracle), settings: ImportSettings = Depends(get_settings)):
    transactions = [t.to_parsed() for t in req.transactions]
    categories = [c.to_category() for c in req.categories]

    try:
        if oracle is None:
            raise OracleUnavailableError("Categorización automática no disponible: API key de Gemini no configurada")
        categorized = categorize_with_settings(transactions, categories, oracle, settings)
    except StatementImportError as e:
        raise to_http_exception(e)

    return {
        "transactions": [c.to_dict() for c in categorized],
        "categorized_count": sum(1 for c in categorized if c.category_key is not None),
        "estimated_cost": estimate_categorization_cost(len(transactions)),
    }
