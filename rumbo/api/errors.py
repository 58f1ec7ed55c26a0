"""
Maps pipeline exceptions to HTTP errors.
"""
from fastapi import HTTPException

from rumbo.common.exceptions import (
    CategorizationError,
    OracleError,
    PDFPasswordError,
    ReconciliationStateError,
    StatementImportError,
)

# Most specific first
STATUS_BY_ERROR = (
    (PDFPasswordError, 401),
    (OracleError, 502),
    (CategorizationError, 502),
    (StatementImportError, 400),
    (ReconciliationStateError, 409),
)


def to_http_exception(error: Exception) -> HTTPException:
    for error_cls, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            detail = getattr(error, 'reason', None) or str(error)
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=500, detail=f"Error interno: {error}")
