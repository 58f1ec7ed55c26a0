from fastapi import APIRouter, Depends, HTTPException

from rumbo.api.errors import to_http_exception
from rumbo.api.schemas import (
    ReconciliationCreateRequest,
    ReconciliationEntriesRequest,
    ReconciliationMethodRequest,
    ReconciliationSelectionRequest,
)
from rumbo.api.state import ReconciliationSessionStore, get_oracle, get_session_store, get_settings
from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import ReconciliationStateError
from rumbo.common.logging_config import get_logger
from rumbo.core.reconciler import ReconciliationSession

logger = get_logger(__name__)
router = APIRouter()


def _session_view(session_id: str, session: ReconciliationSession) -> dict:
    return {
        "session_id": session_id,
        "state": session.state.value,
        "method": session.method.value if session.method else None,
        "reported_balance": session.reported_balance,
        "calculated_balance": session.calculated_balance,
        "difference": session.difference,
        "remaining_difference": session.remaining_difference,
        "suggestions": [s.to_dict() for s in session.suggestions],
        "preselected": session.preselected,
        "validation": session.validation.to_dict() if session.validation else None,
        "appended_transactions": [t.to_dict() for t in session.appended_transactions],
        "final_balance": session.final_balance if session.state.is_terminal else None,
    }


def _get_or_404(store: ReconciliationSessionStore, session_id: str) -> ReconciliationSession:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Sesión de conciliación no encontrada")
    return session


@router.post("")
def create_session(req: ReconciliationCreateRequest,
                   oracle=Depends(get_oracle),
                   settings: ImportSettings = Depends(get_settings),
                   store: ReconciliationSessionStore = Depends(get_session_store)):
    session = ReconciliationSession(
        reported_balance=req.reported_balance,
        transactions=[t.to_parsed() for t in req.transactions],
        oracle=oracle,
        settings=settings,
    )
    session_id = store.create(session)
    logger.info(
        "Reconciliation session created.",
        session_id=session_id, difference=session.difference, state=session.state.value,
    )
    return _session_view(session_id, session)


@router.get("/{session_id}")
def get_session(session_id: str, store: ReconciliationSessionStore = Depends(get_session_store)):
    return _session_view(session_id, _get_or_404(store, session_id))


@router.post("/{session_id}/method")
def choose_method(session_id: str, req: ReconciliationMethodRequest,
                  store: ReconciliationSessionStore = Depends(get_session_store)):
    session = _get_or_404(store, session_id)
    try:
        session.choose(req.method)
    except ReconciliationStateError as e:
        raise to_http_exception(e)
    return _session_view(session_id, session)


@router.post("/{session_id}/selection")
def select_suggestions(session_id: str, req: ReconciliationSelectionRequest,
                       store: ReconciliationSessionStore = Depends(get_session_store)):
    session = _get_or_404(store, session_id)
    try:
        session.select(req.indices)
    except ReconciliationStateError as e:
        raise to_http_exception(e)
    except IndexError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_view(session_id, session)


@router.post("/{session_id}/entries")
def enter_transactions(session_id: str, req: ReconciliationEntriesRequest,
                       store: ReconciliationSessionStore = Depends(get_session_store)):
    session = _get_or_404(store, session_id)
    try:
        session.enter([t.to_parsed() for t in req.transactions])
    except ReconciliationStateError as e:
        raise to_http_exception(e)
    return _session_view(session_id, session)
