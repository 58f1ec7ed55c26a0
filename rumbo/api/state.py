"""
Shared API state and dependency providers.

Reconciliation sessions live in memory, one per imported statement being
reconciled, and expire after a period of inactivity.
"""
import threading
import uuid
from datetime import datetime, timedelta
from typing import Dict, Optional

from fastapi import Depends

from rumbo.common.activity_log import JsonlImportAuditLog, get_audit_log
from rumbo.common.config import ImportSettings
from rumbo.common.exceptions import OracleUnavailableError
from rumbo.common.logging_config import get_logger
from rumbo.common.oracle import GeminiOracle, Oracle
from rumbo.core.reconciler import ReconciliationSession
from rumbo.parsing.pipeline import ImportOrchestrator

logger = get_logger(__name__)


class SessionEntry:
    def __init__(self, session: ReconciliationSession):
        self.session = session
        self.last_accessed = datetime.now()

    def touch(self):
        """Update last accessed time"""
        self.last_accessed = datetime.now()


class ReconciliationSessionStore:
    """
    Holds reconciliation sessions with automatic cleanup.

    Expired sessions are swept on every create and get.
    """

    def __init__(self, session_timeout_hours: int = 4):
        self._sessions: Dict[str, SessionEntry] = {}
        self._lock = threading.Lock()
        self.session_timeout = timedelta(hours=session_timeout_hours)

    def create(self, session: ReconciliationSession) -> str:
        session_id = str(uuid.uuid4())
        with self._lock:
            self._sweep()
            self._sessions[session_id] = SessionEntry(session)
        return session_id

    def get(self, session_id: str) -> Optional[ReconciliationSession]:
        """Get existing session, return None if not found or expired"""
        with self._lock:
            self._sweep()
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            entry.touch()
            return entry.session

    def cleanup_inactive_sessions(self) -> int:
        """Remove sessions that haven't been accessed within timeout period"""
        with self._lock:
            return self._sweep()

    def _sweep(self) -> int:
        # caller holds the lock
        now = datetime.now()
        inactive = [
            sid for sid, entry in self._sessions.items()
            if now - entry.last_accessed > self.session_timeout
        ]
        for sid in inactive:
            del self._sessions[sid]
        if inactive:
            logger.info("Expired reconciliation sessions removed.", removed=len(inactive))
        return len(inactive)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)


# Global Session Store Instance
session_store = ReconciliationSessionStore()


def get_session_store() -> ReconciliationSessionStore:
    return session_store


def get_settings() -> ImportSettings:
    return ImportSettings.from_env()


def get_oracle(settings: ImportSettings = Depends(get_settings)) -> Optional[Oracle]:
    """Gemini oracle, or None when no API key is configured."""
    try:
        return GeminiOracle(settings.gemini_api_key, settings.gemini_model)
    except OracleUnavailableError as e:
        logger.warning(f"AI features disabled: {e.reason}")
        return None


def get_orchestrator(settings: ImportSettings = Depends(get_settings),
                     oracle: Optional[Oracle] = Depends(get_oracle)) -> ImportOrchestrator:
    audit_log = JsonlImportAuditLog(settings.audit_log_dir) if settings.audit_log_dir else get_audit_log()
    return ImportOrchestrator(oracle=oracle, audit_log=audit_log, settings=settings)
