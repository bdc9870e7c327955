# customization/sql_session_store.py

import copy
import time
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from customization.config import logger
from customization.entities import Base, CommandResult, CustomizationSession, Document, SessionState
from customization.session_store import SessionStateStore


class SqlSessionStore(SessionStateStore):
    """
    Durable session states, one `customization_session` row per session.
    Documents and history are stored as JSON; history entries use the CommandResult wire format.
    """

    def __init__(self, session_factory: sessionmaker, ttl_seconds: Optional[int] = None):
        self.SessionFactory = session_factory
        self.ttl_seconds = ttl_seconds or None
        Base.metadata.create_all(session_factory.kw["bind"])

    def _expiry(self) -> Optional[float]:
        return time.time() + self.ttl_seconds if self.ttl_seconds else None

    def _is_expired(self, row: CustomizationSession) -> bool:
        return row.expires_at is not None and row.expires_at <= time.time()

    def _to_state(self, row: CustomizationSession) -> SessionState:
        return SessionState(
            session_id=row.session_id,
            current_document=copy.deepcopy(row.current_document),
            baseline_document=copy.deepcopy(row.baseline_document),
            history=[CommandResult.model_validate(entry) for entry in (row.history or [])],
        )

    def _load_live_row(self, session: Session, session_id: str) -> Optional[CustomizationSession]:
        row = session.get(CustomizationSession, session_id)
        if row is not None and self._is_expired(row):
            session.delete(row)
            session.flush()
            return None
        return row

    def get_or_create(self, session_id: str, initial_document: Document) -> SessionState:
        sid = str(session_id)
        session: Session = self.SessionFactory()
        try:
            row = self._load_live_row(session, sid)
            if row is None:
                row = CustomizationSession(
                    session_id=sid,
                    current_document=copy.deepcopy(initial_document),
                    baseline_document=copy.deepcopy(initial_document),
                    history=[],
                )
            row.expires_at = self._expiry()
            session.add(row)
            session.commit()
            return self._to_state(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, session_id: str) -> Optional[SessionState]:
        session: Session = self.SessionFactory()
        try:
            row = self._load_live_row(session, str(session_id))
            if row is None:
                session.commit()
                return None
            row.expires_at = self._expiry()
            session.commit()
            return self._to_state(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def save(self, state: SessionState) -> None:
        session: Session = self.SessionFactory()
        try:
            row = session.get(CustomizationSession, state.session_id)
            if row is None:
                row = CustomizationSession(session_id=state.session_id)
                session.add(row)
            row.current_document = copy.deepcopy(state.current_document)
            row.baseline_document = copy.deepcopy(state.baseline_document)
            row.history = [entry.to_wire() for entry in state.history]
            row.expires_at = self._expiry()
            session.commit()
        except Exception:
            session.rollback()
            logger.info(f"[SQL-STORE] failed to save session {state.session_id}")
            raise
        finally:
            session.close()

    def sweep_expired(self) -> int:
        session: Session = self.SessionFactory()
        try:
            removed = (
                session.query(CustomizationSession)
                .filter(CustomizationSession.expires_at.isnot(None))
                .filter(CustomizationSession.expires_at <= time.time())
                .delete(synchronize_session=False)
            )
            session.commit()
            return int(removed or 0)
        finally:
            session.close()
