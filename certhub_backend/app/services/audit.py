import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.database import datastore_errors
from app.core.errors import Unavailable
from app.models.audit import AuditAction, AuditLogEntry

logger = logging.getLogger(__name__)


class AuditTrailRecorder:
    """Append-only log of security-relevant actions.

    ``append`` commits on its own, after the caller's primary write has
    already been committed, so a failed audit write can never undo the
    operation it describes. Callers catch ``Unavailable`` and carry on.
    """

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def append(
        self,
        actor_id: str,
        actor_name: str | None,
        action: AuditAction,
        details: str,
    ) -> AuditLogEntry:
        try:
            return self._write(actor_id, actor_name, action, details)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise Unavailable(f"Audit log unavailable: {exc}") from exc

    def _write(self, actor_id, actor_name, action, details) -> AuditLogEntry:
        entry = AuditLogEntry(
            user_id=actor_id,
            user_name=actor_name,
            action=action,
            details=details,
        )
        self.db.add(entry)
        self.db.commit()
        return entry

    def record(self, actor_id: str, actor_name: str | None, action: AuditAction, details: str) -> None:
        """Best-effort ``append``: failures are logged, never raised."""
        try:
            self.append(actor_id, actor_name, action, details)
        except Unavailable:
            logger.exception("Audit write failed for %s by %s", action.value, actor_id)

    def list_recent(
        self, limit: int | None = None, action: AuditAction | None = None
    ) -> list[AuditLogEntry]:
        with datastore_errors(self.db):
            return self._query(action).limit(self._window(limit)).all()

    def list_before(
        self, cursor: int, limit: int | None = None, action: AuditAction | None = None
    ) -> list[AuditLogEntry]:
        """Entries older than entry ``cursor``, newest first."""
        with datastore_errors(self.db):
            return (
                self._query(action)
                .filter(AuditLogEntry.id < cursor)
                .limit(self._window(limit))
                .all()
            )

    def _query(self, action: AuditAction | None):
        query = self.db.query(AuditLogEntry)
        if action is not None:
            query = query.filter(AuditLogEntry.action == action)
        # id breaks ties between entries written within the same clock tick
        return query.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())

    def _window(self, limit: int | None) -> int:
        window = self.settings.audit_window
        if limit is None or limit <= 0:
            return window
        return min(limit, window)
