"""Audit trail for patient mutations.

Audit writes never break the operation that triggered them: a failing write
is logged with its traceback and swallowed.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .data_models import AuditEntry
from .db import AuditLog
from .enums import AuditEntity

LOG = logging.getLogger(__name__)


class AuditSink(Protocol):
    def record(self, entry: AuditEntry) -> None: ...


class SqlAlchemyAuditLog:
    """AuditSink writing to the ``audit_logs`` table, one session per entry."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def record(self, entry: AuditEntry) -> None:
        """Persist one audit entry. Never raises."""
        try:
            metadata = (
                json.loads(json.dumps(entry.metadata, default=str))
                if entry.metadata
                else None
            )
            with self._session_factory.begin() as session:
                session.add(
                    AuditLog(
                        actor_id=entry.actor_id,
                        entity=entry.entity.value,
                        entity_id=entry.entity_id,
                        action=entry.action.value,
                        details=metadata,
                    )
                )
        except Exception:
            LOG.exception(
                "Failed to create audit log for %s %s",
                entry.entity.value,
                entry.entity_id,
            )

    def get_audit_logs(self, entity: AuditEntity, entity_id: str) -> List[AuditLog]:
        """Audit entries for one entity, newest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity == entity.value, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc())
        )
        with self._session_factory() as session:
            return list(session.execute(stmt).scalars())

    def get_recent_audit_logs(
        self,
        limit: int = 50,
        entity: Optional[AuditEntity] = None,
        actor_id: Optional[str] = None,
    ) -> List[AuditLog]:
        """Most recent audit entries, optionally filtered by entity and actor."""
        stmt = select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)
        if entity is not None:
            stmt = stmt.where(AuditLog.entity == entity.value)
        if actor_id is not None:
            stmt = stmt.where(AuditLog.actor_id == actor_id)
        with self._session_factory() as session:
            return list(session.execute(stmt).scalars())
