"""Unit tests for audit_log module - audit trail persistence."""

from __future__ import annotations

import logging

import pytest

from mdt_import.audit_log import SqlAlchemyAuditLog
from mdt_import.data_models import AuditEntry
from mdt_import.enums import AuditAction, AuditEntity


def _entry(entity_id="p1", actor_id="clinician-001", metadata=None):
    return AuditEntry(
        actor_id=actor_id,
        entity=AuditEntity.PATIENT,
        entity_id=entity_id,
        action=AuditAction.IMPORT,
        metadata=metadata,
    )


class _BrokenSessionFactory:
    def begin(self):
        raise RuntimeError("audit table unavailable")


@pytest.mark.unit
class TestSqlAlchemyAuditLog:
    """Unit tests for SqlAlchemyAuditLog."""

    def test_record_and_query(self, audit_log) -> None:
        audit_log.record(
            _entry(metadata={"source": "spreadsheet_import", "status": "ACTIVE"})
        )

        (log,) = audit_log.get_audit_logs(AuditEntity.PATIENT, "p1")
        assert log.actor_id == "clinician-001"
        assert log.entity == "Patient"
        assert log.action == "IMPORT"
        assert log.details == {"source": "spreadsheet_import", "status": "ACTIVE"}
        assert log.created_at is not None

    def test_empty_metadata_is_stored_as_null(self, audit_log) -> None:
        audit_log.record(_entry())

        (log,) = audit_log.get_audit_logs(AuditEntity.PATIENT, "p1")
        assert log.details is None

    def test_query_is_scoped_to_entity(self, audit_log) -> None:
        audit_log.record(_entry("p1"))
        audit_log.record(_entry("p2"))

        assert len(audit_log.get_audit_logs(AuditEntity.PATIENT, "p2")) == 1
        assert audit_log.get_audit_logs(AuditEntity.USER, "p1") == []

    def test_recent_logs_filter_and_limit(self, audit_log) -> None:
        for i in range(3):
            audit_log.record(_entry(f"p{i}", actor_id="clinician-001"))
        audit_log.record(_entry("p9", actor_id="clinician-002"))

        assert len(audit_log.get_recent_audit_logs()) == 4
        assert len(audit_log.get_recent_audit_logs(limit=2)) == 2
        mine = audit_log.get_recent_audit_logs(actor_id="clinician-002")
        assert [log.entity_id for log in mine] == ["p9"]
        assert len(audit_log.get_recent_audit_logs(entity=AuditEntity.PATIENT)) == 4

    def test_failures_are_logged_not_raised(self, caplog) -> None:
        """Verify a broken audit store never fails the caller.

        Real-world significance:
        - Patients already committed must not be reported as failed because
          the audit write did not land
        """
        sink = SqlAlchemyAuditLog(_BrokenSessionFactory())

        with caplog.at_level(logging.ERROR, logger="mdt_import.audit_log"):
            sink.record(_entry("p1"))

        assert "Failed to create audit log for Patient p1" in caplog.text
