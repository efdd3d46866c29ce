"""Unit tests for import_patients module - batched upsert coordination.

Tests cover:
- Create vs update decisions on (full_name, status)
- Batch boundaries and per-batch transactions
- Per-record failures (counted, skipped, batch still commits)
- Whole-batch failures (reported once, later batches continue)
- Audit entries for created patients only

Real-world significance:
- A 1,200 row workbook must not be lost because one row is bad
- Re-importing the same workbook weekly must update, not duplicate
- Every patient created by an import must be traceable to a clinician
"""

from __future__ import annotations

import pytest

from mdt_import import import_patients
from mdt_import.enums import AuditAction, AuditEntity, PatientStatus
from tests.fixtures import sample_input
from tests.fixtures.fake_store import FakePatientStore, RecordingAuditSink


def _run(records, store=None, sink=None, **kwargs):
    store = store if store is not None else FakePatientStore()
    sink = sink if sink is not None else RecordingAuditSink()
    result = import_patients.import_patients(records, "clinician-001", store, sink, **kwargs)
    return result, store, sink


@pytest.mark.unit
class TestImportPatients:
    """Unit tests for import_patients()."""

    def test_creates_new_patients(self) -> None:
        records = sample_input.create_test_candidates(3)

        result, store, _ = _run(records)

        assert result.success is True
        assert (result.imported, result.updated, result.failed) == (3, 0, 0)
        assert result.errors == []
        assert store.names() == ["Patient 00000", "Patient 00001", "Patient 00002"]

    def test_empty_input(self) -> None:
        result, store, sink = _run([])

        assert result.to_dict() == {
            "success": True,
            "imported": 0,
            "updated": 0,
            "failed": 0,
            "errors": [],
        }
        assert store.batch_sizes == []
        assert sink.entries == []

    def test_existing_patient_is_updated(self) -> None:
        store = FakePatientStore()
        _run([sample_input.create_test_candidate("John Doe", age=44)], store=store)

        result, store, sink = _run(
            [sample_input.create_test_candidate("John Doe", age=45, diagnosis="Stroke")],
            store=store,
        )

        assert (result.imported, result.updated) == (0, 1)
        (fields,) = store.patients.values()
        assert fields["age"] == 45
        assert fields["diagnosis"] == "Stroke"
        assert sink.entries == []

    def test_second_run_is_idempotent(self) -> None:
        """Verify re-importing the same rows updates instead of duplicating."""
        records = sample_input.create_test_candidates(5)
        store = FakePatientStore()

        first, store, _ = _run(records, store=store)
        second, store, _ = _run(records, store=store)

        assert (first.imported, first.updated) == (5, 0)
        assert (second.imported, second.updated) == (0, 5)
        assert len(store.patients) == 5

    def test_same_name_different_status_is_a_new_patient(self) -> None:
        records = [
            sample_input.create_test_candidate("Jane Smith", PatientStatus.ACTIVE),
            sample_input.create_test_candidate("Jane Smith", PatientStatus.DISCHARGED),
        ]

        result, store, _ = _run(records)

        assert result.imported == 2
        assert len(store.patients) == 2

    def test_duplicate_rows_in_one_import_update_the_first(self) -> None:
        """Verify a repeated row within one workbook updates the created patient.

        Real-world significance:
        - Two people with the same name on one sheet collapse into one patient;
          the later row's values win
        """
        records = [
            sample_input.create_test_candidate("John Doe", age=40),
            sample_input.create_test_candidate("John Doe", age=41),
        ]

        result, store, sink = _run(records)

        assert (result.imported, result.updated) == (1, 1)
        (fields,) = store.patients.values()
        assert fields["age"] == 41
        assert len(sink.entries) == 1

    def test_unset_fields_keep_stored_values(self) -> None:
        store = FakePatientStore()
        _run(
            [sample_input.create_test_candidate("John Doe", age=44, doctor="Dr Naidoo")],
            store=store,
        )

        _run([sample_input.create_test_candidate("John Doe", diagnosis="TBI")], store=store)

        (fields,) = store.patients.values()
        assert fields["age"] == 44
        assert fields["doctor"] == "Dr Naidoo"
        assert fields["diagnosis"] == "TBI"
        assert fields["disciplines"] == "[]"

    def test_record_failure_is_counted_and_skipped(self) -> None:
        """Verify one failing record does not abort its batch.

        Real-world significance:
        - The error row is the record's position in the submitted list
        """
        records = sample_input.create_test_candidates(3)
        store = FakePatientStore(fail_names={"Patient 00001"})

        result, store, sink = _run(records, store=store)

        assert result.success is True
        assert (result.imported, result.updated, result.failed) == (2, 0, 1)
        assert len(result.errors) == 1
        assert result.errors[0].row == 1
        assert "Patient 00001" in result.errors[0].error
        assert store.names() == ["Patient 00000", "Patient 00002"]
        assert len(sink.entries) == 2

    def test_record_failure_row_counts_across_batches(self) -> None:
        records = sample_input.create_test_candidates(7)
        store = FakePatientStore(fail_names={"Patient 00005"})

        result, _, _ = _run(records, store=store, batch_size=3)

        assert [error.row for error in result.errors] == [5]
        assert result.imported == 6

    def test_records_are_processed_in_batches(self) -> None:
        """Verify 1,200 records run as three transactions of 500, 500 and 200."""
        records = sample_input.create_test_candidates(1200)

        result, store, _ = _run(records)

        assert store.batch_sizes == [500, 500, 200]
        assert result.imported == 1200

    def test_default_batch_size(self) -> None:
        assert import_patients.BATCH_SIZE == 500

    def test_failed_batch_is_reported_and_later_batches_continue(self) -> None:
        """Verify a failed transaction loses only its own batch.

        Real-world significance:
        - A lock timeout mid-import must not silently drop the rest of the
          workbook; the clinician sees which block to re-run
        """
        records = sample_input.create_test_candidates(1200)
        store = FakePatientStore(fail_transactions={2})

        result, store, sink = _run(records, store=store)

        assert result.success is False
        assert result.imported == 700
        assert result.failed == 0
        assert len(result.errors) == 1
        assert result.errors[0].row == 500
        assert result.errors[0].error == "Batch failed: database is locked"
        assert len(store.patients) == 700
        assert "Patient 00500" not in store.names()
        assert len(sink.entries) == 700

    def test_failed_batch_discards_its_record_errors(self) -> None:
        records = sample_input.create_test_candidates(4)
        store = FakePatientStore(fail_transactions={1}, fail_names={"Patient 00000"})

        result, _, _ = _run(records, store=store, batch_size=2)

        assert [(e.row, e.error) for e in result.errors] == [
            (0, "Batch failed: database is locked")
        ]
        assert (result.imported, result.failed) == (2, 0)

    def test_audit_entries_for_created_patients(self) -> None:
        records = [
            sample_input.create_test_candidate("John Doe", PatientStatus.ACTIVE),
            sample_input.create_test_candidate("Thabo Khumalo", PatientStatus.HEADWAY),
        ]

        _, store, sink = _run(records)

        assert [entry.entity_id for entry in sink.entries] == list(store.patients)
        first = sink.entries[0]
        assert first.actor_id == "clinician-001"
        assert first.entity is AuditEntity.PATIENT
        assert first.action is AuditAction.IMPORT
        assert first.metadata == {"source": "spreadsheet_import", "status": "ACTIVE"}
        assert sink.entries[1].metadata["status"] == "HEADWAY"


@pytest.mark.unit
class TestFieldHelpers:
    """Unit tests for update_fields(), create_fields() and iter_batches()."""

    def test_update_fields_skips_unset_values(self) -> None:
        record = sample_input.create_test_candidate("John Doe", age=45, diagnosis="")

        fields = import_patients.update_fields(record)

        assert fields["age"] == 45
        assert fields["diagnosis"] == ""
        assert fields["disciplines"] == "[]"
        assert "doctor" not in fields
        assert "full_name" not in fields
        assert "updated_at" in fields

    def test_create_fields_include_identity(self) -> None:
        record = sample_input.create_test_candidate("John Doe", PatientStatus.WAITING_AUTH)

        fields = import_patients.create_fields(record)

        assert fields["full_name"] == "John Doe"
        assert fields["status"] is PatientStatus.WAITING_AUTH
        assert "age" not in fields

    def test_iter_batches(self) -> None:
        batches = list(import_patients.iter_batches(list(range(5)), 2))

        assert batches == [(0, [0, 1]), (2, [2, 3]), (4, [4])]

    @pytest.mark.parametrize("batch_size", [0, -1])
    def test_iter_batches_rejects_non_positive_size(self, batch_size) -> None:
        with pytest.raises(ValueError, match="batch_size must be positive"):
            list(import_patients.iter_batches([1, 2], batch_size))
