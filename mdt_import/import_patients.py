"""Batch upsert of candidate patients into the patient store.

**Input Contract:**
- Flat list of CandidatePatient records (usually ImportPreview.all_rows())
- Actor id of the clinician running the import, recorded in the audit trail

**Output Contract:**
- ImportResult with created/updated/failed counts and captured errors
- One IMPORT audit entry per newly created patient

**Identity:**
A candidate matches an existing patient on exact (full_name, status). Two
different people sharing a name within one status are indistinguishable and
the later row updates the earlier patient. There is no other deduplication.

**Batching and error handling:**
- Records are processed in order, in batches of ``batch_size``; each batch
  runs in one store transaction
- A failing record is counted, recorded with its position in the input list
  and skipped; the rest of the batch continues and still commits
- A batch whose transaction fails is reported once as "Batch failed: ...",
  flips ``success`` to False, and contributes no counts; later batches
  still run
- Audit entries are written after their batch commits; audit failures are
  logged by the sink and never reach the result
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence, Tuple

from .audit_log import AuditSink
from .data_models import AuditEntry, CandidatePatient, ImportResult, ImportRowError
from .enums import AuditAction, AuditEntity
from .patient_store import PatientStore

LOG = logging.getLogger(__name__)

BATCH_SIZE = 500
IMPORT_SOURCE = "spreadsheet_import"

MUTABLE_FIELDS = (
    "age",
    "diagnosis",
    "start_date",
    "medical_aid",
    "disciplines",
    "modality",
    "auth_left",
    "last_meeting_comment",
    "social_work",
    "doctor",
    "psychology",
)


@dataclass
class _BatchOutcome:
    imported: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[ImportRowError] = field(default_factory=list)
    created: List[Tuple[str, CandidatePatient]] = field(default_factory=list)


def update_fields(record: CandidatePatient) -> Dict[str, Any]:
    """Fields written when the record matches an existing patient.

    Optional fields the record leaves unset are not included, so they keep
    their stored value. ``updated_at`` is always bumped.
    """
    fields = {
        name: getattr(record, name)
        for name in MUTABLE_FIELDS
        if getattr(record, name) is not None
    }
    fields["updated_at"] = datetime.now(timezone.utc)
    return fields


def create_fields(record: CandidatePatient) -> Dict[str, Any]:
    """Fields for a new patient: every supplied field plus identity."""
    fields = {
        name: getattr(record, name)
        for name in MUTABLE_FIELDS
        if getattr(record, name) is not None
    }
    fields["full_name"] = record.full_name
    fields["status"] = record.status
    return fields


def iter_batches(records: Sequence[CandidatePatient], batch_size: int):
    """Yield (start_offset, batch) slices of at most batch_size records."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    for start in range(0, len(records), batch_size):
        yield start, records[start : start + batch_size]


def _process_batch(
    tx, start: int, batch: Sequence[CandidatePatient], outcome: _BatchOutcome
) -> None:
    for offset, record in enumerate(batch):
        try:
            existing = tx.find_one(record.full_name, record.status)
            if existing is not None:
                tx.update(existing.id, update_fields(record))
                outcome.updated += 1
            else:
                created = tx.create(create_fields(record))
                outcome.imported += 1
                outcome.created.append((created.id, record))
        except Exception as exc:
            row = start + offset
            LOG.warning("Failed to import row %d (%r): %s", row, record.full_name, exc)
            outcome.failed += 1
            outcome.errors.append(ImportRowError(row=row, error=str(exc) or "Unknown error"))


def import_patients(
    records: Sequence[CandidatePatient],
    actor_id: str,
    store: PatientStore,
    audit_sink: AuditSink,
    batch_size: int = BATCH_SIZE,
) -> ImportResult:
    """Upsert candidate patients in batches and return the outcome summary.

    Parameters
    ----------
    records : Sequence[CandidatePatient]
        Candidates in input order; error rows refer to positions in this list.
    actor_id : str
        Id of the clinician performing the import.
    store : PatientStore
        Patient store providing per-batch transactions.
    audit_sink : AuditSink
        Receives one IMPORT entry per created patient.
    batch_size : int, optional
        Maximum records per transaction (default: 500).

    Returns
    -------
    ImportResult
        Created/updated/failed counts and captured errors.
    """
    result = ImportResult()
    records = list(records)

    for start, batch in iter_batches(records, batch_size):
        outcome = _BatchOutcome()
        try:
            with store.transaction() as tx:
                _process_batch(tx, start, batch, outcome)
        except Exception as exc:
            LOG.error(
                "Batch starting at row %d (%d records) failed: %s", start, len(batch), exc
            )
            result.success = False
            result.errors.append(
                ImportRowError(row=start, error=f"Batch failed: {str(exc) or 'Unknown error'}")
            )
            continue

        result.imported += outcome.imported
        result.updated += outcome.updated
        result.failed += outcome.failed
        result.errors.extend(outcome.errors)

        for patient_id, record in outcome.created:
            audit_sink.record(
                AuditEntry(
                    actor_id=actor_id,
                    entity=AuditEntity.PATIENT,
                    entity_id=patient_id,
                    action=AuditAction.IMPORT,
                    metadata={"source": IMPORT_SOURCE, "status": record.status.value},
                )
            )

        LOG.info(
            "Batch starting at row %d: %d created, %d updated, %d failed",
            start,
            outcome.imported,
            outcome.updated,
            outcome.failed,
        )

    LOG.info(
        "Import finished: %d created, %d updated, %d failed (success=%s)",
        result.imported,
        result.updated,
        result.failed,
        result.success,
    )
    return result
