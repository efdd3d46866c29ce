"""Unified data models for the MDT patient import pipeline.

This module provides the dataclasses passed between the workbook reader,
the batch upsert coordinator and the command line, ensuring a consistent
shape across steps. Attribute names are snake_case; the ``to_dict``
methods emit the camelCase payloads consumed by callers (preview screens,
import reports).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from .enums import AuditAction, AuditEntity, PatientStatus


def _iso_or_none(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class CandidatePatient:
    """A normalized, not-yet-persisted patient row parsed from the workbook.

    Candidate records are ephemeral: they are built fresh for each import
    call and only the patient entity derived from them is ever persisted.

    Fields
    ------
    full_name : str
        Patient name, trimmed. Together with ``status`` it forms the
        identity used to decide update-vs-create during import.
    status : PatientStatus
        Derived from the worksheet the row came from.
    disciplines : str
        JSON-array encoding of the specialty list, e.g. '["Physio","OT"]'.
        '[]' when the row has no disciplines.
    age : Optional[int]
        Parsed age, unset when the cell held no usable integer.
    start_date : Optional[datetime]
        Date the patient started outpatient treatment.
    diagnosis, medical_aid, modality, auth_left, last_meeting_comment,
    social_work, doctor, psychology : Optional[str]
        Free-text fields. An empty string means the cell was present but
        blank; None means the column was absent or the cell was empty.
    """

    full_name: str
    status: PatientStatus
    disciplines: str = "[]"
    age: Optional[int] = None
    diagnosis: Optional[str] = None
    start_date: Optional[datetime] = None
    medical_aid: Optional[str] = None
    modality: Optional[str] = None
    auth_left: Optional[str] = None
    last_meeting_comment: Optional[str] = None
    social_work: Optional[str] = None
    doctor: Optional[str] = None
    psychology: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the external camelCase shape, omitting unset fields."""
        payload: Dict[str, Any] = {
            "fullName": self.full_name,
            "status": self.status.value,
            "disciplines": self.disciplines,
        }
        optional = {
            "age": self.age,
            "diagnosis": self.diagnosis,
            "startDate": _iso_or_none(self.start_date),
            "medicalAid": self.medical_aid,
            "modality": self.modality,
            "authLeft": self.auth_left,
            "lastMeetingComment": self.last_meeting_comment,
            "socialWork": self.social_work,
            "doctor": self.doctor,
            "psychology": self.psychology,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload


@dataclass(frozen=True)
class SheetPreview:
    """Accepted rows of one recognized worksheet."""

    name: str
    status: PatientStatus
    rows: List[CandidatePatient]
    total_rows: int

    def to_dict(self, max_rows: Optional[int] = None) -> Dict[str, Any]:
        rows = self.rows if max_rows is None else self.rows[:max_rows]
        return {
            "name": self.name,
            "status": self.status.value,
            "rows": [row.to_dict() for row in rows],
            "totalRows": self.total_rows,
        }


@dataclass(frozen=True)
class PreviewSummary:
    """Workbook-wide counts and sheet/row level issues.

    Parameters
    ----------
    total_sheets : int
        Number of recognized sheets. Unknown sheets are not counted.
    total_rows : int
        Sum of accepted rows across recognized sheets.
    errors : List[str]
        Non-fatal issues in scan order ("Unknown sheet: ...",
        "Row N: Missing patient name").
    """

    total_sheets: int
    total_rows: int
    errors: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSheets": self.total_sheets,
            "totalRows": self.total_rows,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class ImportPreview:
    """Result of parsing a workbook: accepted rows per sheet plus a summary."""

    sheets: List[SheetPreview]
    summary: PreviewSummary

    def all_rows(self) -> List[CandidatePatient]:
        """Flatten accepted rows of every sheet, in sheet then row order."""
        return [row for sheet in self.sheets for row in sheet.rows]

    def to_dict(self, max_rows: Optional[int] = None) -> Dict[str, Any]:
        """Serialize the preview.

        Parameters
        ----------
        max_rows : int, optional
            Truncate each sheet's ``rows`` to this many entries. ``totalRows``
            still reports the full count.
        """
        return {
            "sheets": [sheet.to_dict(max_rows) for sheet in self.sheets],
            "summary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class ImportRowError:
    """A per-record or per-batch failure captured during import."""

    row: int
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "error": self.error}


@dataclass
class ImportResult:
    """Mutable aggregate of import outcomes.

    ``success`` starts True and only flips to False when a whole batch
    transaction fails. Individual record failures increment ``failed``
    and append to ``errors`` without touching ``success``.
    """

    success: bool = True
    imported: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[ImportRowError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "imported": self.imported,
            "updated": self.updated,
            "failed": self.failed,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass(frozen=True)
class AuditEntry:
    """One audit trail record."""

    actor_id: Optional[str]
    entity: AuditEntity
    entity_id: str
    action: AuditAction
    metadata: Optional[Dict[str, Any]] = None
