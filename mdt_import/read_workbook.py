"""Workbook reader for the MDT patient import.

Parses an uploaded MDT tracking workbook into candidate patient records,
grouped by worksheet. Each worksheet is one clinical status cohort.

**Input Contract:**
- Raw .xlsx workbook bytes (or a path, via read_workbook)
- Worksheet names identify the status cohort (see SHEET_STATUS_MAP)
- Row 1 of every recognized sheet is a header row

**Output Contract:**
- ImportPreview with one SheetPreview per recognized sheet, in workbook order
- Rows carry normalized, typed values; raw cell values never leave this module
- ``summary.total_rows`` equals the sum of the per-sheet ``total_rows``

**Error Handling:**
- Bytes that cannot be opened as a workbook raise WorkbookError (fatal)
- Unknown sheet names are skipped and reported in ``summary.errors``
- Rows without a usable name are dropped and reported as
  "Row N: Missing patient name"; the scan continues
- Unparseable ages and dates leave the field unset without an error

**Sheet layouts:**
- "Headway patients" holds a single column of names under a header row
- Every other recognized sheet is header driven: normalized header text is
  looked up in COLUMN_MAP, and columns with unknown headers are ignored. When
  two headers map to the same field, the later column in the row wins.
"""

from __future__ import annotations

import io
import logging
import math
import re
from datetime import date, datetime, time
from numbers import Number
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from openpyxl import load_workbook

from .data_models import CandidatePatient, ImportPreview, PreviewSummary, SheetPreview
from .disciplines import disciplines_to_string, parse_disciplines
from .enums import CellKind, PatientStatus

LOG = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".xlsx", ".xlsm")

# Excel stores dates as day counts from this origin (1900 date system).
EXCEL_EPOCH = "1899-12-30"

SHEET_STATUS_MAP: Mapping[str, PatientStatus] = MappingProxyType(
    {
        "Active PTS": PatientStatus.ACTIVE,
        "DC patients": PatientStatus.DISCHARGED,
        "waiting for auth": PatientStatus.WAITING_AUTH,
        "Headway patients": PatientStatus.HEADWAY,
    }
)

# Normalized header text -> CandidatePatient attribute
COLUMN_MAP: Mapping[str, str] = MappingProxyType(
    {
        "name": "full_name",
        "age": "age",
        "dx": "diagnosis",
        "date starting opd": "start_date",
        "ma": "medical_aid",
        "disciplines": "disciplines",
        "f2f/ hbr": "modality",
        "f2f/hbr": "modality",
        "auth update 23/09": "auth_left",
        "auth left": "auth_left",
        "social work": "social_work",
        "doctor": "doctor",
        "psychology": "psychology",
        "comments from last team meeting": "last_meeting_comment",
        "voc/rtw update": "last_meeting_comment",
    }
)

_LEADING_INTEGER = re.compile(r"\s*([+-]?\d+)")


class WorkbookError(ValueError):
    """Raised when the uploaded bytes cannot be opened as a workbook."""


def normalize_header(header: Any) -> str:
    """Normalize header text prior to lookup.

    Trims, collapses whitespace runs to a single space and lowercases.
    Empty cells normalize to ''.
    """
    if header is None:
        return ""
    return re.sub(r"\s+", " ", str(header).strip()).lower()


def classify_cell(value: Any) -> CellKind:
    """Classify a raw cell value into a CellKind."""
    if value is None:
        return CellKind.EMPTY
    if isinstance(value, str):
        return CellKind.TEXT
    if isinstance(value, bool):
        return CellKind.TEXT
    if isinstance(value, (datetime, date, time)):
        return CellKind.DATE
    if pd.isna(value):
        return CellKind.EMPTY
    if isinstance(value, Number):
        return CellKind.NUMBER
    return CellKind.TEXT


def coerce_text(value: Any) -> Optional[str]:
    """Stringify and trim a cell. Empty cells give None."""
    if classify_cell(value) is CellKind.EMPTY:
        return None
    return str(value).strip()


def coerce_age(value: Any) -> Optional[int]:
    """Parse an integer age from a cell.

    Numbers are truncated toward zero; text contributes its leading integer
    ("45 years" -> 45). Anything else gives None.
    """
    kind = classify_cell(value)
    if kind is CellKind.NUMBER:
        number = float(value)
        return int(number) if math.isfinite(number) else None
    if kind is CellKind.TEXT:
        match = _LEADING_INTEGER.match(str(value))
        return int(match.group(1)) if match else None
    return None


def coerce_date(value: Any) -> Optional[datetime]:
    """Convert a cell to a datetime.

    Native date cells are used directly. Text is parsed leniently, numbers
    are read as Excel serial day counts. Returns None when parsing fails.
    """
    kind = classify_cell(value)
    if kind is CellKind.DATE:
        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, time.min)
        return None

    try:
        if kind is CellKind.TEXT:
            text = str(value).strip()
            if not text:
                return None
            parsed = pd.to_datetime(text, errors="coerce")
        elif kind is CellKind.NUMBER:
            if not math.isfinite(float(value)):
                return None
            parsed = pd.to_datetime(
                float(value), unit="D", origin=EXCEL_EPOCH, errors="coerce"
            )
        else:
            return None
    except (ValueError, OverflowError):
        return None

    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def map_row_to_patient(
    row_data: Mapping[str, Any],
    status: PatientStatus,
    column_map: Mapping[str, str] = COLUMN_MAP,
) -> CandidatePatient:
    """Map one header-keyed row onto a CandidatePatient.

    Fields are assigned in column order, so when two headers map to the
    same attribute the later column overwrites the earlier one.

    Parameters
    ----------
    row_data : Mapping[str, Any]
        Normalized header -> non-empty raw cell value, in column order.
    status : PatientStatus
        Status of the sheet the row came from.
    column_map : Mapping[str, str], optional
        Normalized header -> CandidatePatient attribute.

    Returns
    -------
    CandidatePatient
        The mapped record.

    Raises
    ------
    ValueError
        If the row has no usable patient name.
    """
    fields: Dict[str, Any] = {"full_name": ""}

    for header, value in row_data.items():
        attribute = column_map.get(header)
        if attribute is None:
            continue

        if attribute == "age":
            age = coerce_age(value)
            if age is not None:
                fields["age"] = age
        elif attribute == "start_date":
            fields["start_date"] = coerce_date(value)
        elif attribute == "disciplines":
            fields["disciplines"] = disciplines_to_string(
                parse_disciplines(coerce_text(value))
            )
        else:
            fields[attribute] = coerce_text(value) or ""

    if not fields["full_name"]:
        raise ValueError("Missing patient name")

    return CandidatePatient(status=status, **fields)


def parse_headway_sheet(rows: Iterable[Sequence[Any]]) -> List[CandidatePatient]:
    """Parse the single-column Headway name list.

    Row 1 is a header and is skipped. Blank names are skipped silently.
    """
    patients: List[CandidatePatient] = []

    for row_number, values in enumerate(rows, start=1):
        if row_number == 1 or not values:
            continue

        name = coerce_text(values[0])
        if not name:
            continue

        patients.append(CandidatePatient(full_name=name, status=PatientStatus.HEADWAY))

    return patients


def parse_regular_sheet(
    rows: Iterable[Sequence[Any]],
    status: PatientStatus,
    column_map: Mapping[str, str] = COLUMN_MAP,
) -> Tuple[List[CandidatePatient], List[str]]:
    """Parse a header-driven sheet.

    Parameters
    ----------
    rows : Iterable[Sequence[Any]]
        Raw cell values per worksheet row, starting at row 1 (the header).
    status : PatientStatus
        Status assigned to every row of the sheet.
    column_map : Mapping[str, str], optional
        Normalized header -> CandidatePatient attribute.

    Returns
    -------
    Tuple[List[CandidatePatient], List[str]]
        Accepted rows and row-level error messages.
    """
    patients: List[CandidatePatient] = []
    errors: List[str] = []
    headers: Dict[int, str] = {}

    for row_number, values in enumerate(rows, start=1):
        if row_number == 1:
            for col_index, cell in enumerate(values):
                header = normalize_header(cell)
                if header:
                    headers[col_index] = header
            continue

        row_data: Dict[str, Any] = {}
        for col_index, cell in enumerate(values):
            header = headers.get(col_index)
            if header and classify_cell(cell) is not CellKind.EMPTY:
                row_data[header] = cell

        # Blank row: nothing that could carry a name
        if not any(column_map.get(header) == "full_name" for header in row_data):
            continue

        try:
            patients.append(map_row_to_patient(row_data, status, column_map))
        except ValueError as exc:
            errors.append(f"Row {row_number}: {exc}")

    return patients, errors


def _open_workbook(data: bytes):
    try:
        return load_workbook(io.BytesIO(bytes(data)), data_only=True)
    except Exception as exc:
        LOG.error("Failed to open workbook: %s", exc)
        raise WorkbookError(f"Could not read workbook: {exc}") from exc


def parse_workbook(
    data: bytes,
    sheet_status_map: Mapping[str, PatientStatus] = SHEET_STATUS_MAP,
    column_map: Mapping[str, str] = COLUMN_MAP,
) -> ImportPreview:
    """Parse workbook bytes into candidate patient records per sheet.

    Parameters
    ----------
    data : bytes
        Raw .xlsx payload.
    sheet_status_map : Mapping[str, PatientStatus], optional
        Exact worksheet name -> status. Unlisted sheets are skipped.
    column_map : Mapping[str, str], optional
        Normalized header -> CandidatePatient attribute.

    Returns
    -------
    ImportPreview
        Accepted rows per recognized sheet and a workbook summary.

    Raises
    ------
    WorkbookError
        If the bytes cannot be decoded as a workbook.
    """
    workbook = _open_workbook(data)

    sheets: List[SheetPreview] = []
    errors: List[str] = []
    total_rows = 0

    for worksheet in workbook.worksheets:
        sheet_name = worksheet.title
        status = sheet_status_map.get(sheet_name)

        if status is None:
            LOG.warning("Skipping unknown sheet %r", sheet_name)
            errors.append(f"Unknown sheet: {sheet_name}")
            continue

        rows = worksheet.iter_rows(values_only=True)
        if status is PatientStatus.HEADWAY:
            accepted = parse_headway_sheet(rows)
        else:
            accepted, row_errors = parse_regular_sheet(rows, status, column_map)
            errors.extend(row_errors)

        LOG.info("Parsed sheet %r (%s): %d rows", sheet_name, status.value, len(accepted))
        sheets.append(
            SheetPreview(
                name=sheet_name,
                status=status,
                rows=accepted,
                total_rows=len(accepted),
            )
        )
        total_rows += len(accepted)

    return ImportPreview(
        sheets=sheets,
        summary=PreviewSummary(
            total_sheets=len(sheets),
            total_rows=total_rows,
            errors=errors,
        ),
    )


def read_workbook(
    file_path: Path,
    sheet_status_map: Mapping[str, PatientStatus] = SHEET_STATUS_MAP,
) -> ImportPreview:
    """Read and parse a workbook file from disk.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file extension is not a supported workbook type.
    WorkbookError
        If the file cannot be decoded.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Input file not found: {file_path}")

    ext = file_path.suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported file type: {ext}")

    preview = parse_workbook(file_path.read_bytes(), sheet_status_map)
    LOG.info(
        "Loaded %s rows from %s sheets in %s",
        preview.summary.total_rows,
        preview.summary.total_sheets,
        file_path,
    )
    return preview
