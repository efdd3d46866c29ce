"""Enumerations for the MDT patient import pipeline."""

from enum import Enum


class PatientStatus(Enum):
    """Clinical status cohort of a patient.

    Each status corresponds to one worksheet of the MDT tracking workbook
    (see read_workbook.SHEET_STATUS_MAP). The status of an imported patient
    is always derived from the sheet the row came from, never from a cell.
    """

    ACTIVE = "ACTIVE"
    DISCHARGED = "DISCHARGED"
    WAITING_AUTH = "WAITING_AUTH"
    HEADWAY = "HEADWAY"

    @classmethod
    def from_string(cls, value: str | None) -> "PatientStatus":
        """Convert string to PatientStatus.

        Parameters
        ----------
        value : str | None
            Status name ('ACTIVE', 'discharged', ...). Case-insensitive.

        Returns
        -------
        PatientStatus
            Corresponding PatientStatus enum value.

        Raises
        ------
        ValueError
            If value is None or not a valid status name. Error message lists
            all available options.

        Examples
        --------
        >>> PatientStatus.from_string('active')
        <PatientStatus.ACTIVE: 'ACTIVE'>
        """
        if value is not None:
            value_upper = value.strip().upper()
            for status in cls:
                if status.value == value_upper:
                    return status

        raise ValueError(
            f"Unknown patient status: {value}. "
            f"Valid options: {', '.join(s.value for s in cls)}"
        )

    @classmethod
    def all_codes(cls) -> set[str]:
        """Get set of all status codes."""
        return {status.value for status in cls}


class CellKind(Enum):
    """Kind of a raw workbook cell value.

    Workbook cells arrive untyped. The reader classifies every value into
    one of these kinds before any field coercion; nothing past the reader
    sees raw cell values.
    """

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    EMPTY = "empty"


class ImportIntent(Enum):
    """What to do with a parsed workbook."""

    PREVIEW = "preview"
    IMPORT = "import"

    @classmethod
    def from_string(cls, value: str | None) -> "ImportIntent":
        """Convert string to ImportIntent.

        Parameters
        ----------
        value : str | None
            Intent name ('preview', 'import'), or None for default.

        Returns
        -------
        ImportIntent
            Corresponding ImportIntent, defaults to PREVIEW if value is None.

        Raises
        ------
        ValueError
            If value is not a valid intent name.
        """
        if value is None:
            return cls.PREVIEW

        value_lower = value.strip().lower()
        for intent in cls:
            if intent.value == value_lower:
                return intent

        raise ValueError(
            f"Invalid intent: {value}. "
            f"Valid options: {', '.join(i.value for i in cls)}"
        )

    @classmethod
    def all_codes(cls) -> set[str]:
        return {intent.value for intent in cls}


class AuditAction(Enum):
    """Mutation recorded in the audit trail."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    IMPORT = "IMPORT"
    EXPORT = "EXPORT"


class AuditEntity(Enum):
    """Entity types that can appear in the audit trail."""

    PATIENT = "Patient"
    USER = "User"
    MDT_MEETING = "MDTMeeting"
    MDT_MEETING_ITEM = "MDTMeetingItem"
    NOTE = "Note"
    TASK = "Task"
    ASSIGNMENT = "Assignment"
    CLINICIAN_ALLOWLIST = "ClinicianAllowlist"
