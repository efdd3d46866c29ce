"""Patient store used by the batch upsert coordinator.

The coordinator only needs three operations, all run inside a transaction
scope opened by the store: look a patient up by identity, create one, and
update one. ``SqlAlchemyPatientStore`` implements them over the relational
schema in ``db.py``.

Each lookup and write runs inside its own SAVEPOINT. One that fails rolls
back to that savepoint and re-raises, leaving earlier writes of the same
batch transaction in place and the session usable for the next record.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, ContextManager, Iterator, Mapping, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .db import Patient
from .enums import PatientStatus

LOG = logging.getLogger(__name__)


class PatientTransaction(Protocol):
    def find_one(self, full_name: str, status: PatientStatus) -> Optional[Any]: ...

    def create(self, fields: Mapping[str, Any]) -> Any: ...

    def update(self, patient_id: str, fields: Mapping[str, Any]) -> Any: ...


class PatientStore(Protocol):
    def transaction(self) -> ContextManager[PatientTransaction]: ...


class SqlAlchemyPatientTransaction:
    """Patient operations bound to one open session transaction."""

    def __init__(self, session: Session):
        self._session = session

    def find_one(self, full_name: str, status: PatientStatus) -> Optional[Patient]:
        """Return the first patient with exactly this name and status.

        Runs in its own SAVEPOINT like the writes, so a failed lookup does not
        abort the enclosing batch transaction on backends such as PostgreSQL.
        """
        stmt = (
            select(Patient)
            .where(Patient.full_name == full_name, Patient.status == status)
            .limit(1)
        )
        with self._session.begin_nested():
            return self._session.execute(stmt).scalars().first()

    def create(self, fields: Mapping[str, Any]) -> Patient:
        with self._session.begin_nested():
            patient = Patient(**fields)
            self._session.add(patient)
        return patient

    def update(self, patient_id: str, fields: Mapping[str, Any]) -> Patient:
        with self._session.begin_nested():
            patient = self._session.get(Patient, patient_id)
            if patient is None:
                raise LookupError(f"Patient not found: {patient_id}")
            for name, value in fields.items():
                setattr(patient, name, value)
        return patient


class SqlAlchemyPatientStore:
    """PatientStore backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[SqlAlchemyPatientTransaction]:
        """Open a session and transaction; commit on clean exit.

        An exception raised inside the block, or a failing commit, rolls the
        transaction back and propagates.
        """
        with self._session_factory() as session:
            with session.begin():
                yield SqlAlchemyPatientTransaction(session)
            LOG.debug("Committed patient transaction")

    def get(self, patient_id: str) -> Optional[Patient]:
        with self._session_factory() as session:
            return session.get(Patient, patient_id)

    def list_patients(self, status: Optional[PatientStatus] = None) -> list[Patient]:
        """List patients ordered by name, optionally filtered by status."""
        stmt = select(Patient).order_by(Patient.full_name, Patient.created_at)
        if status is not None:
            stmt = stmt.where(Patient.status == status)
        with self._session_factory() as session:
            return list(session.execute(stmt).scalars())
