"""Relational models and engine setup for the patient store and audit trail."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .enums import PatientStatus

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(32), primary_key=True, default=_new_id)
    full_name = Column(String(200), nullable=False)
    age = Column(Integer, nullable=True)
    diagnosis = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=True)
    medical_aid = Column(String(200), nullable=True)
    # JSON array string, see disciplines.py
    disciplines = Column(Text, nullable=False, default="[]")
    modality = Column(String(100), nullable=True)
    auth_left = Column(String(200), nullable=True)
    status = Column(
        SAEnum(PatientStatus, name="patient_status"),
        nullable=False,
        default=PatientStatus.ACTIVE,
    )
    last_meeting_comment = Column(Text, nullable=True)
    social_work = Column(Text, nullable=True)
    doctor = Column(String(200), nullable=True)
    psychology = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("ix_patients_full_name_status", "full_name", "status"),)

    def __repr__(self) -> str:
        return f"<Patient {self.id} {self.full_name!r} {self.status.value}>"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(32), primary_key=True, default=_new_id)
    actor_id = Column(String(64), nullable=True, index=True)
    entity = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(16), nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_audit_logs_entity", "entity", "entity_id"),)


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINTs behave."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for ``url``.

    SQLite connections get transaction handling that supports the nested
    SAVEPOINTs used by the patient store.
    """
    engine = create_engine(url, echo=echo, future=True)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    return engine


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)
