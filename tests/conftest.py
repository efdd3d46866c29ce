"""Shared pytest fixtures for unit and integration tests.

This module provides:
- Temporary directory fixtures for file I/O testing
- File-backed SQLite databases with the patient and audit schema
- Configuration fixtures for parameter testing
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest
import yaml
from sqlalchemy.orm import sessionmaker

from mdt_import.audit_log import SqlAlchemyAuditLog
from mdt_import.db import create_db_engine, init_db, make_session_factory
from mdt_import.patient_store import SqlAlchemyPatientStore


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after each test.

    Real-world significance:
    - Isolates file I/O tests from each other
    - Prevents databases and reports from leaking between tests
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def database_url(tmp_test_dir: Path) -> str:
    return f"sqlite:///{tmp_test_dir / 'mdt_test.db'}"


@pytest.fixture
def session_factory(database_url: str) -> Generator[sessionmaker, None, None]:
    """Provide a session factory over a freshly created schema.

    Real-world significance:
    - Import runs against a real relational store with real transactions
    - SAVEPOINT behaviour is exercised exactly as in production
    """
    engine = create_db_engine(database_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def patient_store(session_factory: sessionmaker) -> SqlAlchemyPatientStore:
    return SqlAlchemyPatientStore(session_factory)


@pytest.fixture
def audit_log(session_factory: sessionmaker) -> SqlAlchemyAuditLog:
    return SqlAlchemyAuditLog(session_factory)


@pytest.fixture
def default_config(database_url: str) -> Dict[str, Any]:
    """Provide a minimal import configuration for testing.

    Returns
    -------
    Dict[str, Any]
        Configuration dict with all standard sections
    """
    return {
        "database": {"url": database_url},
        "import": {"batch_size": 500, "preview_rows": 20},
        "logging": {"level": "INFO"},
    }


@pytest.fixture
def config_file(tmp_test_dir: Path, default_config: Dict[str, Any]) -> Path:
    """Create a temporary config file with default configuration."""
    config_path = tmp_test_dir / "parameters.yaml"
    with open(config_path, "w") as f:
        yaml.dump(default_config, f)
    return config_path


@pytest.fixture
def actor_id() -> str:
    return "clinician-001"
