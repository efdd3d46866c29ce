"""MDT patient import command.

Parses an MDT tracking workbook and either previews it or imports it into
the patient store.

**Modes:**

- **preview** parses the workbook and reports what would be imported:
  rows per sheet (truncated to ``import.preview_rows``), unknown sheets and
  rows missing a name. Nothing is written to the database.
- **import** parses the workbook, then upserts every accepted row in
  batches and records an audit entry per created patient. A relative
  SQLite database path is placed inside the output directory.

**Error Handling Philosophy:**

- Workbooks that cannot be decoded, missing files and config errors fail
  fast with exit code 1 before anything is written
- Unknown sheets and unnamed rows are reported and skipped
- Per-row persistence failures are reported with their row index; the
  import continues
- A failed batch transaction marks the import unsuccessful (exit code 1)
  but later batches still run

**Exit Codes:**
- 0: Preview or import completed successfully
- 1: Decode, infrastructure or batch failure
"""

from __future__ import annotations

import argparse
import json
import sys
import time
import traceback
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import pandas as pd
import yaml
from sqlalchemy.engine import make_url

from . import import_patients, read_workbook
from .audit_log import SqlAlchemyAuditLog
from .config_loader import DEFAULT_DATABASE_URL, load_config
from .data_models import ImportPreview, ImportResult
from .db import create_db_engine, init_db, make_session_factory
from .disciplines import disciplines_to_array
from .enums import ImportIntent, PatientStatus
from .logging_config import configure_logging
from .patient_store import SqlAlchemyPatientStore

SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
DEFAULT_OUTPUT_DIR = ROOT_DIR / "output"
DEFAULT_CONFIG_PATH = ROOT_DIR / "config" / "parameters.yaml"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Preview or import MDT patients from an .xlsx workbook",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s mdt_tracker.xlsx
  %(prog)s mdt_tracker.xlsx --intent import --actor clinician-42
        """,
    )

    parser.add_argument(
        "input_file",
        type=Path,
        help="Path to the workbook (e.g., mdt_tracker.xlsx)",
    )
    parser.add_argument(
        "--intent",
        choices=sorted(ImportIntent.all_codes()),
        default=ImportIntent.PREVIEW.value,
        help="preview (default) or import",
    )
    parser.add_argument(
        "--actor",
        type=str,
        default=None,
        help="Id of the clinician performing the import (required for import)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        dest="config_path",
        help=f"Config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy database URL, overrides database.url from the config",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        dest="output_dir",
        help=f"Output directory for logs and reports (default: {DEFAULT_OUTPUT_DIR})",
    )

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    """Validate command-line arguments and raise errors if invalid."""
    if not args.input_file.exists():
        raise FileNotFoundError(f"Input file not found: {args.input_file}")

    intent = ImportIntent.from_string(args.intent)
    if intent is ImportIntent.IMPORT and not (args.actor or "").strip():
        raise ValueError("--actor is required when --intent is import")


def print_step(step_num: int, description: str) -> None:
    """Print a step header."""
    print()
    print(f"{'=' * 60}")
    print(f"Step {step_num}: {description}")
    print(f"{'=' * 60}")


def resolve_database_url(database_url: Optional[str], output_dir: Path) -> str:
    """Anchor relative SQLite database paths in the output directory.

    Other backends, absolute paths and in-memory SQLite are returned
    unchanged. The parent directory of a SQLite file is created.
    """
    url = make_url(database_url or DEFAULT_DATABASE_URL)
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return url.render_as_string(hide_password=False)

    db_path = Path(url.database)
    if not db_path.is_absolute():
        db_path = output_dir / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return url.set(database=str(db_path)).render_as_string(hide_password=False)


def sheet_statuses(import_config: Mapping[str, Any]) -> Mapping[str, PatientStatus]:
    """Sheet name -> status from ``import.sheet_statuses``, or the built-in table."""
    configured = import_config.get("sheet_statuses")
    if not configured:
        return read_workbook.SHEET_STATUS_MAP
    return {name: PatientStatus.from_string(code) for name, code in configured.items()}


def print_preview_summary(preview: ImportPreview) -> None:
    for sheet in preview.sheets:
        print(f"  {sheet.name} ({sheet.status.value}): {sheet.total_rows} rows")
        counts = Counter(
            name for row in sheet.rows for name in disciplines_to_array(row.disciplines)
        )
        if counts:
            breakdown = ", ".join(f"{name} {count}" for name, count in counts.most_common())
            print(f"    Disciplines: {breakdown}")
    print(
        f"Sheets recognized: {preview.summary.total_sheets}, "
        f"rows accepted: {preview.summary.total_rows}"
    )
    if preview.summary.errors:
        print("Issues detected while reading the workbook:")
        for error in preview.summary.errors:
            print(f" - {error}")


def write_report(output_dir: Path, run_id: str, payload: Dict[str, Any]) -> Path:
    """Write the run payload as a JSON report."""
    report_dir = output_dir / "reports"
    report_dir.mkdir(parents=True, exist_ok=True)
    report_path = report_dir / f"{payload['mode']}_{run_id}.json"
    report_path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return report_path


def write_error_report(output_dir: Path, run_id: str, result: ImportResult) -> Optional[Path]:
    """Write import errors to CSV. Returns None when there were no errors."""
    if not result.errors:
        return None

    report_dir = output_dir / "reports"
    report_dir.mkdir(parents=True, exist_ok=True)
    error_path = report_dir / f"import_errors_{run_id}.csv"
    pd.DataFrame([error.to_dict() for error in result.errors]).to_csv(
        error_path, index=False
    )
    return error_path


def run_preview(
    preview: ImportPreview, output_dir: Path, run_id: str, preview_rows: int
) -> int:
    payload = {"mode": ImportIntent.PREVIEW.value, **preview.to_dict(max_rows=preview_rows)}
    report_path = write_report(output_dir, run_id, payload)
    print(f"📄 Preview report: {report_path}")
    return 0


def run_import(
    preview: ImportPreview,
    actor_id: str,
    database_url: str,
    batch_size: int,
    output_dir: Path,
    run_id: str,
) -> int:
    engine = create_db_engine(database_url)
    try:
        init_db(engine)
        session_factory = make_session_factory(engine)
        result = import_patients.import_patients(
            preview.all_rows(),
            actor_id,
            store=SqlAlchemyPatientStore(session_factory),
            audit_sink=SqlAlchemyAuditLog(session_factory),
            batch_size=batch_size,
        )
    finally:
        engine.dispose()

    payload = {
        "mode": ImportIntent.IMPORT.value,
        "summary": preview.summary.to_dict(),
        "result": result.to_dict(),
    }
    report_path = write_report(output_dir, run_id, payload)
    print(f"👥 Created: {result.imported}, updated: {result.updated}, failed: {result.failed}")
    print(f"📄 Import report: {report_path}")

    error_path = write_error_report(output_dir, run_id, result)
    if error_path is not None:
        print(f"⚠️  {len(result.errors)} errors written to {error_path}")

    return 0 if result.success else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Run the import command. Returns the process exit code."""
    args = parse_args(argv)

    try:
        validate_args(args)
        config = load_config(args.config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    intent = ImportIntent.from_string(args.intent)
    import_config = config.get("import", {}) or {}
    output_dir = args.output_dir.resolve()
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    log_path = configure_logging(
        output_dir, run_id, (config.get("logging", {}) or {}).get("level", "INFO")
    )

    print()
    print(f"🚀 Starting MDT import ({intent.value})")
    print(f"🗂️  Input File: {args.input_file}")

    start = time.time()
    try:
        print_step(1, "Reading workbook")
        preview = read_workbook.read_workbook(
            args.input_file, sheet_status_map=sheet_statuses(import_config)
        )
        print_preview_summary(preview)

        if intent is ImportIntent.PREVIEW:
            print_step(2, "Writing preview")
            exit_code = run_preview(
                preview, output_dir, run_id, import_config.get("preview_rows", 20)
            )
        else:
            print_step(2, "Importing patients")
            database_url = resolve_database_url(
                args.database_url or (config.get("database", {}) or {}).get("url"),
                output_dir,
            )
            exit_code = run_import(
                preview,
                args.actor.strip(),
                database_url,
                import_config.get("batch_size", import_patients.BATCH_SIZE),
                output_dir,
                run_id,
            )
    except Exception as exc:
        print(f"\n❌ Import failed: {exc}", file=sys.stderr)
        traceback.print_exc()
        return 1

    print(f"✅ Finished in {time.time() - start:.1f} seconds. Log: {log_path}")
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
