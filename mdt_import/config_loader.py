"""Settings for the MDT import command.

Settings live in config/parameters.yaml: the database URL, batch and
preview sizes, the sheet-to-status table and the log level. Every section
is optional; missing keys fall back to the defaults checked in
validate_config.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .enums import PatientStatus

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "parameters.yaml"

# Relative SQLite paths are resolved against the output directory
DEFAULT_DATABASE_URL = "sqlite:///mdt.db"


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Read and validate the import settings.

    Parameters
    ----------
    config_path : Path, optional
        YAML settings file. Defaults to config/parameters.yaml at the
        project root.

    Returns
    -------
    Dict[str, Any]
        The parsed settings; an empty file gives {}.

    Raises
    ------
    FileNotFoundError
        If the settings file is missing.
    yaml.YAMLError
        If the file is not valid YAML.
    ValueError
        If a setting is out of range (see validate_config).
    """
    path = Path(config_path or DEFAULT_CONFIG_PATH)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    settings = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    validate_config(settings)
    return settings


def validate_config(config: Dict[str, Any]) -> None:
    """Validate the configuration for consistency and required values.

    Parameters
    ----------
    config : Dict[str, Any]
        Configuration dictionary (result of load_config).

    Raises
    ------
    ValueError
        If required configuration is missing or invalid.

    Notes
    -----
    **Validation checks:**

    - **Import:** batch_size, if set, must be a positive integer;
      preview_rows, if set, must be a non-negative integer; sheet_statuses,
      if set, must map sheet names to known patient statuses
    - **Database:** url, if set, must be a non-empty string
    - **Logging:** level, if set, must be a standard logging level name
    """
    import_config = config.get("import", {}) or {}

    batch_size = import_config.get("batch_size", 500)
    # bool is an int subclass
    if not isinstance(batch_size, int) or isinstance(batch_size, bool):
        raise ValueError(
            f"import.batch_size must be an integer, got {type(batch_size).__name__}"
        )
    if batch_size <= 0:
        raise ValueError(f"import.batch_size must be positive, got {batch_size}")

    preview_rows = import_config.get("preview_rows", 20)
    if not isinstance(preview_rows, int) or isinstance(preview_rows, bool):
        raise ValueError(
            f"import.preview_rows must be an integer, got {type(preview_rows).__name__}"
        )
    if preview_rows < 0:
        raise ValueError(f"import.preview_rows must not be negative, got {preview_rows}")

    sheet_config = import_config.get("sheet_statuses")
    if sheet_config is not None:
        if not isinstance(sheet_config, dict):
            raise ValueError("import.sheet_statuses must map sheet names to statuses")
        for sheet_name, code in sheet_config.items():
            if not isinstance(sheet_name, str) or not sheet_name:
                raise ValueError(
                    f"import.sheet_statuses has an invalid sheet name: {sheet_name!r}"
                )
            try:
                PatientStatus.from_string(code if isinstance(code, str) else None)
            except ValueError as exc:
                raise ValueError(f"import.sheet_statuses[{sheet_name!r}]: {exc}") from exc

    database_config = config.get("database", {}) or {}
    url = database_config.get("url", DEFAULT_DATABASE_URL)
    if not isinstance(url, str) or not url.strip():
        raise ValueError(
            "database.url must be a non-empty string. "
            "Please define database.url in config/parameters.yaml."
        )

    logging_config = config.get("logging", {}) or {}
    level = logging_config.get("level", "INFO")
    if not isinstance(level, str) or not isinstance(
        logging.getLevelName(level.upper()), int
    ):
        raise ValueError(f"logging.level is not a valid level name: {level!r}")
