"""
Centralized logging configuration for the import command.
Ensures consistent logging format and level across all modules.
"""

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(output_dir: Path, run_id: str, level: str = "INFO") -> Path:
    """Configure file and console logging for one run.

    Parameters
    ----------
    output_dir : Path
        Root output directory where the logs subdirectory will be created.
    run_id : str
        Unique run identifier used in the log filename.
    level : str
        Logging level name (default "INFO").

    Returns
    -------
    Path
        Path to the created log file.
    """
    log_dir = Path(output_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"mdt_import_{run_id}.log"

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.WARNING)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(level.upper())
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    return log_path
