"""
Logging setup for the pruning job.

Every module obtains its logger through :func:`get_logger` with ``__name__``;
the CLI calls :func:`setup_logging` once to attach handlers to the package
root logger.
"""
import logging
import sys
from pathlib import Path

PACKAGE_LOGGER = "local_data_prune"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> logging.Logger:
    """
    Configure the package root logger.

    :param verbose: Emit DEBUG records instead of INFO.
    :param log_file: Optional file that receives the same records as stderr.
    :return: The configured package root logger.
    """
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger(PACKAGE_LOGGER)
    root.setLevel(level)
    root.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.setLevel(level)
    root.addHandler(stderr_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)
        root.info("Logging to file: %s", log_file)

    return root


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module (pass ``__name__``)."""
    return logging.getLogger(name)
