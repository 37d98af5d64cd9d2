"""Console and batch-scoped file logging."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

PACKAGE_LOGGER = "space_batcher"

CONSOLE_FORMAT = "%(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Send package logs to stderr (INFO, or DEBUG when verbose)."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for old in [h for h in logger.handlers if getattr(h, "_space_batcher_console", False)]:
        logger.removeHandler(old)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handler._space_batcher_console = True  # type: ignore[attr-defined]
    logger.addHandler(handler)


@contextmanager
def batch_log(log_dir: Path, batch_key: str) -> Iterator[tuple[Path, Path]]:
    """
    Mirror package logs into per-batch files while the block runs.

    ``batch-NN.log`` receives INFO and up, ``batch-NN-errors.log`` WARNING
    and up. Both are opened in append mode, so retries and resumed runs
    add to the same audit trail.

    Yields:
        (log_path, error_log_path)
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"batch-{batch_key}.log"
    error_path = log_dir / f"batch-{batch_key}-errors.log"

    formatter = logging.Formatter(FILE_FORMAT)
    info_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)
    error_handler = logging.FileHandler(error_path, mode="a", encoding="utf-8")
    error_handler.setLevel(logging.WARNING)
    error_handler.setFormatter(formatter)

    logger = logging.getLogger(PACKAGE_LOGGER)
    previous_level = logger.level
    if logger.getEffectiveLevel() > logging.INFO:
        logger.setLevel(logging.INFO)
    logger.addHandler(info_handler)
    logger.addHandler(error_handler)
    try:
        yield log_path, error_path
    finally:
        logger.removeHandler(info_handler)
        logger.removeHandler(error_handler)
        logger.setLevel(previous_level)
        info_handler.close()
        error_handler.close()
