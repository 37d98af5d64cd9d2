"""Durable migration state, read and written at batch granularity."""

import logging
from pathlib import Path

from .models import MigrationState
from .storage import load_document, write_json_atomic

logger = logging.getLogger(__name__)


class StateStore:
    """
    JSON file holding the MigrationState of one run.

    Every save rewrites the whole record through a temp-file-and-rename, so
    a reader (or a crash) never observes a half-written state. There is no
    locking: a single driver process owns the file.

    The store never deletes the file on its own; ``clear`` is only called on
    explicit operator request.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> MigrationState:
        """Return the persisted state, or a fresh one if none exists yet."""
        if not self.path.exists():
            return MigrationState()
        return MigrationState.from_dict(load_document(self.path))

    def save(self, state: MigrationState) -> None:
        write_json_atomic(self.path, state.to_dict())
        logger.debug("State saved to %s", self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
