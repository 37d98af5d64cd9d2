"""Resume coordinator: pick the restart point of an interrupted run."""

import logging
from dataclasses import dataclass
from enum import Enum

from .config import MigrationConfig
from .driver import MigrationDriver
from .exceptions import StateNotFoundError
from .models import ImportSummary, Manifest, MigrationState
from .state import StateStore
from .storage import load_manifest

logger = logging.getLogger(__name__)


class ResumeStrategy(Enum):
    CURRENT = "current"  # a batch was in flight when the run stopped
    FAILED = "failed"  # retry the earliest terminally failed batch
    NEXT = "next"  # continue after the highest completed batch
    COMPLETE = "complete"  # nothing left to do


@dataclass(frozen=True)
class ResumePlan:
    strategy: ResumeStrategy
    start_from: int | None
    reason: str

    @property
    def done(self) -> bool:
        return self.strategy is ResumeStrategy.COMPLETE


def _number(key: str) -> int:
    return int(key)


def plan_resume(state: MigrationState, manifest: Manifest) -> ResumePlan:
    """
    Choose where an interrupted run should restart.

    Priority: the batch that was in flight, then the lowest-numbered failed
    batch, then the batch after the highest completed one. Completed batches
    are skipped by the driver whichever start point is chosen.
    """
    if state.current_batch is not None:
        return ResumePlan(
            ResumeStrategy.CURRENT,
            _number(state.current_batch),
            f"batch {state.current_batch} was in progress",
        )

    failed = sorted(state.failed_keys(), key=_number)
    if failed:
        return ResumePlan(
            ResumeStrategy.FAILED,
            _number(failed[0]),
            f"retrying failed batch {failed[0]}",
        )

    if state.completed_batches:
        next_number = max(_number(k) for k in state.completed_batches) + 1
    else:
        next_number = 1
    if next_number > manifest.total_batches:
        return ResumePlan(ResumeStrategy.COMPLETE, None, "all batches completed")
    return ResumePlan(ResumeStrategy.NEXT, next_number, f"continuing from batch {next_number:02d}")


class ResumeCoordinator:
    """Reads persisted state and hands the driver its start point."""

    def __init__(
        self,
        config: MigrationConfig,
        *,
        driver: MigrationDriver | None = None,
        state_store: StateStore | None = None,
    ) -> None:
        self.config = config
        self.state_store = state_store or StateStore(config.state_file)
        self._driver = driver

    @property
    def driver(self) -> MigrationDriver:
        if self._driver is None:
            self._driver = MigrationDriver(self.config, state_store=self.state_store)
        return self._driver

    def plan(self) -> tuple[MigrationState, ResumePlan]:
        """
        Load state and manifest and compute the resume plan.

        Raises:
            StateNotFoundError: If no run has been started
            ManifestNotFoundError: If the batches are missing
        """
        if not self.state_store.exists():
            raise StateNotFoundError(str(self.state_store.path))
        state = self.state_store.load()
        manifest = load_manifest(self.config.manifest_file)
        return state, plan_resume(state, manifest)

    async def resume(self) -> ImportSummary | None:
        """Run the driver from the planned batch. Returns None when nothing is left."""
        state, plan = self.plan()
        logger.info("Started at: %s", state.started_at)
        logger.info("Completed batches: %d", len(state.completed_batches))
        logger.info("Failed batches: %d", len(state.failed_batches))
        if plan.done:
            logger.info("All batches completed, nothing to resume")
            return None

        logger.info("Resuming from batch %02d (%s)", plan.start_from, plan.reason)
        return await self.driver.run(start_from=plan.start_from)
