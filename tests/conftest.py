"""Shared fixtures."""

from pathlib import Path

import pytest

from space_batcher.config import ImportOptions, MigrationConfig, RateLimitOptions, TargetSpace
from tests.fixtures.fakes import FakeClock, FakeEnvironment


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def env() -> FakeEnvironment:
    return FakeEnvironment()


@pytest.fixture
def config(tmp_path: Path) -> MigrationConfig:
    """Two assets per batch, rate limiting disabled."""
    return MigrationConfig(
        output_dir=tmp_path / "batches",
        target=TargetSpace(space_id="space1", management_token="CFPAT-test"),
        batch_size=2,
        source_file=tmp_path / "export" / "exported-space.json",
        source_assets_dir=tmp_path / "export",
        import_options=ImportOptions(
            max_retries=3,
            retry_delay_seconds=5.0,
            delay_between_batches_seconds=30.0,
            poll_interval_seconds=2.0,
            poll_max_attempts=30,
        ),
        rate_limits=RateLimitOptions(enabled=False),
    )
