"""
Configuration for a migration run.

The configuration document is YAML or JSON (JSON is loaded through the
YAML parser) using the camelCase keys of the batch config file::

    batchSize: 400
    sourceFile: ./export/exported-space.json
    sourceAssetsDir: ./export
    outputDir: ./batches
    targetSpace:
      spaceId: abc123
      environmentId: master
      managementToken: CFPAT-...
    importOptions:
      uploadAssets: true
      maxRetries: 3
      retryDelay: 5000          # ms
      delayBetweenBatches: 30000  # ms
    rateLimits:
      enabled: true
      requestsPerSecond: 10
      requestsPerHour: 36000

Durations are milliseconds in the document and seconds on the dataclasses.
The parsed config is built once and handed to each component; nothing reads
it from module globals.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

TOKEN_ENV_VAR = "SPACE_BATCHER_MANAGEMENT_TOKEN"

DEFAULT_HOST = "api.contentful.com"
STATE_FILE_NAME = "import-state.json"
MANIFEST_FILE_NAME = "manifest.json"
BATCH_DOCUMENT_NAME = "exported-space.json"
LOG_DIR_NAME = "logs"


@dataclass(frozen=True)
class TargetSpace:
    """Connection settings for the target space/environment."""

    space_id: str
    environment_id: str = "master"
    management_token: str = field(default="", repr=False)
    host: str = DEFAULT_HOST

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TargetSpace":
        token = data.get("managementToken") or os.environ.get(TOKEN_ENV_VAR, "")
        return cls(
            space_id=str(data.get("spaceId") or ""),
            environment_id=str(data.get("environmentId") or "master"),
            management_token=str(token),
            host=str(data.get("host") or DEFAULT_HOST),
        )


@dataclass(frozen=True)
class ImportOptions:
    """
    Per-run import behaviour.

    Attributes:
        upload_assets: Trigger processing and wait for asset files
        skip_content_publishing: Leave imported items as drafts
        skip_content_updates: Reuse existing entries instead of recreating
        skip_asset_updates: Reuse existing assets instead of recreating
        max_retries: Batch-level retries after the first attempt
        retry_delay_seconds: Base backoff, multiplied by the attempt number
        delay_between_batches_seconds: Pause after each completed batch
        poll_interval_seconds: Interval between asset processing checks
        poll_max_attempts: Processing checks before giving up on an asset
    """

    upload_assets: bool = True
    skip_content_publishing: bool = False
    skip_content_updates: bool = False
    skip_asset_updates: bool = False
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    delay_between_batches_seconds: float = 30.0
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 30

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("importOptions.maxRetries must be >= 0")
        if self.poll_max_attempts < 1:
            raise ConfigurationError("importOptions.pollMaxAttempts must be >= 1")
        for name in ("retry_delay_seconds", "delay_between_batches_seconds", "poll_interval_seconds"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"importOptions: {name} must be >= 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportOptions":
        defaults = cls()
        return cls(
            upload_assets=bool(data.get("uploadAssets", defaults.upload_assets)),
            skip_content_publishing=bool(
                data.get("skipContentPublishing", defaults.skip_content_publishing)
            ),
            skip_content_updates=bool(
                data.get("skipContentUpdates", defaults.skip_content_updates)
            ),
            skip_asset_updates=bool(data.get("skipAssetUpdates", defaults.skip_asset_updates)),
            max_retries=int(data.get("maxRetries", defaults.max_retries)),
            retry_delay_seconds=_ms(data, "retryDelay", defaults.retry_delay_seconds),
            delay_between_batches_seconds=_ms(
                data, "delayBetweenBatches", defaults.delay_between_batches_seconds
            ),
            poll_interval_seconds=_ms(data, "pollInterval", defaults.poll_interval_seconds),
            poll_max_attempts=int(data.get("pollMaxAttempts", defaults.poll_max_attempts)),
        )


@dataclass(frozen=True)
class RateLimitOptions:
    """Admission controller settings."""

    enabled: bool = True
    requests_per_second: int = 10
    requests_per_hour: int = 36_000
    cooldown_seconds: float = 60.0
    verbose: bool = True

    def __post_init__(self) -> None:
        if self.requests_per_second <= 0 or self.requests_per_hour <= 0:
            raise ConfigurationError("rateLimits: request rates must be positive")
        if self.cooldown_seconds < 0:
            raise ConfigurationError("rateLimits.cooldown must be >= 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RateLimitOptions":
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            requests_per_second=int(data.get("requestsPerSecond", defaults.requests_per_second)),
            requests_per_hour=int(data.get("requestsPerHour", defaults.requests_per_hour)),
            cooldown_seconds=_ms(data, "cooldown", defaults.cooldown_seconds),
            verbose=data.get("verbose", defaults.verbose) is not False,
        )


@dataclass(frozen=True)
class MigrationConfig:
    """Everything one migration run needs, parsed once at startup."""

    output_dir: Path
    target: TargetSpace
    batch_size: int = 400
    source_file: Path | None = None
    source_assets_dir: Path | None = None
    import_options: ImportOptions = field(default_factory=ImportOptions)
    rate_limits: RateLimitOptions = field(default_factory=RateLimitOptions)

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError("batchSize must be >= 1")

    @property
    def state_file(self) -> Path:
        return self.output_dir / STATE_FILE_NAME

    @property
    def manifest_file(self) -> Path:
        return self.output_dir / MANIFEST_FILE_NAME

    @property
    def log_dir(self) -> Path:
        return self.output_dir / LOG_DIR_NAME

    def batch_dir(self, batch_id: str) -> Path:
        return self.output_dir / batch_id

    def require_source(self) -> tuple[Path, Path]:
        """Source export path and asset root, as required by split/validate."""
        if self.source_file is None:
            raise ConfigurationError("sourceFile is not configured")
        return self.source_file, self.source_assets_dir or self.source_file.parent

    def require_target(self) -> TargetSpace:
        """Target settings, as required by import/validate."""
        if not self.target.space_id:
            raise ConfigurationError("targetSpace.spaceId is not configured")
        if not self.target.management_token:
            raise ConfigurationError(
                "targetSpace.managementToken is not configured",
                hint=f"Set it in the config file or export {TOKEN_ENV_VAR}.",
            )
        return self.target

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path | None = None) -> "MigrationConfig":
        """Build from a parsed config document; relative paths resolve against base_dir."""
        base = base_dir or Path.cwd()

        def path(key: str) -> Path | None:
            value = data.get(key)
            if not value:
                return None
            p = Path(str(value)).expanduser()
            return p if p.is_absolute() else base / p

        try:
            return cls(
                output_dir=path("outputDir") or base / "batches",
                target=TargetSpace.from_dict(data.get("targetSpace") or {}),
                batch_size=int(data.get("batchSize", 400)),
                source_file=path("sourceFile"),
                source_assets_dir=path("sourceAssetsDir"),
                import_options=ImportOptions.from_dict(data.get("importOptions") or {}),
                rate_limits=RateLimitOptions.from_dict(data.get("rateLimits") or {}),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(path: str | Path) -> MigrationConfig:
    """
    Load and validate a configuration file.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at the top level")

    return MigrationConfig.from_dict(data, base_dir=config_path.resolve().parent)


def _ms(data: dict[str, Any], key: str, default_seconds: float) -> float:
    """Read a millisecond value and return seconds."""
    if key not in data or data[key] is None:
        return default_seconds
    return float(data[key]) / 1000.0
