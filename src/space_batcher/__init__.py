"""
space-batcher: rate-governed batch migration for hosted CMS spaces.

A space export is split into asset-anchored batches, which are imported one
at a time into a target environment under a dual token-bucket admission
controller. Progress is checkpointed after every batch so an interrupted run
can be resumed.

Example:
    from space_batcher import MigrationDriver, load_config, split_export

    config = load_config("batch-config.json")
    split_export(config)
    summary = await MigrationDriver(config).run()
"""

from importlib.metadata import PackageNotFoundError, version

from .cleanup import analyze_drafts, clean_export, is_draft
from .client import ManagementClient, TargetEnvironment
from .config import (
    ImportOptions,
    MigrationConfig,
    RateLimitOptions,
    TargetSpace,
    load_config,
)
from .driver import MigrationDriver
from .exceptions import (
    BatchFailedError,
    ConfigurationError,
    ConflictError,
    ContentModelError,
    ExportReadError,
    ManifestNotFoundError,
    MigrationError,
    NotFoundError,
    PreconditionError,
    RemoteError,
    ServerError,
    SpaceBatcherError,
    StateNotFoundError,
    TooManyRequestsError,
)
from .limiter import AdmissionController
from .models import (
    Batch,
    BucketState,
    ContentModel,
    ImportSummary,
    LimiterStats,
    Manifest,
    MigrationState,
)
from .partitioner import partition, split_export
from .resume import ResumeCoordinator, ResumePlan, plan_resume
from .state import StateStore
from .validation import compare_counts, count_source, fetch_target_counts

try:
    __version__ = version("space-batcher")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Main classes
    "AdmissionController",
    "MigrationDriver",
    "ResumeCoordinator",
    "StateStore",
    "ManagementClient",
    "TargetEnvironment",
    # Functions
    "load_config",
    "partition",
    "split_export",
    "plan_resume",
    "count_source",
    "fetch_target_counts",
    "compare_counts",
    "is_draft",
    "analyze_drafts",
    "clean_export",
    # Config
    "MigrationConfig",
    "TargetSpace",
    "ImportOptions",
    "RateLimitOptions",
    # Models
    "Batch",
    "BucketState",
    "ContentModel",
    "ImportSummary",
    "LimiterStats",
    "Manifest",
    "MigrationState",
    "ResumePlan",
    # Exceptions - Base
    "SpaceBatcherError",
    # Exceptions - Categories
    "RemoteError",
    "MigrationError",
    "PreconditionError",
    # Exceptions - Remote
    "TooManyRequestsError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    # Exceptions - Migration
    "ContentModelError",
    "BatchFailedError",
    # Exceptions - Precondition
    "ConfigurationError",
    "ManifestNotFoundError",
    "StateNotFoundError",
    "ExportReadError",
]
