"""Post-migration validation: compare source export counts with the target."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, TypeVar

from .client import MAX_PAGE_SIZE, TargetEnvironment

logger = logging.getLogger(__name__)

T = TypeVar("T")

Admit = Callable[[Callable[[], Awaitable[T]]], Awaitable[T]]


class CheckStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


@dataclass
class ItemTotals:
    """Item counts of a space, or of an export document."""

    content_types: int = 0
    entries: int = 0
    assets: int = 0
    tags: int = 0
    locales: int = 0
    published_entries: int | None = None
    published_assets: int | None = None


@dataclass(frozen=True)
class Check:
    name: str
    source: int
    target: int
    critical: bool = True

    @property
    def diff(self) -> int:
        return self.target - self.source

    @property
    def diff_percent(self) -> float:
        if self.source <= 0:
            return 0.0
        return round(self.diff / self.source * 100, 2)

    @property
    def status(self) -> CheckStatus:
        if self.diff == 0:
            return CheckStatus.PASSED
        return CheckStatus.FAILED if self.critical else CheckStatus.WARNING


@dataclass
class ValidationReport:
    checks: list[Check] = field(default_factory=list)

    def count(self, status: CheckStatus) -> int:
        return sum(1 for c in self.checks if c.status is status)

    @property
    def passed(self) -> int:
        return self.count(CheckStatus.PASSED)

    @property
    def failed(self) -> int:
        return self.count(CheckStatus.FAILED)

    @property
    def warnings(self) -> int:
        return self.count(CheckStatus.WARNING)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def get(self, name: str) -> Check | None:
        for check in self.checks:
            if check.name == name:
                return check
        return None


def count_source(document: dict[str, Any]) -> ItemTotals:
    """Count the collections of an export document."""
    return ItemTotals(
        content_types=len(document.get("contentTypes") or []),
        entries=len(document.get("entries") or []),
        assets=len(document.get("assets") or []),
        tags=len(document.get("tags") or []),
        locales=len(document.get("locales") or []),
    )


async def _direct(operation: Callable[[], Awaitable[T]]) -> T:
    return await operation()


async def _fetch_all(
    fetch_page: Callable[..., Awaitable[dict[str, Any]]],
    admit: Admit,
    label: str,
) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    skip = 0
    while True:
        page = await admit(partial(fetch_page, limit=MAX_PAGE_SIZE, skip=skip))
        batch = page.get("items") or []
        items.extend(batch)
        skip += MAX_PAGE_SIZE
        logger.debug("    Fetched %d %s", len(items), label)
        if len(batch) < MAX_PAGE_SIZE:
            return items


async def fetch_target_counts(
    env: TargetEnvironment,
    admit: Admit | None = None,
) -> ItemTotals:
    """
    Count what the target environment holds.

    Entries and assets are paged through in full (the management API caps a
    page at 1000 items). Every call goes through ``admit`` when given.
    """
    admit = admit or _direct
    content_types = await admit(partial(env.get_content_types, limit=MAX_PAGE_SIZE))
    logger.info("  - Counting entries")
    entries = await _fetch_all(env.get_entries, admit, "entries")
    logger.info("  - Counting assets")
    assets = await _fetch_all(env.get_assets, admit, "assets")
    tags = await admit(partial(env.get_tags, limit=MAX_PAGE_SIZE))
    locales = await admit(env.get_locales)

    return ItemTotals(
        content_types=len(content_types.get("items") or []),
        entries=len(entries),
        assets=len(assets),
        tags=len(tags.get("items") or []),
        locales=len(locales),
        published_entries=sum(1 for e in entries if e.get("sys", {}).get("publishedVersion")),
        published_assets=sum(1 for a in assets if a.get("sys", {}).get("publishedVersion")),
    )


def compare_counts(source: ItemTotals, target: ItemTotals) -> ValidationReport:
    """Build the check list. Tags are informational; every other mismatch fails."""
    return ValidationReport(
        checks=[
            Check("Content Types", source.content_types, target.content_types),
            Check("Entries", source.entries, target.entries),
            Check("Assets", source.assets, target.assets),
            Check("Tags", source.tags, target.tags, critical=False),
            Check("Locales", source.locales, target.locales),
        ]
    )
