"""
Migration driver.

Imports batches one at a time, in ascending order, against the target
environment. Per batch::

    Pending -> InFlight -> Completed
                        -> (retry) InFlight ... -> Failed

Within a batch the content model goes first (first batch only), then
assets, then entries. Every remote call is passed through the admission
controller. A single asset or entry rejected by the service is logged and
skipped. Transient failures (429, 5xx, timeouts and other transport errors)
are not item problems, so they escape the item loops. Any exception escaping
the batch, content type failures included, restarts the batch with linear
backoff until the retry ceiling, after which the batch is recorded as failed
and the run moves on.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, TypeVar

from .client import ManagementClient, TargetEnvironment
from .config import BATCH_DOCUMENT_NAME, MigrationConfig
from .exceptions import (
    BatchFailedError,
    ConflictError,
    ContentModelError,
    NotFoundError,
    is_transient_error,
)
from .limiter import AdmissionController
from .logs import batch_log
from .models import ImportSummary, ItemCounts, MigrationState, batch_id, batch_key
from .polling import PollStatus, poll_until
from .state import StateStore
from .storage import load_document, load_manifest

logger = logging.getLogger(__name__)

T = TypeVar("T")

ASSET_PROGRESS_EVERY = 10
ENTRY_PROGRESS_EVERY = 50

SessionFactory = Callable[[], TargetEnvironment]


class MigrationDriver:
    """
    Runs the batch loop with retry and state checkpointing.

    Args:
        config: Parsed run configuration
        session_factory: Opens a session against the target; defaults to a
            ManagementClient for ``config.target``
        controller: Admission controller; built from ``config.rate_limits``
            when omitted (None when rate limiting is disabled)
        state_store: Defaults to ``import-state.json`` in the output dir
        sleep: Suspension primitive used for backoff, batch delay and polling
    """

    def __init__(
        self,
        config: MigrationConfig,
        *,
        session_factory: SessionFactory | None = None,
        controller: AdmissionController | None = None,
        state_store: StateStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.options = config.import_options
        self.controller = controller or AdmissionController.from_options(config.rate_limits)
        self.state_store = state_store or StateStore(config.state_file)
        self._session_factory = session_factory or self._default_session
        self._sleep = sleep

    def _default_session(self) -> TargetEnvironment:
        on_response = self.controller.update_from_headers if self.controller else None
        return ManagementClient(self.config.require_target(), on_response=on_response)

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one remote call, through the admission controller when enabled."""
        if self.controller is None:
            return await operation()
        return await self.controller.admit(operation)

    # -------------------------------------------------------------------------
    # Batch loop
    # -------------------------------------------------------------------------

    async def run(self, start_from: int = 1) -> ImportSummary:
        """
        Import every batch from ``start_from`` to the last one.

        Batches already marked completed are skipped, so ``start_from`` is a
        lower bound rather than an exact replay point.

        Raises:
            ManifestNotFoundError: If the split step has not been run
            ExportReadError: If a batch document cannot be read
        """
        manifest = load_manifest(self.config.manifest_file)
        state = self.state_store.load()
        self.state_store.save(state)

        if self.controller is not None:
            rl = self.config.rate_limits
            logger.info(
                "Rate limiter: %d req/sec, %d req/hour",
                rl.requests_per_second,
                rl.requests_per_hour,
            )
        else:
            logger.warning("Rate limiter: DISABLED")

        logger.info("Found %d batches to import", manifest.total_batches)
        logger.info("  - Completed batches: %d", len(state.completed_batches))
        logger.info("  - Failed batches: %d", len(state.failed_batches))
        logger.info("  - Starting from batch: %d", start_from)

        summary = ImportSummary(total_batches=manifest.total_batches)
        for number in range(max(1, start_from), manifest.total_batches + 1):
            key = batch_key(number)
            if state.is_completed(key):
                logger.info("Batch %s already completed, skipping", key)
                summary.skipped.append(key)
                continue

            info = manifest.get(number)
            logger.info("=" * 60)
            logger.info("Importing batch %s of %d", key, manifest.total_batches)
            logger.info("=" * 60)
            if info is not None:
                logger.info("  - Assets: %d", info.assets)
                logger.info("  - Entries: %d", info.entries)
                logger.info("  - Has content model: %s", "Yes" if info.has_content_model else "No")

            carries_model = info.has_content_model if info is not None else None
            if await self._run_batch(number, state, carries_model):
                summary.succeeded.append(key)
                if number < manifest.total_batches and self.options.delay_between_batches_seconds:
                    logger.info(
                        "Waiting %.0f seconds before next batch",
                        self.options.delay_between_batches_seconds,
                    )
                    await self._sleep(self.options.delay_between_batches_seconds)
            else:
                summary.failed.append(key)

        logger.info("=" * 60)
        logger.info("Import summary")
        logger.info("=" * 60)
        logger.info("Total batches: %d", manifest.total_batches)
        logger.info("Successful: %d", len(summary.succeeded))
        logger.info("Failed: %d", len(summary.failed))
        logger.info("Skipped (already completed): %d", len(summary.skipped))
        if self.controller is not None:
            self.controller.log_stats()
        return summary

    async def _run_batch(
        self,
        number: int,
        state: MigrationState,
        carries_model: bool | None,
    ) -> bool:
        """Run one batch through its retry budget. Returns True on success."""
        key = batch_key(number)
        document = load_document(self.config.batch_dir(batch_id(number)) / BATCH_DOCUMENT_NAME)
        if carries_model is None:
            carries_model = bool(document.get("contentTypes"))

        state.mark_in_flight(key)
        self.state_store.save(state)

        max_attempts = self.options.max_retries + 1
        with batch_log(self.config.log_dir, key):
            attempt = 0
            while True:
                attempt += 1
                if attempt > 1:
                    delay = self.options.retry_delay_seconds * (attempt - 1)
                    logger.warning(
                        "Retry attempt %d of %d for batch %s in %.1fs",
                        attempt - 1,
                        self.options.max_retries,
                        key,
                        delay,
                    )
                    await self._sleep(delay)

                state.record_attempt(key)
                self.state_store.save(state)
                try:
                    await self.import_batch(document, carries_model=carries_model)
                except Exception as e:
                    logger.error("Error importing batch %s: %s", key, e)
                    if attempt < max_attempts:
                        continue
                    failure = BatchFailedError(key, attempt, e)
                    state.mark_failed(key, str(e))
                    self.state_store.save(state)
                    logger.error("%s, moving to next batch", failure)
                    return False

                state.mark_completed(key)
                self.state_store.save(state)
                logger.info("Batch %s imported successfully", key)
                return True

    # -------------------------------------------------------------------------
    # Single batch
    # -------------------------------------------------------------------------

    async def import_batch(
        self,
        document: dict[str, Any],
        *,
        carries_model: bool = False,
    ) -> ItemCounts:
        """
        Import one batch document end to end.

        Item-level failures are logged and counted. Anything raised from here
        is a batch-level failure.
        """
        assets = document.get("assets") or []
        entries = document.get("entries") or []
        logger.info("Batch contents:")
        for label, key in (
            ("Content Types", "contentTypes"),
            ("Locales", "locales"),
            ("Tags", "tags"),
            ("Assets", "assets"),
            ("Entries", "entries"),
        ):
            logger.info("  - %s: %d", label, len(document.get(key) or []))

        counts = ItemCounts()
        session = self._session_factory()
        try:
            await self._call(session.connect)
            if carries_model and document.get("contentTypes"):
                await self._import_content_model(session, document)
            if assets:
                await self._import_assets(session, assets, counts)
            if entries:
                await self._import_entries(session, entries, counts)
        finally:
            await session.close()

        if self.controller is not None:
            self.controller.log_stats()
        return counts

    # -------------------------------------------------------------------------
    # Content model
    # -------------------------------------------------------------------------

    async def _import_content_model(
        self, session: TargetEnvironment, document: dict[str, Any]
    ) -> None:
        logger.info("Importing content model")
        await self._import_locales(session, document.get("locales") or [])
        await self._import_tags(session, document.get("tags") or [])
        await self._import_content_types(session, document.get("contentTypes") or [])
        await self._import_editor_interfaces(session, document.get("editorInterfaces") or [])

    async def _import_locales(
        self, session: TargetEnvironment, locales: list[dict[str, Any]]
    ) -> None:
        if locales:
            logger.info("  Importing %d locales", len(locales))
        for locale in locales:
            code = locale.get("code")
            try:
                existing = await self._call(session.get_locales)
                if not any(item.get("code") == code for item in existing):
                    await self._call(partial(session.create_locale, locale))
                logger.info("    Locale: %s", code)
            except Exception as e:
                if is_transient_error(e):
                    raise
                logger.warning("    Locale %s: %s", code, e)

    async def _import_tags(self, session: TargetEnvironment, tags: list[dict[str, Any]]) -> None:
        if tags:
            logger.info("  Importing %d tags", len(tags))
        for tag in tags:
            name = tag.get("name") or tag["sys"]["id"]
            try:
                await self._call(partial(session.create_tag, tag))
                logger.info("    Tag: %s", name)
            except Exception as e:
                if is_transient_error(e):
                    raise
                if isinstance(e, ConflictError) or "already exists" in str(e).lower():
                    logger.debug("    Tag %s already exists", name)
                    continue
                logger.warning("    Tag %s: %s", name, e)

    async def _import_content_types(
        self, session: TargetEnvironment, content_types: list[dict[str, Any]]
    ) -> None:
        logger.info("  Importing %d content types", len(content_types))
        for content_type in content_types:
            ct_id = content_type["sys"]["id"]
            try:
                created = await self._call(partial(session.create_content_type, content_type))
                if not self.options.skip_content_publishing:
                    await self._call(partial(session.publish_content_type, created))
            except Exception as e:
                logger.error("    Content Type %s: %s", content_type.get("name", ct_id), e)
                raise ContentModelError(ct_id, e) from e
            logger.info("    Content Type: %s", content_type.get("name", ct_id))

    async def _import_editor_interfaces(
        self, session: TargetEnvironment, editor_interfaces: list[dict[str, Any]]
    ) -> None:
        if editor_interfaces:
            logger.info("  Importing %d editor interfaces", len(editor_interfaces))
        for editor_interface in editor_interfaces:
            ct_id = editor_interface["sys"]["contentType"]["sys"]["id"]
            try:
                current = await self._call(partial(session.get_editor_interface, ct_id))
                updated = {**current, "controls": editor_interface.get("controls", [])}
                if "sidebar" in editor_interface:
                    updated["sidebar"] = editor_interface["sidebar"]
                await self._call(partial(session.update_editor_interface, updated))
                logger.info("    Editor Interface: %s", ct_id)
            except Exception as e:
                if is_transient_error(e):
                    raise
                logger.warning("    Editor Interface %s: %s", ct_id, e)

    # -------------------------------------------------------------------------
    # Assets and entries
    # -------------------------------------------------------------------------

    async def _create_or_fetch(
        self,
        fetch: Callable[[], Awaitable[dict[str, Any]]],
        create: Callable[[], Awaitable[dict[str, Any]]],
        reuse_existing: bool,
    ) -> dict[str, Any]:
        if reuse_existing:
            try:
                return await self._call(fetch)
            except NotFoundError:
                pass
        return await self._call(create)

    async def _import_assets(
        self,
        session: TargetEnvironment,
        assets: list[dict[str, Any]],
        counts: ItemCounts,
    ) -> None:
        logger.info("Importing %d assets", len(assets))
        for asset in assets:
            try:
                await self._import_asset(session, asset, counts)
            except Exception as e:
                if is_transient_error(e):
                    raise
                counts.assets_failed += 1
                logger.error("  Asset %s: %s", asset["sys"]["id"], e)
                continue

            counts.assets_imported += 1
            if counts.assets_imported % ASSET_PROGRESS_EVERY == 0:
                logger.info("  Progress: %d/%d assets", counts.assets_imported, len(assets))
        logger.info("  Imported %d/%d assets", counts.assets_imported, len(assets))

    async def _import_asset(
        self,
        session: TargetEnvironment,
        asset: dict[str, Any],
        counts: ItemCounts,
    ) -> None:
        asset_id = asset["sys"]["id"]
        created = await self._create_or_fetch(
            partial(session.get_asset, asset_id),
            partial(session.create_asset, asset),
            self.options.skip_asset_updates,
        )
        if not self.options.upload_assets:
            return

        files = (created.get("fields") or {}).get("file") or (asset.get("fields") or {}).get(
            "file"
        ) or {}
        for locale in files:
            await self._call(partial(session.process_asset, created, locale))

        async def check() -> tuple[PollStatus, dict[str, Any]]:
            current = await self._call(partial(session.get_asset, asset_id))
            current_files = (current.get("fields") or {}).get("file") or {}
            processed = all(
                isinstance(f, dict) and f.get("url") for f in current_files.values()
            )
            return (PollStatus.READY if processed else PollStatus.STILL_PENDING), current

        result = await poll_until(
            check,
            interval=self.options.poll_interval_seconds,
            max_attempts=self.options.poll_max_attempts,
            sleep=self._sleep,
        )

        if result.status is PollStatus.GAVE_UP:
            counts.assets_unpublished += 1
            logger.warning(
                "  Asset %s: processing not finished after %d checks, not publishing",
                asset_id,
                result.attempts,
            )
            return

        if not self.options.skip_content_publishing and result.value is not None:
            await self._call(partial(session.publish_asset, result.value))

    async def _import_entries(
        self,
        session: TargetEnvironment,
        entries: list[dict[str, Any]],
        counts: ItemCounts,
    ) -> None:
        logger.info("Importing %d entries", len(entries))
        for entry in entries:
            entry_id = entry["sys"]["id"]
            try:
                content_type_id = entry["sys"]["contentType"]["sys"]["id"]
                created = await self._create_or_fetch(
                    partial(session.get_entry, entry_id),
                    partial(session.create_entry, content_type_id, entry),
                    self.options.skip_content_updates,
                )
                if not self.options.skip_content_publishing:
                    await self._call(partial(session.publish_entry, created))
            except Exception as e:
                if is_transient_error(e):
                    raise
                counts.entries_failed += 1
                logger.error("  Entry %s: %s", entry_id, e)
                continue

            counts.entries_imported += 1
            if counts.entries_imported % ENTRY_PROGRESS_EVERY == 0:
                logger.info("  Progress: %d/%d entries", counts.entries_imported, len(entries))
        logger.info("  Imported %d/%d entries", counts.entries_imported, len(entries))
