"""
Relationship partitioner.

Splits one large export into batches of at most ``batch_size`` assets. Each
batch also carries every entry that references one of its assets and was
not already claimed by an earlier batch, so an entry is imported together
with (at least one of) the assets it points at.

- Assets are sliced in export order.
- First claim wins: an entry referencing assets in batches 1 and 3 lands in
  batch 1 only.
- Entries that reference no exported asset go into a final overflow batch.
- Only the first batch carries the content model.
"""

import logging
import shutil
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from .links import asset_references
from .models import Batch, ContentModel, Manifest
from .storage import load_document, save_manifest, write_json_atomic

if TYPE_CHECKING:
    from .config import MigrationConfig

logger = logging.getLogger(__name__)


@dataclass
class ReferenceIndex:
    """
    Asset/entry relationships of one export.

    Rebuilt for every run and never persisted.
    """

    asset_to_entries: dict[str, list[str]] = field(default_factory=dict)
    entry_to_assets: dict[str, list[str]] = field(default_factory=dict)

    @property
    def entries_without_assets(self) -> int:
        return sum(1 for refs in self.entry_to_assets.values() if not refs)


@dataclass
class CopyResult:
    """Asset binaries copied into one batch directory."""

    copied: int = 0
    skipped: int = 0


def _sys_id(item: dict[str, Any]) -> str:
    return str(item["sys"]["id"])


def build_reference_index(entries: list[dict[str, Any]]) -> ReferenceIndex:
    """Scan every entry's fields for asset links."""
    index = ReferenceIndex()
    for entry in entries:
        entry_id = _sys_id(entry)
        refs = asset_references(entry)
        index.entry_to_assets[entry_id] = refs
        for asset_id in refs:
            index.asset_to_entries.setdefault(asset_id, []).append(entry_id)
    return index


def chunk(items: list[Any], size: int) -> list[list[Any]]:
    """Consecutive slices of ``size`` items; the last may be shorter."""
    if size < 1:
        raise ValueError("size must be >= 1")
    return [items[i : i + size] for i in range(0, len(items), size)]


def partition(
    document: dict[str, Any],
    batch_size: int,
    index: ReferenceIndex | None = None,
) -> list[Batch]:
    """
    Partition an export document into batches.

    Args:
        document: Parsed export (contentTypes, entries, assets, ...)
        batch_size: Maximum number of assets per batch
        index: Pre-built reference index (built from the entries if omitted)

    Returns:
        Batches in ascending number order
    """
    entries: list[dict[str, Any]] = list(document.get("entries") or [])
    assets: list[dict[str, Any]] = list(document.get("assets") or [])
    content_model = ContentModel.from_document(document)
    if index is None:
        index = build_reference_index(entries)

    asset_chunks = chunk(assets, batch_size)

    # The lowest batch holding any referenced asset claims the entry
    batch_of_asset: dict[str, int] = {}
    for position, asset_chunk in enumerate(asset_chunks):
        for asset in asset_chunk:
            batch_of_asset.setdefault(_sys_id(asset), position)

    claimed: list[list[dict[str, Any]]] = [[] for _ in asset_chunks]
    overflow: list[dict[str, Any]] = []
    for entry in entries:
        positions = [
            batch_of_asset[asset_id]
            for asset_id in index.entry_to_assets.get(_sys_id(entry), [])
            if asset_id in batch_of_asset
        ]
        if positions:
            claimed[min(positions)].append(entry)
        else:
            overflow.append(entry)

    batches = [
        Batch(
            number=position + 1,
            assets=asset_chunk,
            entries=claimed[position],
            content_model=content_model if position == 0 else None,
        )
        for position, asset_chunk in enumerate(asset_chunks)
    ]

    if overflow or (not batches and content_model.content_types):
        batches.append(
            Batch(
                number=len(batches) + 1,
                assets=[],
                entries=overflow,
                # Without assets there is no first asset batch to carry the model
                content_model=content_model if not batches else None,
                overflow=True,
            )
        )

    return batches


def asset_file_paths(asset: dict[str, Any]) -> Iterator[tuple[str, str | None]]:
    """
    Yield ``(locale, relative_path)`` for each file descriptor of an asset.

    The relative path is the descriptor URL without its scheme or leading
    ``//`` (``//images.ctfassets.net/space/id/hash/a.png`` becomes
    ``images.ctfassets.net/space/id/hash/a.png``). It is None when the
    descriptor has no usable URL.
    """
    files = (asset.get("fields") or {}).get("file") or {}
    for locale, descriptor in files.items():
        url = descriptor.get("url") if isinstance(descriptor, dict) else None
        yield locale, _relative_path(url) if url else None


def _relative_path(url: str) -> str | None:
    for prefix in ("https://", "http://", "//"):
        if url.startswith(prefix):
            url = url[len(prefix) :]
            break
    path = PurePosixPath(url.lstrip("/"))
    if not path.parts or ".." in path.parts:
        return None
    return str(path)


def copy_asset_files(
    assets: list[dict[str, Any]],
    source_root: Path,
    batch_dir: Path,
) -> CopyResult:
    """Copy each asset's binaries into the batch, keeping their relative paths."""
    result = CopyResult()
    for asset in assets:
        for locale, rel in asset_file_paths(asset):
            if rel is None:
                result.skipped += 1
                continue
            source = source_root / rel
            if not source.is_file():
                result.skipped += 1
                logger.warning("File not found: %s (asset %s, %s)", source, _sys_id(asset), locale)
                continue
            destination = batch_dir / rel
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
            result.copied += 1
    return result


def write_batches(
    batches: list[Batch],
    output_dir: Path,
    source_assets_dir: Path | None,
    *,
    batch_size: int,
    total_assets: int,
    total_entries: int,
    document_name: str = "exported-space.json",
    manifest_name: str = "manifest.json",
) -> Manifest:
    """
    Write one directory per batch plus the manifest.

    Each batch directory gets the batch document and copies of the asset
    binaries it references (when ``source_assets_dir`` is given).
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    manifest = Manifest(
        total_assets=total_assets,
        total_entries=total_entries,
        batch_size=batch_size,
    )

    for batch in batches:
        batch_dir = output_dir / batch.batch_id
        batch_dir.mkdir(parents=True, exist_ok=True)
        label = "overflow batch" if batch.overflow else "batch"
        logger.info("Processing %s %s", label, batch.key)
        logger.info("  - Assets: %d", len(batch.assets))
        logger.info("  - Entries: %d", len(batch.entries))

        write_json_atomic(batch_dir / document_name, batch.to_document())

        if source_assets_dir is not None and batch.assets:
            copied = copy_asset_files(batch.assets, source_assets_dir, batch_dir)
            logger.info("  - Copied %d asset files", copied.copied)
            if copied.skipped:
                logger.warning("  - Skipped %d missing files", copied.skipped)

        manifest.batches.append(batch.summary())

    save_manifest(output_dir / manifest_name, manifest)
    return manifest


def split_export(config: "MigrationConfig", clean: bool = True) -> Manifest:
    """
    Run the whole split step for a configuration.

    Reads the source export, rebuilds the output directory and writes the
    batches and manifest. Cleaning removes earlier batches, state and logs.
    """
    source_file, assets_dir = config.require_source()

    logger.info("Reading source export file %s", source_file)
    document = load_document(source_file)
    entries = document.get("entries") or []
    assets = document.get("assets") or []

    logger.info("Source data summary:")
    for key in ("contentTypes", "entries", "assets", "tags", "locales", "editorInterfaces"):
        logger.info("  - %s: %d", key, len(document.get(key) or []))

    index = build_reference_index(entries)
    logger.info("  - %d assets referenced by entries", len(index.asset_to_entries))
    logger.info("  - %d entries without asset references", index.entries_without_assets)

    if clean and config.output_dir.exists():
        logger.info("Cleaning output directory %s", config.output_dir)
        shutil.rmtree(config.output_dir)

    batches = partition(document, config.batch_size, index)
    logger.info("Splitting into %d batches of up to %d assets", len(batches), config.batch_size)

    manifest = write_batches(
        batches,
        config.output_dir,
        assets_dir,
        batch_size=config.batch_size,
        total_assets=len(assets),
        total_entries=len(entries),
        manifest_name=config.manifest_file.name,
    )
    logger.info("Manifest saved to %s", config.manifest_file)
    return manifest
