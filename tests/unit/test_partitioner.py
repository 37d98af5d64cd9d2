"""Tests for the relationship partitioner."""

import json
from dataclasses import replace

import pytest

from space_batcher.exceptions import ConfigurationError, ExportReadError
from space_batcher.partitioner import (
    asset_file_paths,
    build_reference_index,
    chunk,
    copy_asset_files,
    partition,
    split_export,
)
from tests.fixtures.exports import make_asset, make_entry, make_export


def entry_ids(batch):
    return [e["sys"]["id"] for e in batch.entries]


def asset_ids(batch):
    return [a["sys"]["id"] for a in batch.assets]


class TestChunk:
    """Tests for chunk helper."""

    def test_last_chunk_shorter(self):
        assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert chunk([], 3) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunk([1], 0)


class TestReferenceIndex:
    """Tests for build_reference_index."""

    def test_both_directions(self):
        index = build_reference_index(
            [make_entry("e1", "a1", "a2"), make_entry("e2", "a2"), make_entry("e3")]
        )
        assert index.entry_to_assets == {"e1": ["a1", "a2"], "e2": ["a2"], "e3": []}
        assert index.asset_to_entries == {"a1": ["e1"], "a2": ["e1", "e2"]}
        assert index.entries_without_assets == 1


class TestPartition:
    """Tests for partition."""

    def test_thousand_assets_in_batches_of_400(self):
        document = make_export(asset_count=1000)
        batches = partition(document, 400)
        assert [len(b.assets) for b in batches] == [400, 400, 200]
        assert [b.number for b in batches] == [1, 2, 3]
        assert not any(b.overflow for b in batches)

    def test_overflow_batch_for_entries_without_assets(self):
        document = make_export(asset_count=1000, entries=[make_entry("lonely")])
        batches = partition(document, 400)
        assert len(batches) == 4
        assert batches[-1].overflow is True
        assert batches[-1].assets == []
        assert entry_ids(batches[-1]) == ["lonely"]

    def test_first_claim_wins(self):
        """An entry referencing assets in batches 1 and 2 lands in batch 1 only."""
        document = make_export(
            asset_count=1000,
            entries=[make_entry("e1", "a750", "a50"), make_entry("e2", "a750")],
        )
        batches = partition(document, 400)
        assert entry_ids(batches[0]) == ["e1"]
        assert entry_ids(batches[1]) == ["e2"]
        assert entry_ids(batches[2]) == []

    def test_every_entry_exactly_once(self):
        entries = [make_entry(f"e{i}", f"a{(i * 7) % 10}", f"a{i % 10}") for i in range(25)]
        entries += [make_entry("x1"), make_entry("x2", "missing-asset")]
        document = make_export(asset_count=10, entries=entries)

        batches = partition(document, 3)

        seen = [entry_id for b in batches for entry_id in entry_ids(b)]
        assert sorted(seen) == sorted(e["sys"]["id"] for e in entries)
        assert len(seen) == len(set(seen))

    def test_every_asset_exactly_once(self):
        document = make_export(asset_count=10)
        batches = partition(document, 3)
        seen = [asset_id for b in batches for asset_id in asset_ids(b)]
        assert seen == [f"a{i}" for i in range(10)]
        assert [len(b.assets) for b in batches] == [3, 3, 3, 1]

    def test_entries_keep_source_order(self):
        entries = [make_entry("e3", "a0"), make_entry("e1", "a1"), make_entry("e2", "a0")]
        batches = partition(make_export(asset_count=2, entries=entries), 2)
        assert entry_ids(batches[0]) == ["e3", "e1", "e2"]

    def test_content_model_only_on_first_batch(self):
        batches = partition(make_export(asset_count=5, entries=[make_entry("x")]), 2)
        assert batches[0].has_content_model
        assert all(not b.has_content_model for b in batches[1:])
        assert all(b.to_document()["contentTypes"] == [] for b in batches[1:])
        assert batches[0].to_document()["locales"][0]["code"] == "en-US"

    def test_no_assets_puts_model_on_overflow_batch(self):
        batches = partition(make_export(entries=[make_entry("e1")]), 400)
        assert len(batches) == 1
        assert batches[0].overflow is True
        assert batches[0].has_content_model
        assert entry_ids(batches[0]) == ["e1"]

    def test_empty_export(self):
        assert partition(make_export(content_types=[]), 400) == []

    def test_model_only_export(self):
        batches = partition(make_export(), 400)
        assert len(batches) == 1
        assert batches[0].has_content_model


class TestAssetFiles:
    """Tests for asset binary paths and copying."""

    def test_protocol_relative_url(self):
        paths = list(asset_file_paths(make_asset("a1")))
        assert paths == [("en-US", "images.example.net/space/a1/hash/a1.png")]

    def test_https_url(self):
        asset = make_asset("a1")
        asset["fields"]["file"]["en-US"]["url"] = "https://cdn.example.net/x/y.png"
        assert list(asset_file_paths(asset)) == [("en-US", "cdn.example.net/x/y.png")]

    def test_traversal_rejected(self):
        asset = make_asset("a1")
        asset["fields"]["file"]["en-US"]["url"] = "//cdn.example.net/../../etc/passwd"
        assert list(asset_file_paths(asset)) == [("en-US", None)]

    def test_copy_keeps_relative_path(self, tmp_path):
        source = tmp_path / "export"
        binary = source / "images.example.net/space/a1/hash/a1.png"
        binary.parent.mkdir(parents=True)
        binary.write_bytes(b"png")
        batch_dir = tmp_path / "batch-01"

        result = copy_asset_files([make_asset("a1"), make_asset("a2")], source, batch_dir)

        assert result.copied == 1
        assert result.skipped == 1
        copied = batch_dir / "images.example.net/space/a1/hash/a1.png"
        assert copied.read_bytes() == b"png"


class TestSplitExport:
    """Tests for split_export."""

    def _write_source(self, config, document):
        config.source_file.parent.mkdir(parents=True, exist_ok=True)
        config.source_file.write_text(json.dumps(document))

    def test_writes_batches_and_manifest(self, config):
        document = make_export(
            asset_count=3,
            entries=[make_entry("e1", "a2"), make_entry("e2")],
        )
        self._write_source(config, document)

        manifest = split_export(config)

        assert manifest.total_batches == 3
        assert manifest.total_assets == 3
        assert manifest.total_entries == 2
        data = json.loads(config.manifest_file.read_text())
        assert data["totalBatches"] == 3
        assert data["batches"][0] == {
            "batchNumber": 1,
            "batchId": "batch-01",
            "assets": 2,
            "entries": 0,
            "hasContentModel": True,
        }
        second = json.loads((config.output_dir / "batch-02" / "exported-space.json").read_text())
        assert [e["sys"]["id"] for e in second["entries"]] == ["e1"]
        assert second["contentTypes"] == []
        overflow = json.loads((config.output_dir / "batch-03" / "exported-space.json").read_text())
        assert [e["sys"]["id"] for e in overflow["entries"]] == ["e2"]

    def test_cleans_previous_output(self, config):
        self._write_source(config, make_export(asset_count=1))
        stale = config.output_dir / "batch-09"
        stale.mkdir(parents=True)

        split_export(config)

        assert not stale.exists()
        assert (config.output_dir / "batch-01").is_dir()

    def test_missing_source(self, config):
        with pytest.raises(ExportReadError):
            split_export(config)

    def test_source_not_configured(self, config):
        with pytest.raises(ConfigurationError):
            split_export(replace(config, source_file=None))
