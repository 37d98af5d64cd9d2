"""Tests for the command-line interface."""

import json
import logging

import httpx
import pytest
import respx
from click.testing import CliRunner

from space_batcher.cli import cli
from space_batcher.config import TOKEN_ENV_VAR
from space_batcher.logs import PACKAGE_LOGGER
from space_batcher.models import MigrationState
from space_batcher.state import StateStore
from tests.fixtures.exports import make_asset, make_content_type, make_entry, make_export

BASE = "https://api.contentful.com/spaces/space1/environments/master"


@pytest.fixture(autouse=True)
def console_handlers():
    """Drop the handlers each invocation installs on the swapped stderr."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    before = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers = before
    logger.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def document():
    return make_export(asset_count=3, entries=[make_entry("e1", "a2"), make_entry("e2")])


@pytest.fixture
def config_file(tmp_path, document):
    export_dir = tmp_path / "contentful-export"
    export_dir.mkdir()
    (export_dir / "exported-space.json").write_text(json.dumps(document))
    path = tmp_path / "batch-config.json"
    path.write_text(
        json.dumps(
            {
                "batchSize": 2,
                "sourceFile": "./contentful-export/exported-space.json",
                "outputDir": "./batches",
                "targetSpace": {"spaceId": "space1", "managementToken": "CFPAT-test"},
                "rateLimits": {"enabled": False},
            }
        )
    )
    return path


def invoke(runner, config_file, *args, **kwargs):
    return runner.invoke(cli, ["--config", str(config_file), *args], **kwargs)


class TestHelp:
    """Tests for CLI help output."""

    def test_group_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("split", "import", "resume", "status", "validate", "cleanup-drafts"):
            assert command in result.output

    def test_import_help(self, runner):
        result = runner.invoke(cli, ["import", "--help"])
        assert result.exit_code == 0
        assert "--start-from" in result.output


class TestSplit:
    """Tests for the split command."""

    def test_split(self, runner, config_file, tmp_path):
        result = invoke(runner, config_file, "split")

        assert result.exit_code == 0, result.output
        assert "✓ Created 3 batches" in result.output
        assert "batch-01: 2 assets, 0 entries, content model" in result.output
        assert (tmp_path / "batches" / "manifest.json").exists()
        assert (tmp_path / "batches" / "batch-03" / "exported-space.json").exists()

    def test_missing_config(self, runner, tmp_path):
        result = invoke(runner, tmp_path / "nope.json", "split")
        assert result.exit_code == 1
        assert "✗" in result.output

    def test_missing_source(self, runner, config_file, tmp_path):
        (tmp_path / "contentful-export" / "exported-space.json").unlink()
        result = invoke(runner, config_file, "split")
        assert result.exit_code == 1


class TestImport:
    """Tests for the import command preconditions."""

    def test_requires_split(self, runner, config_file):
        result = invoke(runner, config_file, "import")
        assert result.exit_code == 1
        assert "space-batcher split" in result.output

    def test_requires_token(self, runner, tmp_path, monkeypatch):
        monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)
        path = tmp_path / "batch-config.json"
        path.write_text(json.dumps({"targetSpace": {"spaceId": "space1"}}))

        result = invoke(runner, path, "import")

        assert result.exit_code == 1
        assert TOKEN_ENV_VAR in result.output

    def test_start_from_must_be_positive(self, runner, config_file):
        result = invoke(runner, config_file, "import", "--start-from", "0")
        assert result.exit_code == 2


class TestResume:
    """Tests for the resume command."""

    def test_requires_state(self, runner, config_file):
        invoke(runner, config_file, "split")
        result = invoke(runner, config_file, "resume")
        assert result.exit_code == 1
        assert "space-batcher import" in result.output

    def test_nothing_to_resume(self, runner, config_file, tmp_path):
        invoke(runner, config_file, "split")
        StateStore(tmp_path / "batches" / "import-state.json").save(
            MigrationState(completed_batches=["01", "02", "03"])
        )

        result = invoke(runner, config_file, "resume")

        assert result.exit_code == 0
        assert "nothing to resume" in result.output

    def test_declined_prompt(self, runner, config_file, tmp_path):
        invoke(runner, config_file, "split")
        state = MigrationState(completed_batches=["01"])
        state.mark_failed("02", "VersionMismatch")
        StateStore(tmp_path / "batches" / "import-state.json").save(state)

        result = invoke(runner, config_file, "resume", input="n\n")

        assert result.exit_code == 1
        assert "Batch 02: VersionMismatch" in result.output
        assert "Resume from batch 02" in result.output


class TestStatus:
    """Tests for the status command."""

    def test_before_import(self, runner, config_file):
        invoke(runner, config_file, "split")
        result = invoke(runner, config_file, "status")
        assert result.exit_code == 0
        assert "Batches: 3" in result.output
        assert "No import started yet" in result.output

    def test_progress(self, runner, config_file, tmp_path):
        invoke(runner, config_file, "split")
        state = MigrationState(completed_batches=["01"], current_batch="02")
        StateStore(tmp_path / "batches" / "import-state.json").save(state)

        result = invoke(runner, config_file, "status")

        assert "Completed: 1/3" in result.output
        assert "In progress: 02" in result.output

    def test_requires_split(self, runner, config_file):
        result = invoke(runner, config_file, "status")
        assert result.exit_code == 1


def mock_target(entries=2, assets=3):
    respx.get(BASE).mock(return_value=httpx.Response(200, json={"sys": {"id": "master"}}))
    collections = {
        "content_types": [{"sys": {"id": "article"}}],
        "entries": [make_entry(f"e{i}") for i in range(entries)],
        "assets": [make_asset(f"a{i}") for i in range(assets)],
        "tags": [{"sys": {"id": "featured"}}],
        "locales": [{"code": "en-US"}],
    }
    for name, items in collections.items():
        respx.get(f"{BASE}/{name}").mock(
            return_value=httpx.Response(200, json={"items": items, "total": len(items)})
        )


class TestValidate:
    """Tests for the validate command."""

    def test_counts_match(self, runner, config_file):
        with respx.mock:
            mock_target()
            result = invoke(runner, config_file, "validate")

        assert result.exit_code == 0, result.output
        assert "Target entries published: 2/2" in result.output
        assert "✓ Validation passed" in result.output

    def test_missing_assets(self, runner, config_file):
        with respx.mock:
            mock_target(assets=2)
            result = invoke(runner, config_file, "validate")

        assert result.exit_code == 1
        assert "Diff: -1 (-33.33%)" in result.output
        assert "✗ Validation failed" in result.output

    def test_target_unreachable(self, runner, config_file):
        with respx.mock:
            respx.get(BASE).mock(
                return_value=httpx.Response(401, json={"message": "Access token invalid"})
            )
            result = invoke(runner, config_file, "validate")

        assert result.exit_code == 1
        assert "Failed to fetch target data" in result.output


class TestCleanupDrafts:
    """Tests for the cleanup-drafts command."""

    def test_writes_report_and_cleaned_export(self, runner, tmp_path):
        draft = make_entry("e2")
        draft["sys"].pop("publishedVersion")
        source = make_export(
            entries=[make_entry("e1"), draft],
            content_types=[make_content_type(required=("body",))],
        )
        input_path = tmp_path / "export.json"
        input_path.write_text(json.dumps(source))
        output_path = tmp_path / "cleaned.json"
        report_path = tmp_path / "report.json"

        result = runner.invoke(
            cli,
            [
                "cleanup-drafts",
                "--input",
                str(input_path),
                "--output",
                str(output_path),
                "--report",
                str(report_path),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Items to remove: 1" in result.output
        cleaned = json.loads(output_path.read_text())
        assert [e["sys"]["id"] for e in cleaned["entries"]] == ["e1"]
        report = json.loads(report_path.read_text())
        assert report["invalidDrafts"][0]["missingFields"] == ["body"]

    def test_missing_input(self, runner, tmp_path):
        result = runner.invoke(cli, ["cleanup-drafts", "--input", str(tmp_path / "nope.json")])
        assert result.exit_code == 1
