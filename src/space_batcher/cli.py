"""Command-line interface for space-batcher."""

import asyncio
import sys
from pathlib import Path
from typing import NoReturn

import click
import httpx

from .cleanup import analyze_drafts, clean_export
from .client import ManagementClient
from .config import MigrationConfig, load_config
from .driver import MigrationDriver
from .exceptions import PreconditionError, RemoteError, SpaceBatcherError
from .limiter import AdmissionController
from .logs import configure_logging
from .models import ImportSummary
from .partitioner import split_export
from .resume import ResumeCoordinator
from .state import StateStore
from .storage import load_document, load_manifest, write_json_atomic
from .validation import CheckStatus, ItemTotals, compare_counts, count_source, fetch_target_counts

STATUS_MARKS = {
    CheckStatus.PASSED: "✓",
    CheckStatus.FAILED: "✗",
    CheckStatus.WARNING: "!",
}


def _fail(error: SpaceBatcherError) -> NoReturn:
    click.echo(f"✗ {error}", err=True)
    hint = getattr(error, "hint", None)
    if hint:
        click.echo(f"  {hint}", err=True)
    sys.exit(1)


def _load(ctx: click.Context) -> MigrationConfig:
    try:
        return load_config(ctx.obj["config_path"])
    except PreconditionError as e:
        _fail(e)


def _print_summary(summary: ImportSummary) -> None:
    click.echo()
    click.echo(f"Total batches: {summary.total_batches}")
    click.echo(f"  Succeeded: {len(summary.succeeded)}")
    click.echo(f"  Failed: {len(summary.failed)}")
    click.echo(f"  Skipped (already completed): {len(summary.skipped)}")
    if summary.failed:
        click.echo(f"  Failed batches: {', '.join(summary.failed)}")
        click.echo("Run 'space-batcher resume' to retry them.")


@click.group()
@click.version_option(package_name="space-batcher")
@click.option(
    "--config",
    "-c",
    "config_path",
    default="batch-config.json",
    envvar="SPACE_BATCHER_CONFIG",
    show_default=True,
    help="Batch configuration file (JSON or YAML)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str, verbose: bool) -> None:
    """Split a space export into batches and import them under rate limits."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    configure_logging(verbose)


@cli.command()
@click.pass_context
def split(ctx: click.Context) -> None:
    """Split the source export into batches and write the manifest."""
    config = _load(ctx)
    try:
        manifest = split_export(config)
    except PreconditionError as e:
        _fail(e)

    click.echo(f"✓ Created {manifest.total_batches} batches in {config.output_dir}")
    for batch in manifest.batches:
        model = ", content model" if batch.has_content_model else ""
        click.echo(f"  {batch.batch_id}: {batch.assets} assets, {batch.entries} entries{model}")


@cli.command("import")
@click.option(
    "--start-from",
    default=1,
    type=click.IntRange(min=1),
    show_default=True,
    help="First batch number to import",
)
@click.pass_context
def import_cmd(ctx: click.Context, start_from: int) -> None:
    """Import all batches into the target environment."""
    config = _load(ctx)
    try:
        config.require_target()
        summary = asyncio.run(MigrationDriver(config).run(start_from=start_from))
    except PreconditionError as e:
        _fail(e)

    _print_summary(summary)
    if not summary.ok:
        sys.exit(1)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def resume(ctx: click.Context, yes: bool) -> None:
    """Resume an interrupted import."""
    config = _load(ctx)
    coordinator = ResumeCoordinator(config)
    try:
        state, plan = coordinator.plan()
    except PreconditionError as e:
        _fail(e)

    click.echo(f"Started at: {state.started_at}")
    click.echo(f"Completed batches: {len(state.completed_batches)}")
    click.echo(f"Failed batches: {len(state.failed_batches)}")
    for failure in state.failed_batches:
        click.echo(f"  - Batch {failure.batch}: {failure.error}")
    if state.current_batch is not None:
        click.echo(f"Batch in progress: {state.current_batch}")

    if plan.done:
        click.echo("✓ All batches completed, nothing to resume")
        return

    click.echo(f"Resume from batch {plan.start_from:02d} ({plan.reason})")
    if not yes:
        click.confirm("Continue?", abort=True)

    try:
        config.require_target()
        summary = asyncio.run(coordinator.resume())
    except PreconditionError as e:
        _fail(e)

    if summary is not None:
        _print_summary(summary)
        if not summary.ok:
            sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show import progress."""
    config = _load(ctx)
    store = StateStore(config.state_file)
    try:
        manifest = load_manifest(config.manifest_file)
    except PreconditionError as e:
        _fail(e)

    click.echo(f"Batches: {manifest.total_batches}")
    click.echo(f"  Assets: {manifest.total_assets}")
    click.echo(f"  Entries: {manifest.total_entries}")

    if not store.exists():
        click.echo("No import started yet")
        return

    state = store.load()
    click.echo(f"Started at: {state.started_at}")
    click.echo(f"Completed: {len(state.completed_batches)}/{manifest.total_batches}")
    click.echo(f"Failed: {len(state.failed_batches)}")
    for failure in state.failed_batches:
        click.echo(f"  - Batch {failure.batch}: {failure.error}")
    if state.current_batch is not None:
        click.echo(f"In progress: {state.current_batch}")


async def _target_counts(config: MigrationConfig) -> ItemTotals:
    controller = AdmissionController.from_options(config.rate_limits)
    on_response = controller.update_from_headers if controller else None
    admit = controller.admit if controller else None
    async with ManagementClient(config.require_target(), on_response=on_response) as env:
        if admit is not None:
            await admit(env.connect)
        else:
            await env.connect()
        return await fetch_target_counts(env, admit)


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Compare the source export with the target environment."""
    config = _load(ctx)
    try:
        source_file, _ = config.require_source()
        source = count_source(load_document(source_file))
        target = asyncio.run(_target_counts(config))
    except PreconditionError as e:
        _fail(e)
    except (RemoteError, httpx.HTTPError) as e:
        click.echo(f"✗ Failed to fetch target data: {e}", err=True)
        sys.exit(1)

    click.echo(f"Target entries published: {target.published_entries}/{target.entries}")
    click.echo(f"Target assets published: {target.published_assets}/{target.assets}")
    click.echo()

    report = compare_counts(source, target)
    click.echo("=" * 60)
    for check in report.checks:
        sign = "+" if check.diff >= 0 else ""
        click.echo(
            f"{STATUS_MARKS[check.status]} {check.name:<20} "
            f"Source: {check.source:>6} | Target: {check.target:>6} | "
            f"Diff: {sign}{check.diff} ({check.diff_percent:.2f}%)"
        )
    click.echo("=" * 60)

    store = StateStore(config.state_file)
    if store.exists():
        state = store.load()
        click.echo(f"Completed batches: {len(state.completed_batches)}")
        click.echo(f"Failed batches: {len(state.failed_batches)}")
        for failure in state.failed_batches:
            click.echo(f"  - Batch {failure.batch}: {failure.error}")

    click.echo(f"Passed: {report.passed}  Failed: {report.failed}  Warnings: {report.warnings}")
    if not report.ok:
        click.echo("✗ Validation failed", err=True)
        click.echo(f"  Check error logs in: {config.log_dir}", err=True)
        sys.exit(1)
    if report.warnings:
        click.echo("✓ Validation passed with warnings")
    else:
        click.echo("✓ Validation passed")


@cli.command("cleanup-drafts")
@click.option(
    "--input",
    "input_path",
    default="contentful-export/exported-space.json",
    show_default=True,
    type=click.Path(path_type=Path),
    help="Export document to clean",
)
@click.option(
    "--output",
    "output_path",
    default="contentful-export/exported-space-cleaned.json",
    show_default=True,
    type=click.Path(path_type=Path),
    help="Where to write the cleaned export",
)
@click.option(
    "--report",
    "report_path",
    default="draft-cleanup-report.json",
    show_default=True,
    type=click.Path(path_type=Path),
    help="Where to write the JSON report",
)
def cleanup_drafts(input_path: Path, output_path: Path, report_path: Path) -> None:
    """Remove drafts that cannot be imported from an export."""
    try:
        document = load_document(input_path)
    except PreconditionError as e:
        _fail(e)

    report = analyze_drafts(document)
    summary = report.to_dict()["summary"]
    click.echo(f"Total entries: {summary['totalEntries']}")
    click.echo(f"  Valid published: {summary['validPublishedEntries']}")
    click.echo(f"  Valid drafts: {summary['validDraftEntries']}")
    click.echo(f"  Invalid drafts: {summary['invalidDrafts']}")
    click.echo(f"  Orphan drafts: {summary['orphanDrafts']}")
    click.echo(f"Total assets: {summary['totalAssets']}")
    click.echo(f"  Valid published: {summary['validPublishedAssets']}")
    click.echo(f"  Valid drafts: {summary['validDraftAssets']}")
    click.echo(f"  Invalid drafts: {summary['invalidAssetDrafts']}")
    click.echo(f"Items to remove: {report.total_to_remove}")

    write_json_atomic(report_path, report.to_dict())
    write_json_atomic(output_path, clean_export(document, report))
    click.echo(f"✓ Report saved to {report_path}")
    click.echo(f"✓ Cleaned export saved to {output_path}")


if __name__ == "__main__":
    cli()
