"""Archon build updater - CLI entry point."""

import json
import sys

import click

from archon_updater.data.config import ConfigError, ConfigManager
from archon_updater.orchestrator import Orchestrator
from archon_updater.utils.errors import ArchonUpdaterError
from archon_updater.utils.logger import get_logger, setup_logger


def abort(log, action: str, error: ArchonUpdaterError) -> None:
    """Log a run-aborting error with its type and severity, then exit."""
    log.error(f"{action}: {error.error_type.value} ({error.severity.name}) - {error}")
    sys.exit(1)


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default=None,
    help="Set logging level (overrides settings.yaml)",
)
@click.option(
    "--log-dir",
    type=click.Path(),
    default=None,
    help="Also write log files to this directory",
)
@click.option(
    "--config-dir",
    type=click.Path(),
    default=ConfigManager.DEFAULT_CONFIG_DIR,
    help="Directory containing settings.yaml",
)
@click.pass_context
def cli(ctx, log_level, log_dir, config_dir):
    """Archon build updater.

    Fetches recommended talent builds from Archon.gg and merges them into
    the addon's SavedVariables file without touching hand-made builds.
    """
    ctx.ensure_object(dict)

    setup_logger(level=log_level or "INFO", console=True, file=False)
    config_manager = ConfigManager(config_dir=config_dir)

    try:
        settings = config_manager.load()
    except ConfigError as e:
        abort(get_logger(), "Invalid settings", e)

    setup_logger(
        level=log_level or settings.log_level,
        log_dir=log_dir or settings.log_dir,
        console=True,
        file=log_dir is not None,
    )

    ctx.obj["logger"] = get_logger()
    ctx.obj["config_manager"] = config_manager
    ctx.obj["settings"] = settings


@cli.command()
@click.argument("selection_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--dry-run", is_flag=True, help="Fetch and merge, but do not write the file")
@click.option("--format", "fmt", type=click.Choice(["json", "text"]), default="text")
@click.pass_context
def update(ctx, selection_file: str, dry_run: bool, fmt: str):
    """Fetch builds for a selection and update the data file."""
    log = ctx.obj["logger"]

    try:
        selection = ctx.obj["config_manager"].load_selection(selection_file)
        orchestrator = Orchestrator(settings=ctx.obj["settings"])
        report = orchestrator.run(selection, dry_run=dry_run)
    except ArchonUpdaterError as e:
        abort(log, "Update failed", e)

    if fmt == "json":
        click.echo(json.dumps({
            "status": report.status,
            "output_path": report.output_path,
            "written": report.written,
            "found": report.found,
            "not_available": report.not_available,
            "errors": report.errors,
            "by_category": {
                name: {
                    "found": c.found,
                    "not_available": c.not_available,
                    "errors": c.errors,
                }
                for name, c in report.counts.items()
            },
            "failures": [
                {
                    "target": f.target.describe(),
                    "type": f.error_type.value,
                    "reason": f.reason,
                    "url": f.url,
                }
                for f in report.failures
            ],
        }, indent=2))
    else:
        click.echo(report.format_text())


@cli.command()
@click.argument("selection_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def targets(ctx, selection_file: str):
    """List the pages an update would request."""
    log = ctx.obj["logger"]

    try:
        selection = ctx.obj["config_manager"].load_selection(selection_file)
        plan = Orchestrator(settings=ctx.obj["settings"]).plan(selection)
    except ArchonUpdaterError as e:
        abort(log, "Invalid selection", e)

    for target, url in plan:
        click.echo(f"{target.describe():<60} {url}")
    click.echo(f"{len(plan)} targets")


@cli.command()
def version():
    """Show version information."""
    from archon_updater import __version__

    click.echo(f"Archon build updater v{__version__}")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
