import logging
import os
from collections.abc import Callable
from importlib import metadata
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import click
from appdirs import user_log_dir
from rich.console import Console
from rich.logging import RichHandler

from nrlayers.cli.commands import load_manifest, print_report, run_hook
from nrlayers.exceptions import ConfigurationError, ManifestNotFoundError
from nrlayers.manifest import Manifest

console = Console()

app_logger = logging.getLogger("nrlayers")
logger = logging.getLogger(__name__)


def setup_logging(verbose: int) -> Path:
    """Log everything to a daily rotated file and, with -v or -vv, to the console."""
    app_logger.setLevel(logging.DEBUG)
    for noisy in ("botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    log_dir = Path(user_log_dir("nrlayers"))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file_path = log_dir / "nrlayers.log"
    if not any(isinstance(h, TimedRotatingFileHandler) for h in app_logger.handlers):
        file_handler = TimedRotatingFileHandler(
            filename=str(log_file_path), when="D", backupCount=7, encoding="utf-8"
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        app_logger.addHandler(file_handler)

    if verbose > 0:
        console_handler = RichHandler(
            console=console, show_time=False, markup=False, tracebacks_suppress=[click]
        )
        console_handler.setLevel(logging.INFO if verbose == 1 else logging.DEBUG)
        app_logger.addHandler(console_handler)
        console.print(f"[italic dim]Logs saved to: {log_file_path}[/]")
    return log_file_path


def _handle_error(error: Exception) -> None:
    if os.getenv("NRLAYERS_DEBUG", "0") == "1":
        raise error
    raise SystemExit(1) from None


def manifest_options(func: Callable) -> Callable:
    func = click.option("--profile", default=None, help="AWS profile to use")(func)
    func = click.option("--stage", "-s", default=None, help="Stage, overrides provider.stage")(
        func
    )
    func = click.option("--region", "-r", default=None, help="Region, overrides provider.region")(
        func
    )
    return click.option(
        "--config",
        "-c",
        "manifest_path",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        default=None,
        help="Path to serverless.yml. Searched in parent directories when omitted.",
    )(func)


@click.group(invoke_without_command=True)
@click.option(
    "--verbose", "-v", count=True, help="Increase verbosity. -v for INFO, -vv for DEBUG logs."
)
@click.option("--version", is_flag=True, help="Show nrlayers version.")
@click.pass_context
def cli(ctx: click.Context, verbose: int, version: bool) -> None:
    if version:
        _version()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        ctx.exit(0)

    setup_logging(verbose)


@click.command()
@manifest_options
@click.option("--framework-version", default=None, help="Serverless Framework version in use")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the instrumented manifest here instead of printing it.",
)
@click.option("--in-place", is_flag=True, help="Overwrite the source manifest.")
def package(  # noqa: PLR0913
    manifest_path: Path | None,
    region: str | None,
    stage: str | None,
    profile: str | None,
    framework_version: str | None,
    output: Path | None,
    in_place: bool,
) -> None:
    """Adds the New Relic layer, wrapper handler and environment to every function."""
    if output and in_place:
        raise click.UsageError("--output and --in-place cannot be used together")
    manifest = _load(manifest_path, region, stage, profile)
    report = run_hook(
        manifest, "before:package:createDeploymentArtifacts", framework_version=framework_version
    )

    if report and not report.ok:
        # Failed functions may be partly instrumented, so nothing is written
        print_report(report)
        raise SystemExit(1)

    if in_place:
        manifest.save()
    elif output:
        manifest.save(output)
    else:
        click.echo(manifest.dump())
    print_report(report)


@click.command()
@manifest_options
def deploy(
    manifest_path: Path | None, region: str | None, stage: str | None, profile: str | None
) -> None:
    """Ensures every deployed function streams its logs to New Relic."""
    manifest = _load(manifest_path, region, stage, profile)
    report = run_hook(manifest, "after:deploy:deploy")
    print_report(report)
    if report and not report.ok:
        raise SystemExit(1)


@click.command()
@manifest_options
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
def remove(
    manifest_path: Path | None,
    region: str | None,
    stage: str | None,
    profile: str | None,
    yes: bool,
) -> None:
    """Removes the New Relic log subscription filter from every function."""
    manifest = _load(manifest_path, region, stage, profile)
    if not yes and not click.confirm(
        f"Remove New Relic log filters from {len(manifest.functions)} function(s)?"
    ):
        console.print("Removal cancelled.")
        return
    report = run_hook(manifest, "before:remove:remove")
    print_report(report)
    if report and not report.ok:
        raise SystemExit(1)


@click.command()
def version() -> None:
    """Shows version and exit."""
    _version()


def _load(
    manifest_path: Path | None, region: str | None, stage: str | None, profile: str | None
) -> Manifest:
    try:
        return load_manifest(manifest_path, region=region, stage=stage, profile=profile)
    except (ManifestNotFoundError, ConfigurationError) as e:
        logger.exception("Failed to load manifest")
        console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        _handle_error(e)


def _version() -> None:
    try:
        nrlayers_version = metadata.version("nrlayers")
    except metadata.PackageNotFoundError:
        nrlayers_version = "unknown"
    console.print(f"nrlayers version: {nrlayers_version}")
    raise SystemExit(0)


cli.add_command(package)
cli.add_command(deploy)
cli.add_command(remove)
cli.add_command(version)
