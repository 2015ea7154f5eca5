import logging
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from nrlayers.manifest import Manifest
from nrlayers.plugin import NewRelicLayerPlugin, RunReport
from nrlayers.project import find_manifest

logger = logging.getLogger(__name__)

# stdout may carry the instrumented manifest, so summaries go to stderr
console = Console(stderr=True)

_STATUS_STYLES = {
    "instrumented": "green",
    "configured": "green",
    "unchanged": "dim",
    "skipped": "yellow",
    "failed": "bold red",
}


def load_manifest(
    manifest_path: Path | None = None,
    *,
    region: str | None = None,
    stage: str | None = None,
    profile: str | None = None,
) -> Manifest:
    path = manifest_path or find_manifest()
    manifest = Manifest.load(path)
    return manifest.with_overrides(region=region, stage=stage, profile=profile)


def run_hook(
    manifest: Manifest, hook: str, *, framework_version: str | None = None
) -> RunReport | None:
    plugin = NewRelicLayerPlugin(manifest, framework_version=framework_version)
    return plugin.invoke(hook)


def print_report(report: RunReport | None) -> None:
    if report is None:
        return

    if report.skipped_reason:
        console.print(f"[yellow]Skipped {report.hook}:[/yellow] {report.skipped_reason}")
        return

    if not report.outcomes:
        console.print(f"No functions to process for {report.hook}.")
        return

    for outcome in report.outcomes:
        style = _STATUS_STYLES[outcome.status]
        detail = f" - {escape(outcome.detail)}" if outcome.detail else ""
        console.print(
            f"  [{style}]{outcome.status:>12}[/{style}]  {outcome.function}{detail}",
            highlight=False,
        )

    failures = len(report.failures)
    if failures:
        console.print(f"\n[bold red]✗ {report.hook}: {failures} function(s) failed[/bold red]")
    else:
        console.print(f"\n[bold green]✓[/bold green] {report.hook} completed")
