"""CLI application for cratefix."""

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from core.errors import CrateFixError
from core.models import (
    DependencyKind,
    DependencyTable,
    EditOptions,
    OperationReport,
    UpgradeMethod,
)
from core.operations import (
    AddRequest,
    add_dependencies,
    remove_dependencies,
    tidy_manifests,
    upgrade_dependencies,
)
from core.registry import DEFAULT_INDEX_URL, CratesIndexRegistry
from core.source import SourceInspector
from core.storage import find_manifest

console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)

app = typer.Typer(
    name="cratefix",
    help="cratefix - Add, remove, upgrade and tidy dependencies in Cargo.toml manifests",
    add_completion=False,
)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def select_table(dev: bool, build: bool, target: str | None) -> DependencyTable:
    if dev and build:
        err_console.print("Error: --dev and --build are mutually exclusive", style="red")
        raise typer.Exit(1)
    kind = DependencyKind.NORMAL
    if dev:
        kind = DependencyKind.DEVELOPMENT
    elif build:
        kind = DependencyKind.BUILD
    return DependencyTable(kind=kind, target=target)


def make_registry(index_url: str, timeout: float, max_concurrency: int) -> CratesIndexRegistry:
    return CratesIndexRegistry(index_url=index_url, timeout=timeout, max_concurrency=max_concurrency)


def print_report(report: OperationReport, quiet: bool) -> None:
    """Print changes (unless quiet) and failures (always)."""
    if not quiet:
        for change in report.changes:
            where = f"{change.manifest}" if change.manifest else ""
            if change.action == "upgraded":
                console.print(
                    f"    [bold green]Upgrading[/bold green] {change.name} v{change.old} -> v{change.new}"
                )
            elif change.action == "sorted":
                console.print(f"    [bold green]Sorted[/bold green] {escape('[' + change.name + ']')} in {where}")
            elif change.action == "removed":
                console.print(f"    [bold green]Removing[/bold green] {change.name} from {change.table}")
            elif change.action == "updated":
                console.print(
                    f"    [bold green]Updating[/bold green] {change.name} v{change.new} in {change.table}"
                )
            else:
                console.print(
                    f"    [bold green]Adding[/bold green] {change.name} v{change.new} to {change.table}"
                )
        for note in report.notes:
            console.print(note, style="dim", markup=False)

    for failure in report.failures:
        location = f" ({failure.manifest})" if failure.manifest else ""
        err_console.print(f"Error: {failure.name}{location}: {failure.message}", style="red", markup=False)


def finish(report: OperationReport, quiet: bool) -> None:
    print_report(report, quiet)
    if not report.ok:
        raise typer.Exit(1)


def locate(manifest_path: Path | None) -> Path:
    try:
        return find_manifest(manifest_path)
    except CrateFixError as e:
        err_console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)


ManifestPathOption = typer.Option(None, "--manifest-path", help="Path to Cargo.toml")
AllOption = typer.Option(False, "--all", help="Apply to every package in the workspace")
QuietOption = typer.Option(False, "--quiet", "-q", help="Do not print any output in case of success")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Show debug logging")
DevOption = typer.Option(False, "--dev", "-D", help="Use the dev-dependencies table")
BuildOption = typer.Option(False, "--build", "-B", help="Use the build-dependencies table")
TargetOption = typer.Option(None, "--target", help="Scope the dependency to a target platform condition")
IndexUrlOption = typer.Option(
    DEFAULT_INDEX_URL, "--index-url", envvar="CRATEFIX_INDEX_URL", help="Sparse index base URL"
)
TimeoutOption = typer.Option(30.0, "--timeout", envvar="CRATEFIX_TIMEOUT", help="Request timeout in seconds")
ConcurrencyOption = typer.Option(
    6, "--max-concurrency", envvar="CRATEFIX_MAX_CONCURRENCY", help="Concurrent registry lookups"
)


@app.command()
def add(
    crates: list[str] | None = typer.Argument(None, help="Crates to add, optionally as name@requirement"),
    version: str | None = typer.Option(None, "--vers", help="Version requirement ('source' to read it from --git/--path)"),
    git: str | None = typer.Option(None, "--git", help="Git repository URL"),
    branch: str | None = typer.Option(None, "--branch", help="Git branch"),
    tag: str | None = typer.Option(None, "--tag", help="Git tag"),
    rev: str | None = typer.Option(None, "--rev", help="Git revision"),
    path: str | None = typer.Option(None, "--path", help="Filesystem path to the crate"),
    rename: str | None = typer.Option(None, "--rename", help="Key to use for the dependency (package alias)"),
    optional: bool = typer.Option(False, "--optional", help="Mark the dependency optional"),
    features: list[str] | None = typer.Option(None, "--features", help="Features to enable"),
    no_default_features: bool = typer.Option(False, "--no-default-features", help="Disable default features"),
    sort: bool = typer.Option(False, "--sort", "-s", help="Sort the table after adding"),
    upgrade: UpgradeMethod = typer.Option(UpgradeMethod.MINOR, "--upgrade", help="Requirement style for looked-up versions"),
    allow_prerelease: bool = typer.Option(False, "--allow-prerelease", help="Consider prerelease versions"),
    allow_wildcard: bool = typer.Option(False, "--allow-wildcard", help="Accept a bare '*' requirement"),
    strict: bool = typer.Option(False, "--strict", help="Write nothing if any dependency fails"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    dev: bool = DevOption,
    build: bool = BuildOption,
    target: str | None = TargetOption,
    manifest_path: Path | None = ManifestPathOption,
    all_members: bool = AllOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
    index_url: str = IndexUrlOption,
    timeout: float = TimeoutOption,
    max_concurrency: int = ConcurrencyOption,
) -> None:
    """Add dependencies to a Cargo.toml manifest."""
    configure_logging(verbose)
    table = select_table(dev, build, target)
    crates = list(crates or [])
    if not crates and not (git or path):
        err_console.print("Error: nothing to add; give a crate name, --git or --path", style="red")
        raise typer.Exit(1)
    if len(crates) > 1 and (version or git or path or rename):
        err_console.print(
            "Error: --vers, --git, --path and --rename apply to a single crate", style="red"
        )
        raise typer.Exit(1)

    manifest = locate(manifest_path)
    options = EditOptions(
        all_members=all_members,
        dry_run=dry_run,
        sort=sort,
        strict=strict,
        upgrade_method=upgrade,
        allow_prerelease=allow_prerelease,
        allow_wildcard=allow_wildcard,
    )
    shared = dict(
        optional=optional,
        features=features or None,
        default_features=False if no_default_features else None,
    )

    try:
        requests = [
            AddRequest.from_spec(
                spec,
                version=version,
                git=git,
                branch=branch,
                tag=tag,
                rev=rev,
                path=path,
                rename=rename,
                **shared,
            )
            for spec in (crates or [None])
        ]
        registry = make_registry(index_url, timeout, max_concurrency)
        inspector = SourceInspector(base_dir=manifest.parent, timeout=timeout)
        report = asyncio.run(
            add_dependencies(manifest, requests, table, options, registry, inspector)
        )
    except CrateFixError as e:
        err_console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)

    finish(report, quiet)


@app.command("rm")
def remove(
    crates: list[str] = typer.Argument(..., help="Crates to remove"),
    dev: bool = DevOption,
    build: bool = BuildOption,
    target: str | None = TargetOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    strict: bool = typer.Option(False, "--strict", help="Write nothing if any dependency fails"),
    manifest_path: Path | None = ManifestPathOption,
    all_members: bool = AllOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
) -> None:
    """Remove dependencies from a Cargo.toml manifest."""
    configure_logging(verbose)
    table = select_table(dev, build, target)
    manifest = locate(manifest_path)
    options = EditOptions(all_members=all_members, dry_run=dry_run, strict=strict)

    try:
        report = remove_dependencies(manifest, crates, table, options)
    except CrateFixError as e:
        err_console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)

    finish(report, quiet)


@app.command()
def upgrade(
    crates: list[str] | None = typer.Argument(None, help="Crates to upgrade, optionally pinned as name@requirement"),
    method: UpgradeMethod = typer.Option(UpgradeMethod.MINOR, "--upgrade", help="Requirement style to write"),
    allow_prerelease: bool = typer.Option(False, "--allow-prerelease", help="Consider prerelease versions"),
    allow_wildcard: bool = typer.Option(False, "--allow-wildcard", help="Accept a bare '*' pin"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    strict: bool = typer.Option(False, "--strict", help="Write nothing if any dependency fails"),
    manifest_path: Path | None = ManifestPathOption,
    all_members: bool = AllOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
    index_url: str = IndexUrlOption,
    timeout: float = TimeoutOption,
    max_concurrency: int = ConcurrencyOption,
) -> None:
    """Upgrade dependencies to their latest published versions."""
    configure_logging(verbose)
    manifest = locate(manifest_path)
    options = EditOptions(
        all_members=all_members,
        dry_run=dry_run,
        strict=strict,
        upgrade_method=method,
        allow_prerelease=allow_prerelease,
        allow_wildcard=allow_wildcard,
    )

    try:
        registry = make_registry(index_url, timeout, max_concurrency)
        report = asyncio.run(upgrade_dependencies(manifest, list(crates or []), options, registry))
    except CrateFixError as e:
        err_console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)

    finish(report, quiet)


@app.command()
def tidy(
    all_tables: bool = typer.Option(False, "--all-tables", help="Sort every dependency table, not just the normal one"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without writing"),
    manifest_path: Path | None = ManifestPathOption,
    all_members: bool = AllOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
) -> None:
    """Sort dependency tables of a Cargo.toml manifest."""
    configure_logging(verbose)
    manifest = locate(manifest_path)
    options = EditOptions(all_members=all_members, dry_run=dry_run, all_tables=all_tables)

    try:
        report = tidy_manifests(manifest, options)
    except CrateFixError as e:
        err_console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)

    finish(report, quiet)


if __name__ == "__main__":
    app()
