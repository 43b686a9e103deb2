from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer

from pgextpub.config import PipelineConfig, load_config
from pgextpub.exceptions import (
    ConfigurationError,
    InvalidVersionFormatError,
    ManifestNotFoundError,
    RequestParseError,
)
from pgextpub.internal_config import DEFAULT_USER_AGENT, _pgextpub_version
from pgextpub.manifest import (
    ParsedEntry,
    RejectedEntry,
    load_manifest,
    parse_extension_arguments,
)
from pgextpub.models import ExtensionRequest, OutcomeStatus, PipelineReport, RequestOutcome
from pgextpub.pipeline import ExtensionPipeline
from pgextpub.versioning import normalize_version

app: typer.Typer = typer.Typer(
    help="Build third-party PostgreSQL extensions as .deb packages and publish them as GitHub releases.",
    no_args_is_help=True,
)
logger: logging.Logger = logging.getLogger(__name__)

EXTENSIONS_HELP = "Extensions as NAME,VERSION,URL triples."


def _configure_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Invalid log level: {log_level!r}")
    logging.basicConfig(
        level=level,
        format="%(relativeCreated)d [%(levelname)s] %(message)s",
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pgextpub {_pgextpub_version}")
        typer.echo(f"User-Agent: {DEFAULT_USER_AGENT}")
        raise typer.Exit()


@app.callback()
def _root(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and the HTTP User-Agent, then exit.",
    ),
) -> None:
    """Build and publish PostgreSQL extension packages."""


def _collect_entries(extensions: list[str], manifest: Path | None) -> list[ParsedEntry]:
    entries = parse_extension_arguments(extensions)
    if manifest is not None:
        entries.extend(load_manifest(manifest))
    for entry in entries:
        if isinstance(entry, RejectedEntry):
            logger.error(f"Ignoring {entry.source!r}: {entry.error}")
    return entries


def _requests_of(entries: list[ParsedEntry]) -> list[ExtensionRequest]:
    return [entry for entry in entries if isinstance(entry, ExtensionRequest)]


def _in_input_order(entries: list[ParsedEntry], report: PipelineReport) -> PipelineReport:
    """Merge rejected entries back into *report* at their input positions."""
    outcomes = iter(report.outcomes)
    merged: list[RequestOutcome] = []
    for entry in entries:
        if isinstance(entry, RejectedEntry):
            merged.append(
                RequestOutcome(
                    request=None,
                    status=OutcomeStatus.FAILED,
                    error=entry.error,
                    source=entry.source,
                )
            )
        else:
            merged.append(next(outcomes))
    return PipelineReport(outcomes=merged)


def _load_config(**overrides: object) -> PipelineConfig:
    try:
        return load_config(**overrides)
    except ConfigurationError as exc:
        logger.error(str(exc))
        raise typer.Exit(code=1)


def _echo_report(report: PipelineReport) -> None:
    for outcome in report.outcomes:
        line = f"{outcome.status.value}\t{outcome.label}"
        if outcome.error is not None:
            line = f"{line}\t{outcome.error}"
        elif outcome.asset_url:
            line = f"{line}\t{outcome.asset_url}"
        typer.echo(line)


@app.command()
def publish(
    extensions: Optional[List[str]] = typer.Argument(None, help=EXTENSIONS_HELP),
    manifest: Optional[Path] = typer.Option(
        None, "--manifest", help="JSON5 file listing extensions to publish."
    ),
    pg_major: Optional[str] = typer.Option(
        None, "--pg-major", help="PostgreSQL major version [env: PG_MAJOR_VERSION]."
    ),
    arch: Optional[str] = typer.Option(
        None, "--arch", help="Debian architecture of the packages [env: ARCH]."
    ),
    repository: Optional[str] = typer.Option(
        None, "--repository", help="GitHub repository receiving the releases."
    ),
    jobs: Optional[int] = typer.Option(
        None, "--jobs", help="Number of extensions built concurrently."
    ),
    keep_scratch: Optional[bool] = typer.Option(
        None,
        "--keep-scratch/--no-keep-scratch",
        help="Keep build directories after a successful publish.",
    ),
    sudo: Optional[bool] = typer.Option(
        None, "--sudo/--no-sudo", help="Run checkinstall through sudo."
    ),
    log_level: str = "info",
) -> None:
    """Build and publish every extension that has no release yet."""
    _configure_logging(log_level)
    config = _load_config(
        pg_major_version=pg_major,
        architecture=arch,
        repository=repository,
        jobs=jobs,
        keep_scratch=keep_scratch,
        use_sudo=sudo,
    )
    try:
        config.require_build_settings()
        config.require_publish_settings()
        entries = _collect_entries(list(extensions or []), manifest)
    except (ConfigurationError, ManifestNotFoundError, RequestParseError) as exc:
        logger.error(str(exc))
        raise typer.Exit(code=1)

    if not entries:
        logger.error("No extensions given; pass NAME,VERSION,URL triples or --manifest")
        raise typer.Exit(code=1)

    requests = _requests_of(entries)
    pipeline = ExtensionPipeline.from_config(config)
    if config.jobs > 1:
        report = asyncio.run(pipeline.run_async(requests, jobs=config.jobs))
    else:
        report = pipeline.run(requests)
    report = _in_input_order(entries, report)

    _echo_report(report)
    logger.info(f"Done: {report.summary()}")
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def plan(
    extensions: Optional[List[str]] = typer.Argument(None, help=EXTENSIONS_HELP),
    manifest: Optional[Path] = typer.Option(
        None, "--manifest", help="JSON5 file listing extensions to check."
    ),
    repository: Optional[str] = typer.Option(
        None, "--repository", help="GitHub repository holding the releases."
    ),
    log_level: str = "warning",
) -> None:
    """Show which extensions would be built, without building anything."""
    _configure_logging(log_level)
    config = _load_config(repository=repository)
    try:
        entries = _collect_entries(list(extensions or []), manifest)
    except (ManifestNotFoundError, RequestParseError) as exc:
        logger.error(str(exc))
        raise typer.Exit(code=1)

    report = ExtensionPipeline.from_config(config).plan(_requests_of(entries))
    report = _in_input_order(entries, report)
    for outcome in report.outcomes:
        if outcome.status is OutcomeStatus.PLANNED:
            typer.echo(f"{outcome.tag}\tbuild")
        elif outcome.status is OutcomeStatus.SKIPPED:
            typer.echo(f"{outcome.tag}\tskip")
        else:
            typer.echo(f"{outcome.label}\terror\t{outcome.error}")
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def normalize(
    versions: List[str] = typer.Argument(..., help="Raw upstream version strings."),
) -> None:
    """Print the canonical major.minor.patch form of each version."""
    for raw_version in versions:
        try:
            typer.echo(str(normalize_version(raw_version)))
        except InvalidVersionFormatError as exc:
            logger.error(str(exc))
            raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
