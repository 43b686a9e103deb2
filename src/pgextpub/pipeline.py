"""Build-and-publish orchestration.

Every request walks the same path: normalize the version, derive the
release tag, skip when that release already exists, otherwise build the
package and publish it. A failing request is recorded in the report and
never stops the others.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import subprocess
from typing import Iterable, Protocol

from pgextpub.build_engine import RunCommand
from pgextpub.builder import ExtensionBuilder
from pgextpub.config import PipelineConfig
from pgextpub.exceptions import InvalidVersionFormatError, PgExtPubError
from pgextpub.models import (
    BuildArtifact,
    CanonicalVersion,
    ExtensionRequest,
    OutcomeStatus,
    PipelineReport,
    PublishedRelease,
    RequestOutcome,
)
from pgextpub.publisher import ReleasePublisher
from pgextpub.release_client import ReleaseHostClient
from pgextpub.versioning import normalize_version, release_tag

logger: logging.Logger = logging.getLogger(__name__)


class ReleaseChecker(Protocol):
    def release_exists(self, tag: str) -> bool: ...


class Builder(Protocol):
    def build(
        self, name: str, version: CanonicalVersion, source_url: str
    ) -> BuildArtifact: ...

    def cleanup(self, artifact: BuildArtifact) -> None: ...


class Publisher(Protocol):
    def publish(self, tag: str, artifact: BuildArtifact) -> PublishedRelease: ...


class ExtensionPipeline(object):
    def __init__(
        self, checker: ReleaseChecker, builder: Builder, publisher: Publisher
    ) -> None:
        self.checker = checker
        self.builder = builder
        self.publisher = publisher

    @classmethod
    def from_config(
        cls, config: PipelineConfig, run_command: RunCommand = subprocess.run
    ) -> ExtensionPipeline:
        client = ReleaseHostClient(config)
        return cls(
            checker=client,
            builder=ExtensionBuilder(config, client.session, run_command=run_command),
            publisher=ReleasePublisher(config, client),
        )

    def _prepare(self, request: ExtensionRequest, handled: set[str]) -> RequestOutcome:
        """Normalize a request and claim its tag for this run.

        Returns a ``planned`` outcome carrying the version and tag, or a
        final outcome when the request cannot or need not go further.
        """
        try:
            version = normalize_version(request.raw_version)
        except InvalidVersionFormatError as exc:
            logger.error(f"Skipping {request.name}: {exc}")
            return RequestOutcome(request=request, status=OutcomeStatus.FAILED, error=exc)

        tag = release_tag(request.name, version)
        if tag in handled:
            logger.info(f"{tag} was already handled in this run, skipping...")
            return RequestOutcome(
                request=request, status=OutcomeStatus.SKIPPED, tag=tag, version=version
            )
        handled.add(tag)
        return RequestOutcome(
            request=request, status=OutcomeStatus.PLANNED, tag=tag, version=version
        )

    def _check(self, prepared: RequestOutcome) -> RequestOutcome:
        if self.checker.release_exists(prepared.tag):
            request = prepared.request
            logger.info(
                f"Release for {request.name} version {request.raw_version}"
                f" already exists ({prepared.tag}), skipping..."
            )
            return dataclasses.replace(prepared, status=OutcomeStatus.SKIPPED)
        return prepared

    def _build_and_publish(self, prepared: RequestOutcome) -> RequestOutcome:
        checked = self._check(prepared)
        if checked.status is OutcomeStatus.SKIPPED:
            return checked

        request = checked.request
        logger.info(f"Building {request.name} version {checked.version}...")
        artifact = self.builder.build(request.name, checked.version, request.source_url)
        release = self.publisher.publish(checked.tag, artifact)

        self.builder.cleanup(artifact)
        logger.info(f"Published {checked.tag}")
        return dataclasses.replace(
            checked, status=OutcomeStatus.PUBLISHED, asset_url=release.asset_url
        )

    def _execute(self, prepared: RequestOutcome) -> RequestOutcome:
        try:
            return self._build_and_publish(prepared)
        except PgExtPubError as exc:
            logger.error(f"{prepared.tag} failed: {exc}")
            return dataclasses.replace(prepared, status=OutcomeStatus.FAILED, error=exc)
        except Exception as exc:
            logger.exception(f"{prepared.tag} failed unexpectedly")
            return dataclasses.replace(prepared, status=OutcomeStatus.FAILED, error=exc)

    def process(self, request: ExtensionRequest) -> RequestOutcome:
        """Run a single request through the whole pipeline."""
        prepared = self._prepare(request, set())
        if prepared.status is not OutcomeStatus.PLANNED:
            return prepared
        return self._execute(prepared)

    def run(self, requests: Iterable[ExtensionRequest]) -> PipelineReport:
        """Process *requests* one after another."""
        report = PipelineReport()
        handled: set[str] = set()
        for request in requests:
            prepared = self._prepare(request, handled)
            if prepared.status is OutcomeStatus.PLANNED:
                prepared = self._execute(prepared)
            report.outcomes.append(prepared)
        return report

    async def run_async(
        self, requests: Iterable[ExtensionRequest], jobs: int = 1
    ) -> PipelineReport:
        """Process *requests* with at most *jobs* builds in flight.

        Tags are claimed in input order before any work is dispatched, and
        outcomes are reported in input order.
        """
        semaphore = asyncio.Semaphore(max(1, jobs))
        handled: set[str] = set()

        async def _finished(outcome: RequestOutcome) -> RequestOutcome:
            return outcome

        async def _bounded(prepared: RequestOutcome) -> RequestOutcome:
            async with semaphore:
                return await asyncio.to_thread(self._execute, prepared)

        pending = []
        for request in requests:
            prepared = self._prepare(request, handled)
            if prepared.status is OutcomeStatus.PLANNED:
                pending.append(_bounded(prepared))
            else:
                pending.append(_finished(prepared))

        outcomes = await asyncio.gather(*pending)
        return PipelineReport(outcomes=list(outcomes))

    def plan(self, requests: Iterable[ExtensionRequest]) -> PipelineReport:
        """Report which requests would be built, without building anything."""
        report = PipelineReport()
        handled: set[str] = set()
        for request in requests:
            prepared = self._prepare(request, handled)
            if prepared.status is OutcomeStatus.PLANNED:
                prepared = self._check(prepared)
            report.outcomes.append(prepared)
        return report
