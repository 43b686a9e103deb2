from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class ExtensionRequest:
    name: str
    raw_version: str
    source_url: str


@dataclass(frozen=True, order=True)
class CanonicalVersion:
    major: int
    minor: int
    patch: int

    def __post_init__(self) -> None:
        if min(self.major, self.minor, self.patch) < 0:
            raise ValueError(f"Version components must be non-negative: {self!r}")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class BuildArtifact:
    """A packaged extension, owned by one build until it is uploaded."""

    name: str
    version: CanonicalVersion
    path: Path
    pg_major_version: str
    architecture: str
    scratch_dir: Path | None = None

    @property
    def asset_name(self) -> str:
        # deferred to avoid a cycle, versioning builds on these models
        from pgextpub.versioning import asset_name

        return asset_name(
            self.name, self.version, self.pg_major_version, self.architecture
        )


@dataclass(frozen=True)
class PublishedRelease:
    tag: str
    release_id: int | None
    upload_url: str
    asset_url: str = ""


class OutcomeStatus(str, enum.Enum):
    PUBLISHED = "published"
    SKIPPED = "skipped"
    FAILED = "failed"
    PLANNED = "planned"


@dataclass(frozen=True)
class RequestOutcome:
    request: ExtensionRequest | None
    status: OutcomeStatus
    tag: str = ""
    version: CanonicalVersion | None = None
    error: Exception | None = None
    asset_url: str = ""
    source: str = ""

    @property
    def label(self) -> str:
        if self.tag:
            return self.tag
        if self.request is not None:
            return f"{self.request.name} ({self.request.raw_version})"
        return self.source


@dataclass
class PipelineReport:
    outcomes: list[RequestOutcome] = field(default_factory=list)

    def _with_status(self, status: OutcomeStatus) -> list[RequestOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == status]

    @property
    def published(self) -> list[RequestOutcome]:
        return self._with_status(OutcomeStatus.PUBLISHED)

    @property
    def skipped(self) -> list[RequestOutcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> list[RequestOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def planned(self) -> list[RequestOutcome]:
        return self._with_status(OutcomeStatus.PLANNED)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return (
            f"{len(self.published)} published, {len(self.skipped)} skipped,"
            f" {len(self.planned)} planned, {len(self.failed)} failed"
        )
