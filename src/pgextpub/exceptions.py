from __future__ import annotations


class PgExtPubError(Exception):
    """Base class for all pgextpub domain errors."""


class InvalidVersionFormatError(ValueError, PgExtPubError):
    """Raised when no major.minor.patch triple can be extracted from a version."""


class RequestParseError(ValueError, PgExtPubError):
    """Raised when an extension request cannot be parsed."""


class ManifestNotFoundError(FileNotFoundError, PgExtPubError):
    """Raised when a batch manifest file does not exist."""


class ConfigurationError(ValueError, PgExtPubError):
    """Raised when a required setting is missing or invalid."""


class DownloadError(RuntimeError, PgExtPubError):
    """Raised when a source archive cannot be fetched or unpacked."""


class BuildError(RuntimeError, PgExtPubError):
    """Raised when a build stage exits unsuccessfully."""

    def __init__(
        self, message: str, stage: str = "", exit_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.exit_code = exit_code


class PackagingError(BuildError):
    """Raised when checkinstall fails or produces no package."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message, stage="checkinstall", exit_code=exit_code)


class ReleaseCreationError(RuntimeError, PgExtPubError):
    """Raised when the release host refuses to create a release."""


class PublishError(RuntimeError, PgExtPubError):
    """Raised when a created release cannot receive its asset."""


class UploadError(PublishError):
    """Raised when the asset upload itself fails."""
