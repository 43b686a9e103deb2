from __future__ import annotations

import logging
import re
from typing import Any, Protocol
from urllib.parse import urlparse

from pgextpub.config import PipelineConfig
from pgextpub.exceptions import PublishError, UploadError
from pgextpub.internal_config import DEB_CONTENT_TYPE, RELEASE_BODY_TEMPLATE
from pgextpub.models import BuildArtifact, CanonicalVersion, PublishedRelease

logger: logging.Logger = logging.getLogger(__name__)

# GitHub returns upload URLs as RFC 6570 templates, e.g. ".../assets{?name,label}"
_URI_TEMPLATE_SUFFIX = re.compile(r"\{[^{}]*\}$")


class ReleaseHost(Protocol):
    def create_release(self, tag: str, title: str, body: str) -> dict[str, Any]: ...

    def upload_asset(
        self, upload_url: str, asset_name: str, data: bytes, content_type: str
    ) -> dict[str, Any]: ...


def parse_upload_url(release: dict[str, Any], tag: str) -> str:
    """Return the asset upload endpoint announced by a release creation response."""
    raw_url = release.get("upload_url")
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise PublishError(f"Release {tag} was created without an upload_url")

    upload_url = _URI_TEMPLATE_SUFFIX.sub("", raw_url.strip())
    parsed = urlparse(upload_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise PublishError(f"Release {tag} returned an invalid upload_url: {raw_url!r}")
    return upload_url


def release_title(name: str, version: CanonicalVersion) -> str:
    return f"{name} {version}"


def release_body(name: str, version: CanonicalVersion) -> str:
    return RELEASE_BODY_TEMPLATE.format(name=name, version=version)


class ReleasePublisher(object):
    """Create a release for a tag and attach the packaged extension to it.

    Nothing is rolled back: a release whose upload failed stays on the host
    and has to be removed by hand before the tag can be published again.
    """

    def __init__(self, config: PipelineConfig, client: ReleaseHost) -> None:
        self.config = config
        self.client = client

    def publish(self, tag: str, artifact: BuildArtifact) -> PublishedRelease:
        self.config.require_publish_settings()

        logger.info(f"Creating release {tag} on {self.config.repository}")
        release = self.client.create_release(
            tag,
            release_title(artifact.name, artifact.version),
            release_body(artifact.name, artifact.version),
        )
        upload_url = parse_upload_url(release, tag)

        try:
            data = artifact.path.read_bytes()
        except OSError as exc:
            raise UploadError(f"Cannot read {artifact.path}: {exc}") from exc

        logger.info(f"Uploading {artifact.asset_name} to release {tag}")
        asset = self.client.upload_asset(
            upload_url, artifact.asset_name, data, DEB_CONTENT_TYPE
        )

        release_id = release.get("id")
        return PublishedRelease(
            tag=tag,
            release_id=release_id if isinstance(release_id, int) else None,
            upload_url=upload_url,
            asset_url=str(asset.get("browser_download_url", "")),
        )
