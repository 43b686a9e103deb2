from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter, Retry

from pgextpub.config import PipelineConfig
from pgextpub.exceptions import ReleaseCreationError, UploadError
from pgextpub.internal_config import (
    DEFAULT_USER_AGENT,
    GITHUB_ACCEPT_HEADER,
    HTTP_REQUEST_TIMEOUT_SECONDS,
    HTTP_RETRY_ALLOWED_METHODS,
    HTTP_RETRY_BACKOFF_FACTOR,
    HTTP_RETRY_STATUS_FORCELIST,
    HTTP_RETRY_TOTAL,
    HTTP_UPLOAD_TIMEOUT_SECONDS,
)

logger: logging.Logger = logging.getLogger(__name__)


def _is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300


def _response_excerpt(response: requests.Response, limit: int = 200) -> str:
    text = (response.text or "").strip().replace("\n", " ")
    return text[:limit]


def create_session() -> requests.Session:
    """Return a session that retries throttled and failing requests."""
    retry_strategy = Retry(
        total=HTTP_RETRY_TOTAL,
        backoff_factor=HTTP_RETRY_BACKOFF_FACTOR,
        status_forcelist=HTTP_RETRY_STATUS_FORCELIST,
        allowed_methods=HTTP_RETRY_ALLOWED_METHODS,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session = requests.Session()
    session.headers["User-Agent"] = DEFAULT_USER_AGENT
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class ReleaseHostClient(object):
    """Talk to the GitHub releases API of the configured repository.

    The bearer token is attached per request instead of to the session, so
    source archives downloaded through the same session never receive it.
    """

    session: requests.Session
    config: PipelineConfig

    def __init__(
        self, config: PipelineConfig, session: requests.Session | None = None
    ) -> None:
        self.config = config
        self.session = session if session is not None else create_session()

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Accept": GITHUB_ACCEPT_HEADER}
        if self.config.github_token:
            headers["Authorization"] = f"Bearer {self.config.github_token}"
        if extra:
            headers.update(extra)
        return headers

    def release_url(self, tag: str) -> str:
        return f"{self.config.repository_api_url}/releases/tags/{quote(tag, safe='')}"

    def release_exists(self, tag: str) -> bool:
        """Return whether a release for *tag* is already published.

        Every non-2xx answer counts as "missing", including transport
        failures; the caller then simply builds the release.
        """
        url = self.release_url(tag)
        try:
            response = self.session.head(
                url,
                headers=self._headers(),
                allow_redirects=True,
                timeout=HTTP_REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            logger.warning(f"Could not check release {tag}, assuming it is missing: {exc}")
            return False

        if _is_success(response):
            return True
        if response.status_code != 404:
            logger.warning(
                f"Release lookup for {tag} returned HTTP {response.status_code},"
                " assuming it is missing"
            )
        else:
            logger.debug(f"No release found for {tag}")
        return False

    def create_release(self, tag: str, title: str, body: str) -> dict[str, Any]:
        """Create the release record for *tag* and return the host's answer."""
        payload = {"tag_name": tag, "name": title, "body": body}
        try:
            response = self.session.post(
                f"{self.config.repository_api_url}/releases",
                json=payload,
                headers=self._headers(),
                timeout=HTTP_REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise ReleaseCreationError(
                f"Creating release {tag} failed: {exc}"
            ) from exc

        if not _is_success(response):
            raise ReleaseCreationError(
                f"Creating release {tag} failed with HTTP {response.status_code}:"
                f" {_response_excerpt(response)}"
            )

        try:
            release = response.json()
        except ValueError as exc:
            raise ReleaseCreationError(
                f"Release host returned malformed JSON for {tag}"
            ) from exc
        if not isinstance(release, dict):
            raise ReleaseCreationError(
                f"Release host returned an unexpected payload for {tag}"
            )
        return release

    def upload_asset(
        self, upload_url: str, asset_name: str, data: bytes, content_type: str
    ) -> dict[str, Any]:
        """Attach *data* to a release as *asset_name*."""
        try:
            response = self.session.post(
                upload_url,
                params={"name": asset_name},
                data=data,
                headers=self._headers({"Content-Type": content_type}),
                timeout=HTTP_UPLOAD_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise UploadError(f"Uploading {asset_name} failed: {exc}") from exc

        if not _is_success(response):
            raise UploadError(
                f"Uploading {asset_name} failed with HTTP {response.status_code}:"
                f" {_response_excerpt(response)}"
            )

        try:
            asset = response.json()
        except ValueError:
            return {}
        return asset if isinstance(asset, dict) else {}
