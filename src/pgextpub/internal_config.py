from __future__ import annotations

import platform
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version


def _get_package_version(name: str) -> str:
    """Return the installed version of *name*, or ``"0"`` if not found."""
    try:
        return _pkg_version(name)
    except PackageNotFoundError:
        return "0"


_pgextpub_version = _get_package_version("pgextpub")

DEFAULT_USER_AGENT = (
    f"pgextpub/{_pgextpub_version}"
    f" ({platform.system()}; {platform.machine()}; python-requests)"
)

DEFAULT_REPOSITORY = "paradedb/third-party-pg_extensions"
DEFAULT_API_URL = "https://api.github.com"
GITHUB_ACCEPT_HEADER = "application/vnd.github+json"
DEB_CONTENT_TYPE = "application/vnd.DEBIAN.binary-package"

RELEASE_BODY_TEMPLATE = (
    "Internal ParadeDB Release for {name} version {version}."
    " This release is not intended for public use."
)

HTTP_REQUEST_TIMEOUT_SECONDS = 30
HTTP_STREAM_CONNECT_TIMEOUT_SECONDS = 10
HTTP_STREAM_READ_TIMEOUT_SECONDS = 120
HTTP_UPLOAD_TIMEOUT_SECONDS = 300

HTTP_RETRY_TOTAL = 3
HTTP_RETRY_BACKOFF_FACTOR = 1
HTTP_RETRY_STATUS_FORCELIST = [429, 500, 502, 503, 504]
HTTP_RETRY_ALLOWED_METHODS = ["HEAD", "GET", "OPTIONS", "POST"]

# number of stderr lines kept in build failure messages
COMMAND_OUTPUT_TAIL_LINES = 20
