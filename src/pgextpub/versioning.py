"""Version normalization and release naming.

Upstream projects tag their releases in many shapes (``v0.5.1``,
``ver_1.4.8``, ``REL15_1_5_0``). Debian packaging and release tags need a
plain ``major.minor.patch`` string, so every raw version goes through
:func:`normalize_version` before it is used anywhere.
"""

from __future__ import annotations

import re

from pgextpub.exceptions import InvalidVersionFormatError
from pgextpub.models import CanonicalVersion

# the leading greedy ".*" makes both patterns pick the rightmost triple
_DOTTED_TRIPLE = re.compile(r".*(?<![\d.])(\d+)\.(\d+)\.(\d+)", re.DOTALL)
_UNDERSCORE_TRIPLE = re.compile(r".*(?<!\d)(\d+)_(\d+)_(\d+)", re.DOTALL)

# checkinstall appends a package release number to every version
PACKAGE_RELEASE = 1


def normalize_version(raw: str) -> CanonicalVersion:
    """Extract the canonical ``major.minor.patch`` version from *raw*.

    A dotted triple wins over an underscore-delimited one. Prefixes such as
    ``v``, ``ver_`` or ``REL15_`` and any suffix text are discarded.
    """
    for pattern in (_DOTTED_TRIPLE, _UNDERSCORE_TRIPLE):
        match = pattern.match(raw)
        if match:
            major, minor, patch = (int(group) for group in match.groups())
            return CanonicalVersion(major, minor, patch)

    raise InvalidVersionFormatError(
        f"Cannot extract a major.minor.patch version from {raw!r}"
    )


def release_tag(name: str, version: CanonicalVersion) -> str:
    return f"{name}-v{version}"


def asset_name(
    name: str, version: CanonicalVersion, pg_major_version: str, architecture: str
) -> str:
    return f"{name}-v{version}-pg{pg_major_version}-{architecture}-linux-gnu.deb"


def package_name(name: str) -> str:
    """Return the Debian package name checkinstall uses for an extension."""
    return name.replace("_", "-")


def package_file_name(name: str, version: CanonicalVersion, architecture: str) -> str:
    return f"{package_name(name)}_{version}-{PACKAGE_RELEASE}_{architecture}.deb"
