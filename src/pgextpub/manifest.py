from __future__ import annotations

from pathlib import Path
from typing import Any, NamedTuple

# manifests may carry comments and trailing commas
import json5

from pgextpub.exceptions import ManifestNotFoundError, RequestParseError
from pgextpub.models import ExtensionRequest

MANIFEST_FIELDS = ("name", "version", "url")


class RejectedEntry(NamedTuple):
    """An input item that could not be turned into a request."""

    source: str
    error: RequestParseError


ParsedEntry = ExtensionRequest | RejectedEntry


def parse_extension_argument(argument: str) -> ExtensionRequest:
    """Parse one ``name,version,url`` triple."""
    fields = [item.strip() for item in argument.split(",")]
    if len(fields) != 3 or not all(fields):
        raise RequestParseError(
            f"Expected NAME,VERSION,URL but got {argument!r}"
        )
    name, raw_version, source_url = fields
    return ExtensionRequest(name=name, raw_version=raw_version, source_url=source_url)


def parse_extension_arguments(arguments: list[str]) -> list[ParsedEntry]:
    """Parse every argument in order, keeping failures in place of requests."""
    entries: list[ParsedEntry] = []
    for argument in arguments:
        try:
            entries.append(parse_extension_argument(argument))
        except RequestParseError as exc:
            entries.append(RejectedEntry(argument, exc))
    return entries


def _request_from_entry(entry: Any, position: int) -> ExtensionRequest:
    if isinstance(entry, str):
        return parse_extension_argument(entry)
    if not isinstance(entry, dict):
        raise RequestParseError(f"Manifest entry {position} must be an object")

    values = {}
    for key in MANIFEST_FIELDS:
        value = entry.get(key)
        values[key] = value.strip() if isinstance(value, str) else ""
    missing = [key for key, value in values.items() if not value]
    if missing:
        raise RequestParseError(
            f"Manifest entry {position} is missing {', '.join(missing)}"
        )
    return ExtensionRequest(
        name=values["name"], raw_version=values["version"], source_url=values["url"]
    )


def load_manifest(path: Path) -> list[ParsedEntry]:
    """Read extension requests from a JSON5 manifest.

    The file holds either a list of entries or an object with an
    ``extensions`` list. Entries are ``{"name", "version", "url"}`` objects
    or ``"name,version,url"`` strings. A bad entry is returned as a
    ``RejectedEntry`` in its position; only an unreadable file raises.
    """
    manifest_path = Path(path).expanduser()
    if not manifest_path.is_file():
        raise ManifestNotFoundError(f"Manifest not found: {manifest_path}")

    try:
        text = manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RequestParseError(f"Manifest {manifest_path} cannot be read: {exc}") from exc
    try:
        content = json5.loads(text)
    except ValueError as exc:
        raise RequestParseError(f"Manifest {manifest_path} is malformed: {exc}") from exc

    entries = content.get("extensions") if isinstance(content, dict) else content
    if not isinstance(entries, list):
        raise RequestParseError(
            f"Manifest {manifest_path} must contain a list of extensions"
        )

    parsed: list[ParsedEntry] = []
    for index, entry in enumerate(entries):
        try:
            parsed.append(_request_from_entry(entry, index))
        except RequestParseError as exc:
            parsed.append(RejectedEntry(f"{manifest_path.name}[{index}]", exc))
    return parsed
