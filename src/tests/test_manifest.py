from __future__ import annotations

import os
from pathlib import Path

import pytest

from pgextpub.exceptions import ManifestNotFoundError, RequestParseError
from pgextpub.manifest import (
    RejectedEntry,
    load_manifest,
    parse_extension_argument,
    parse_extension_arguments,
)
from pgextpub.models import ExtensionRequest


def test_parse_extension_argument_splits_triple() -> None:
    assert parse_extension_argument(
        "pg_cron, v1.6.0 ,https://github.com/citusdata/pg_cron/archive/v1.6.0.tar.gz"
    ) == ExtensionRequest(
        "pg_cron",
        "v1.6.0",
        "https://github.com/citusdata/pg_cron/archive/v1.6.0.tar.gz",
    )


@pytest.mark.parametrize(
    "argument",
    [
        "",
        "pg_cron",
        "pg_cron,1.6.0",
        "pg_cron,,https://example.test/x.tgz",
        "pg_cron,1.6.0,https://example.test/x.tgz,extra",
    ],
)
def test_parse_extension_argument_rejects_malformed_triples(argument: str) -> None:
    with pytest.raises(RequestParseError):
        parse_extension_argument(argument)


def test_parse_extension_arguments_keeps_failures_in_position() -> None:
    entries = parse_extension_arguments(
        ["a,1.0.0,https://x/a.tgz", "broken", "b,2.0.0,https://x/b.tgz"]
    )

    assert entries[0] == ExtensionRequest("a", "1.0.0", "https://x/a.tgz")
    assert isinstance(entries[1], RejectedEntry)
    assert entries[1].source == "broken"
    assert isinstance(entries[1].error, RequestParseError)
    assert entries[2] == ExtensionRequest("b", "2.0.0", "https://x/b.tgz")


def test_load_manifest_accepts_json5_objects_and_strings(tmp_path: Path) -> None:
    manifest = tmp_path / "extensions.json5"
    manifest.write_text(
        """
        {
          // built for every PostgreSQL major version
          extensions: [
            {name: "pgvector", version: "v0.5.1", url: "https://x/pgvector.tgz"},
            "postgis,3.3.2,https://x/postgis.tgz",
          ],
        }
        """,
        encoding="utf-8",
    )

    assert load_manifest(manifest) == [
        ExtensionRequest("pgvector", "v0.5.1", "https://x/pgvector.tgz"),
        ExtensionRequest("postgis", "3.3.2", "https://x/postgis.tgz"),
    ]


def test_load_manifest_accepts_plain_lists(tmp_path: Path) -> None:
    manifest = tmp_path / "extensions.json"
    manifest.write_text('[{"name": "a", "version": "1.0.0", "url": "https://x/a"}]')

    assert [entry.name for entry in load_manifest(manifest)] == ["a"]


def test_load_manifest_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ManifestNotFoundError, match="not found"):
        load_manifest(tmp_path / "missing.json5")


@pytest.mark.skipif(os.geteuid() == 0, reason="root can read any file")
def test_load_manifest_unreadable_file(tmp_path: Path) -> None:
    manifest = tmp_path / "extensions.json5"
    manifest.write_text("[]")
    manifest.chmod(0)

    try:
        with pytest.raises(RequestParseError, match="cannot be read"):
            load_manifest(manifest)
    finally:
        manifest.chmod(0o644)


def test_load_manifest_rejects_undecodable_file(tmp_path: Path) -> None:
    manifest = tmp_path / "extensions.json5"
    manifest.write_bytes(b"[\xff]")

    with pytest.raises(RequestParseError, match="cannot be read"):
        load_manifest(manifest)


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("{not json", "malformed"),
        ('{"extensions": "nope"}', "list of extensions"),
    ],
)
def test_load_manifest_rejects_bad_files(
    tmp_path: Path, content: str, message: str
) -> None:
    manifest = tmp_path / "extensions.json5"
    manifest.write_text(content)

    with pytest.raises(RequestParseError, match=message):
        load_manifest(manifest)


@pytest.mark.parametrize(
    ("entry", "message"),
    [
        ('{"name": "a", "version": "1.0.0"}', "missing url"),
        ('{"name": null, "version": "1.0.0", "url": "https://x/a"}', "missing name"),
        ('{"name": "a", "version": 1.6, "url": "https://x/a"}', "missing version"),
        ("42", "must be an object"),
        ('"broken"', "NAME,VERSION,URL"),
    ],
)
def test_load_manifest_rejects_bad_entries_in_place(
    tmp_path: Path, entry: str, message: str
) -> None:
    manifest = tmp_path / "extensions.json5"
    manifest.write_text(f'["pg_cron,1.6.0,https://x/c.tgz", {entry}, "b,2.0.0,https://x/b"]')

    entries = load_manifest(manifest)

    assert [type(item) for item in entries] == [
        ExtensionRequest,
        RejectedEntry,
        ExtensionRequest,
    ]
    rejected = entries[1]
    assert rejected.source == "extensions.json5[1]"
    assert message in str(rejected.error)
