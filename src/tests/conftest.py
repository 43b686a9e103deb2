from __future__ import annotations

import io
import subprocess
import tarfile
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Iterator

import pytest
import requests

from pgextpub.config import PipelineConfig


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--slow",
        action="store_true",
        default=False,
        help="run slow tests that invoke the real toolchain",
    )
    parser.addoption(
        "--only-slow",
        action="store_true",
        default=False,
        help="run only tests marked as slow",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "slow: marks tests as slow")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    only_slow = bool(config.getoption("--only-slow"))
    run_slow = bool(config.getoption("--slow")) or only_slow

    if only_slow:
        selected: list[pytest.Item] = []
        deselected: list[pytest.Item] = []
        for item in items:
            if "slow" in item.keywords:
                selected.append(item)
            else:
                deselected.append(item)

        if deselected:
            config.hook.pytest_deselected(items=deselected)
        items[:] = selected

    if run_slow:
        return

    skip_slow = pytest.mark.skip(reason="need --slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def _option_value(cmd: list[str], prefix: str) -> str:
    return next(arg.split("=", 1)[1] for arg in cmd if arg.startswith(prefix))


class FakeRunner:
    """Stand-in for subprocess.run that records toolchain invocations."""

    def __init__(self) -> None:
        self.calls: list[SimpleNamespace] = []
        self.exit_codes: dict[str, int] = {}
        self.produce_package = True

    def __call__(
        self,
        cmd: list[str],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
        check: bool = False,
        encoding: str | None = None,
        errors: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        program = cmd[1] if cmd[0] == "sudo" else cmd[0]
        self.calls.append(
            SimpleNamespace(
                program=program,
                cmd=list(cmd),
                cwd=Path(cwd) if cwd else None,
                env=env,
            )
        )
        returncode = self.exit_codes.get(program, 0)
        if returncode == 0 and program == "checkinstall" and self.produce_package:
            pakdir = Path(_option_value(cmd, "--pakdir="))
            file_name = (
                f"{_option_value(cmd, '--pkgname=')}_{_option_value(cmd, '--pkgversion=')}"
                f"-{_option_value(cmd, '--pkgrelease=')}_{_option_value(cmd, '--pkgarch=')}.deb"
            )
            pakdir.joinpath(file_name).write_bytes(b"!<arch>\ndebian-binary")
        return subprocess.CompletedProcess(
            cmd,
            returncode,
            stdout="",
            stderr=f"{program} failed" if returncode else "",
        )

    @property
    def programs(self) -> list[str]:
        return [call.program for call in self.calls]


class FakeDownloadResponse:
    def __init__(self, payload: bytes, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for start in range(0, len(self.payload), chunk_size):
            yield self.payload[start : start + chunk_size]


class FakeDownloadSession:
    def __init__(self, payload: bytes = b"", status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code
        self.urls: list[str] = []

    def get(
        self, url: str, *, stream: bool, timeout: tuple[int, int]
    ) -> FakeDownloadResponse:
        assert stream is True
        self.urls.append(url)
        return FakeDownloadResponse(self.payload, self.status_code)


def _make_tarball(files: dict[str, str], top: str = "source-1.0") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        directory = tarfile.TarInfo(top)
        directory.type = tarfile.DIRTYPE
        directory.mode = 0o755
        archive.addfile(directory)
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            info.mode = 0o755 if name.endswith(".sh") else 0o644
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def make_tarball() -> Callable[..., bytes]:
    return _make_tarball


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def download_session(make_tarball: Callable[..., bytes]) -> FakeDownloadSession:
    return FakeDownloadSession(make_tarball({"Makefile": "all:\n\ttrue\n"}))


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    pg_config = tmp_path / "postgresql" / "16" / "bin" / "pg_config"
    pg_config.parent.mkdir(parents=True)
    pg_config.write_text("#!/bin/sh\n")
    return PipelineConfig(
        github_token="test-token",
        repository="owner/repo",
        api_url="https://api.example.test",
        pg_major_version="16",
        architecture="amd64",
        pg_config=pg_config,
        scratch_root=tmp_path / "scratch",
    )
