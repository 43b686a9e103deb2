from __future__ import annotations

import logging
import shlex
import subprocess
import tarfile
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Mapping, Protocol

import requests

from pgextpub.exceptions import BuildError, DownloadError
from pgextpub.internal_config import COMMAND_OUTPUT_TAIL_LINES

logger: logging.Logger = logging.getLogger(__name__)


class DownloadSession(Protocol):
    def get(
        self,
        url: str,
        *,
        stream: bool,
        timeout: tuple[int, int],
    ) -> requests.Response: ...


RunCommand = Callable[..., subprocess.CompletedProcess[str]]


def stream_download_to_target(
    *,
    session: DownloadSession,
    url: str,
    target_path: Path,
    timeout: tuple[int, int],
) -> Path:
    """Stream *url* into *target_path*, raising ``DownloadError`` on any failure."""
    partial_path = target_path.with_name(f"{target_path.name}.part")
    try:
        response: requests.Response = session.get(url, stream=True, timeout=timeout)
        response.raise_for_status()
        with open(partial_path, "wb") as output:
            for chunk in response.iter_content(chunk_size=1024 * 8):
                if chunk:
                    output.write(chunk)
    except (requests.RequestException, OSError) as exc:
        partial_path.unlink(missing_ok=True)
        raise DownloadError(f"Downloading {url} failed: {exc}") from exc

    partial_path.replace(target_path)
    return target_path


def _strip_members(
    archive: tarfile.TarFile, strip_components: int
) -> Iterator[tarfile.TarInfo]:
    for member in archive.getmembers():
        parts = PurePosixPath(member.name).parts[strip_components:]
        if not parts:
            continue
        stripped = member.replace(name=str(PurePosixPath(*parts)), deep=False)
        if stripped.islnk():
            link_parts = PurePosixPath(stripped.linkname).parts[strip_components:]
            if not link_parts:
                continue
            stripped = stripped.replace(
                linkname=str(PurePosixPath(*link_parts)), deep=False
            )
        yield stripped


def extract_archive(
    archive_path: Path, destination: Path, strip_components: int = 1
) -> Path:
    """Unpack a (compressed) tarball, dropping leading path components.

    Members that would land outside *destination* are rejected by the
    ``data`` extraction filter.
    """
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r:*") as archive:
            archive.extractall(
                destination,
                members=list(_strip_members(archive, strip_components)),
                filter="data",
            )
    except (tarfile.TarError, OSError) as exc:
        raise DownloadError(f"Extracting {archive_path.name} failed: {exc}") from exc
    return destination


def _output_tail(output: str | None) -> str:
    lines = (output or "").strip().splitlines()
    return "\n".join(lines[-COMMAND_OUTPUT_TAIL_LINES:])


def run_build_command(
    cmd: list[str],
    *,
    cwd: Path,
    stage: str,
    env: Mapping[str, str] | None = None,
    run_command: RunCommand = subprocess.run,
) -> subprocess.CompletedProcess[str]:
    """Run one toolchain command, raising ``BuildError`` unless it exits 0."""
    logger.debug(f"[{stage}] {shlex.join(cmd)} (in {cwd})")
    try:
        process = run_command(
            cmd,
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            capture_output=True,
            check=False,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        raise BuildError(f"{stage}: cannot run {cmd[0]}: {exc}", stage=stage) from exc

    if process.returncode != 0:
        message = f"{stage}: {shlex.join(cmd)} exited with {process.returncode}"
        tail = _output_tail(process.stderr) or _output_tail(process.stdout)
        if tail:
            message = f"{message}\n{tail}"
        raise BuildError(message, stage=stage, exit_code=process.returncode)
    return process
