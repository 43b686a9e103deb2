from __future__ import annotations

import logging
import platform
import subprocess
from pathlib import Path
from typing import Callable

logger: logging.Logger = logging.getLogger(__name__)

POSTGRESQL_LIB_ROOT = Path("/usr/lib/postgresql")

# Debian architecture names for the machine names Python reports
_MACHINE_TO_DEBIAN_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "armv6l": "armel",
    "i386": "i386",
    "i686": "i386",
    "ppc64le": "ppc64el",
    "s390x": "s390x",
}


def default_pg_config_path(
    pg_major_version: str, lib_root: Path = POSTGRESQL_LIB_ROOT
) -> Path:
    """Return where Debian's postgresql packages install pg_config."""
    return lib_root.joinpath(pg_major_version, "bin", "pg_config")


def resolve_pg_config(pg_major_version: str, explicit_path: Path | None = None) -> Path:
    """Resolve the pg_config helper, preferring an explicitly configured path."""
    if explicit_path is not None:
        return Path(explicit_path).expanduser()
    return default_pg_config_path(pg_major_version)


def detect_architecture(
    run_command: Callable[..., subprocess.CompletedProcess[str]] = subprocess.run,
) -> str:
    """Return the Debian architecture of the build host."""
    try:
        process = run_command(
            ["dpkg", "--print-architecture"],
            capture_output=True,
            check=False,
            text=True,
        )
    except OSError:
        process = None

    if process is not None and process.returncode == 0 and process.stdout.strip():
        return process.stdout.strip()

    machine = platform.machine().lower()
    architecture = _MACHINE_TO_DEBIAN_ARCH.get(machine, machine)
    logger.debug(f"dpkg unavailable, using {architecture} for machine {machine}")
    return architecture
