"""Run configuration.

The environment is read exactly once, by :func:`load_config`, and the
resulting :class:`PipelineConfig` is handed to every component.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from pgextpub.exceptions import ConfigurationError
from pgextpub.internal_config import DEFAULT_API_URL, DEFAULT_REPOSITORY
from pgextpub.toolchain_paths import detect_architecture, resolve_pg_config

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class PipelineConfig:
    github_token: str = ""
    repository: str = DEFAULT_REPOSITORY
    api_url: str = DEFAULT_API_URL
    pg_major_version: str = ""
    architecture: str = ""
    pg_config: Path | None = None
    optflags: str = ""
    scratch_root: Path = Path(tempfile.gettempdir())
    use_sudo: bool = False
    keep_scratch: bool = False
    jobs: int = 1

    @property
    def pg_config_path(self) -> Path:
        return resolve_pg_config(self.pg_major_version, self.pg_config)

    @property
    def repository_api_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/repos/{self.repository}"

    def require_build_settings(self) -> None:
        if not self.pg_major_version:
            raise ConfigurationError(
                "PG_MAJOR_VERSION (or --pg-major) is required to build extensions"
            )
        if not self.architecture:
            raise ConfigurationError("ARCH (or --arch) is required to name packages")

    def require_publish_settings(self) -> None:
        if not self.github_token:
            raise ConfigurationError("GITHUB_TOKEN is required to publish releases")
        if self.repository.count("/") != 1 or not all(self.repository.split("/")):
            raise ConfigurationError(
                f"Repository must look like owner/name, got {self.repository!r}"
            )


def _parse_flag(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_jobs(value: Any) -> int:
    try:
        jobs = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"jobs must be an integer, got {value!r}") from exc
    if jobs < 1:
        raise ConfigurationError(f"jobs must be at least 1, got {jobs}")
    return jobs


def load_config(
    environ: Mapping[str, str] | None = None,
    detect_arch: Callable[[], str] = detect_architecture,
    **overrides: Any,
) -> PipelineConfig:
    """Build the run configuration from *environ* plus explicit overrides.

    Overrides whose value is ``None`` are ignored, so CLI options that were
    not given fall back to the environment.
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {
        "github_token": env.get("GITHUB_TOKEN", "").strip(),
        "repository": env.get("PGEXTPUB_REPOSITORY", "").strip() or DEFAULT_REPOSITORY,
        "api_url": env.get("PGEXTPUB_API_URL", "").strip() or DEFAULT_API_URL,
        "pg_major_version": env.get("PG_MAJOR_VERSION", "").strip(),
        "architecture": env.get("ARCH", "").strip(),
        "optflags": env.get("OPTFLAGS", ""),
        "use_sudo": _parse_flag("PGEXTPUB_SUDO", env.get("PGEXTPUB_SUDO", "")),
        "keep_scratch": _parse_flag(
            "PGEXTPUB_KEEP_SCRATCH", env.get("PGEXTPUB_KEEP_SCRATCH", "")
        ),
        "jobs": _parse_jobs(env.get("PGEXTPUB_JOBS", "1") or "1"),
    }

    pg_config = env.get("PG_CONFIG", "").strip()
    if pg_config:
        values["pg_config"] = Path(pg_config)
    scratch_root = env.get("PGEXTPUB_SCRATCH_DIR", "").strip()
    if scratch_root:
        values["scratch_root"] = Path(scratch_root).expanduser()

    for key, value in overrides.items():
        if key not in PipelineConfig.__dataclass_fields__:
            raise ConfigurationError(f"Unknown configuration option: {key}")
        if value is not None:
            values[key] = value

    values["jobs"] = _parse_jobs(values["jobs"])
    if not values["architecture"]:
        values["architecture"] = detect_arch()

    return PipelineConfig(**values)
