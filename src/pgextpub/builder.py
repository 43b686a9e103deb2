from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from pgextpub.build_engine import (
    DownloadSession,
    RunCommand,
    extract_archive,
    run_build_command,
    stream_download_to_target,
)
from pgextpub.build_variants import BuildVariant, select_variant
from pgextpub.config import PipelineConfig
from pgextpub.exceptions import BuildError, PackagingError
from pgextpub.internal_config import (
    HTTP_STREAM_CONNECT_TIMEOUT_SECONDS,
    HTTP_STREAM_READ_TIMEOUT_SECONDS,
)
from pgextpub.models import BuildArtifact, CanonicalVersion
from pgextpub.versioning import PACKAGE_RELEASE, package_file_name, package_name

logger: logging.Logger = logging.getLogger(__name__)


class ExtensionBuilder(object):
    """Compile one PostgreSQL extension from source and package it as a .deb."""

    config: PipelineConfig
    session: DownloadSession
    run_command: RunCommand

    def __init__(
        self,
        config: PipelineConfig,
        session: DownloadSession,
        run_command: RunCommand = subprocess.run,
        cpu_count: int | None = None,
    ) -> None:
        self.config = config
        self.session = session
        self.run_command = run_command
        self.cpu_count = cpu_count or os.cpu_count() or 1

    def create_scratch_dir(self, name: str, version: CanonicalVersion) -> Path:
        """Return a new, empty directory for one build attempt."""
        try:
            self.config.scratch_root.mkdir(parents=True, exist_ok=True)
            scratch_dir = Path(
                tempfile.mkdtemp(
                    prefix=f"{name}-{version}.", dir=self.config.scratch_root
                )
            )
            scratch_dir.joinpath("dist").mkdir()
        except OSError as exc:
            raise BuildError(
                f"Cannot create a build directory in {self.config.scratch_root}: {exc}",
                stage="scratch",
            ) from exc
        return scratch_dir

    def resolve_pg_config(self) -> Path:
        pg_config = self.config.pg_config_path
        if not pg_config.is_file():
            raise BuildError(
                f"pg_config not found at {pg_config}; is the PostgreSQL"
                f" {self.config.pg_major_version} server dev package installed?",
                stage="pg_config",
            )
        return pg_config

    def _environment(self, pg_config: Path) -> dict[str, str]:
        return {**os.environ, "PG_CONFIG": str(pg_config)}

    def run_pre_build_steps(
        self, variant: BuildVariant, source_dir: Path, env: dict[str, str]
    ) -> None:
        for step in variant.steps:
            workdir = source_dir.joinpath(step.workdir)
            if step.create_workdir:
                workdir.mkdir(parents=True, exist_ok=True)
            run_build_command(
                list(step.command),
                cwd=workdir,
                stage=step.stage,
                env=env,
                run_command=self.run_command,
            )

    def run_make(
        self,
        variant: BuildVariant,
        build_dir: Path,
        pg_config: Path,
        env: dict[str, str],
    ) -> None:
        cmd = [
            "make",
            f"OPTFLAGS={variant.optflags(self.config.optflags)}",
            f"-j{self.cpu_count}",
            f"PG_CONFIG={pg_config}",
        ]
        run_build_command(
            cmd, cwd=build_dir, stage="make", env=env, run_command=self.run_command
        )

    def package(
        self,
        name: str,
        version: CanonicalVersion,
        build_dir: Path,
        dist_dir: Path,
        env: dict[str, str],
    ) -> Path:
        """Turn the installed files of a finished build into a .deb.

        checkinstall only records what ``make install`` would install; the
        files are never installed on the build host.
        """
        cmd = [
            "checkinstall",
            "--default",
            "-D",
            "--nodoc",
            "--install=no",
            "--fstrans=no",
            "--backup=no",
            f"--pkgname={package_name(name)}",
            f"--pkgversion={version}",
            f"--pkgrelease={PACKAGE_RELEASE}",
            f"--pkgarch={self.config.architecture}",
            f"--pakdir={dist_dir}",
        ]
        if self.config.use_sudo:
            cmd.insert(0, "sudo")

        try:
            run_build_command(
                cmd,
                cwd=build_dir,
                stage="checkinstall",
                env=env,
                run_command=self.run_command,
            )
        except BuildError as exc:
            raise PackagingError(str(exc), exit_code=exc.exit_code) from exc

        package_path = dist_dir.joinpath(
            package_file_name(name, version, self.config.architecture)
        )
        if not package_path.is_file():
            found = sorted(path.name for path in dist_dir.glob("*.deb"))
            raise PackagingError(
                f"checkinstall did not produce {package_path.name}"
                f" (found: {', '.join(found) or 'nothing'})"
            )
        return package_path

    def build(
        self, name: str, version: CanonicalVersion, source_url: str
    ) -> BuildArtifact:
        """Download, compile and package *name* at *version*.

        On failure the scratch directory is left behind for inspection and
        no artifact is returned.
        """
        self.config.require_build_settings()

        scratch_dir = self.create_scratch_dir(name, version)
        # checkinstall derives package metadata from the source directory name
        source_dir = scratch_dir.joinpath(f"{name}-{version}")
        dist_dir = scratch_dir.joinpath("dist")

        logger.info(f"Downloading {name} {version} from {source_url}")
        archive_path = stream_download_to_target(
            session=self.session,
            url=source_url,
            target_path=scratch_dir.joinpath(f"{name}.tar.gz"),
            timeout=(
                HTTP_STREAM_CONNECT_TIMEOUT_SECONDS,
                HTTP_STREAM_READ_TIMEOUT_SECONDS,
            ),
        )
        extract_archive(archive_path, source_dir, strip_components=1)

        pg_config = self.resolve_pg_config()
        variant = select_variant(name)
        env = self._environment(pg_config)
        build_dir = source_dir.joinpath(variant.build_subdir)

        logger.info(f"Building {name} {version} ({variant.name} variant) in {source_dir}")
        self.run_pre_build_steps(variant, source_dir, env)
        self.run_make(variant, build_dir, pg_config, env)
        package_path = self.package(name, version, build_dir, dist_dir, env)
        logger.info(f"Packaged {name} {version} as {package_path.name}")

        return BuildArtifact(
            name=name,
            version=version,
            path=package_path,
            pg_major_version=self.config.pg_major_version,
            architecture=self.config.architecture,
            scratch_dir=scratch_dir,
        )

    def cleanup(self, artifact: BuildArtifact) -> None:
        """Remove the scratch directory of a published artifact."""
        if artifact.scratch_dir is None:
            return
        if self.config.keep_scratch:
            logger.info(f"Keeping build directory {artifact.scratch_dir}")
            return
        shutil.rmtree(artifact.scratch_dir, ignore_errors=True)
