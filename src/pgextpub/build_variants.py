"""Per-extension build variants.

Most extensions build with a plain ``make``. The few that need extra
preparation are listed in :data:`BUILD_VARIANTS`; supporting a new one is an
entry in that table.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PreBuildStep:
    stage: str
    command: tuple[str, ...]
    # relative to the extracted source tree
    workdir: str = "."
    create_workdir: bool = False


@dataclass(frozen=True)
class BuildVariant:
    name: str
    steps: tuple[PreBuildStep, ...] = ()
    build_subdir: str = "."
    suppress_optflags: bool = False

    def optflags(self, configured: str) -> str:
        return "" if self.suppress_optflags else configured


DEFAULT_VARIANT = BuildVariant(name="default")

# -march=native builds crash with "illegal instruction" on other CPUs
PORTABLE_VARIANT = BuildVariant(name="portable", suppress_optflags=True)

AUTOTOOLS_VARIANT = BuildVariant(
    name="autotools",
    steps=(
        PreBuildStep(stage="autogen", command=("./autogen.sh",)),
        PreBuildStep(stage="configure", command=("./configure",)),
    ),
)

CMAKE_VARIANT = BuildVariant(
    name="cmake",
    steps=(
        PreBuildStep(
            stage="cmake",
            command=("cmake", ".."),
            workdir="build",
            create_workdir=True,
        ),
    ),
    build_subdir="build",
)

BUILD_VARIANTS: dict[str, BuildVariant] = {
    "pgvector": PORTABLE_VARIANT,
    "postgis": AUTOTOOLS_VARIANT,
    "pgrouting": CMAKE_VARIANT,
}


def select_variant(extension_name: str) -> BuildVariant:
    return BUILD_VARIANTS.get(extension_name, DEFAULT_VARIANT)
