"""Build-step scheduling.

Groups the binaries that still need compiling into the fewest backend
invocations: one step per distinct (target, grouping key, feature set).
Cross-compiling targets get a toolchain-setup step first.
"""

from __future__ import annotations

from pathlib import Path

from distkit.core.config import DistConfig
from distkit.core.result import Err, Ok, Result
from distkit.platform.triple import TargetTriple

from .errors import BuildError, PreciseImpossible, UnsupportedCrossCompile
from .model import (
    BinaryIdx,
    BuildStep,
    CargoBuildStep,
    CargoFeatures,
    CargoWrapper,
    DistGraph,
    ExtraArtifact,
    ExtraBuildStep,
    GenericBuildStep,
    PackageIdx,
    ToolchainSetupStep,
)

__all__ = [
    "PROFILE_DIST",
    "build_wrapper_for_cross",
    "compute_build_steps",
    "compute_extra_builds",
    "compute_rustflags",
]

PROFILE_DIST = "dist"


def build_wrapper_for_cross(host: str, target: str) -> Result[CargoWrapper | None, BuildError]:
    """Pick the cross-compilation helper for a (host, target) pair."""
    host_t = TargetTriple(host)
    target_t = TargetTriple(target)
    if host_t.same_platform(target_t):
        return Ok(None)

    if target_t.is_linux:
        if host_t.os_name in ("linux", "darwin", "windows"):
            return Ok(CargoWrapper.ZIGBUILD)
    elif target_t.is_windows:
        if host_t.is_windows:
            return Ok(None)
        if host_t.os_name in ("linux", "darwin"):
            return Ok(CargoWrapper.XWIN)
    elif target_t.is_darwin:
        if host_t.is_darwin:
            return Ok(None)
        if host_t.os_name in ("linux", "windows"):
            return Ok(CargoWrapper.ZIGBUILD)

    return Err(UnsupportedCrossCompile(host=host, target=target))


def compute_rustflags(target: str, *, msvc_crt_static: bool, base: str = "") -> str:
    """RUSTFLAGS for a target: `base` plus C runtime linkage flags."""
    triple = TargetTriple(target)
    flags = base
    if msvc_crt_static and triple.is_windows_msvc:
        flags += " -Ctarget-feature=+crt-static"
    if triple.is_musl:
        flags += " -Ctarget-feature=+crt-static -Clink-self-contained=yes"
    return flags.strip()


def compute_extra_builds(graph: DistGraph) -> list[ExtraBuildStep]:
    """One step per distinct (working dir, command) among extra artifacts."""
    by_command: dict[tuple[Path, tuple[str, ...]], list[str]] = {}
    for artifact in graph.artifacts:
        match artifact.kind:
            case ExtraArtifact(working_dir=working_dir, command=command, relpath=relpath):
                relpaths = by_command.setdefault((working_dir, command), [])
                if relpath not in relpaths:
                    relpaths.append(relpath)
            case _:
                pass
    return [
        ExtraBuildStep(
            working_dir=working_dir,
            command=command,
            artifact_relpaths=tuple(relpaths),
            dest_dir=graph.dist_dir,
        )
        for (working_dir, command), relpaths in by_command.items()
    ]


def _customised_packages(graph: DistGraph, binaries: list[BinaryIdx]) -> list[str]:
    names = {
        graph.package(graph.binary(b).pkg_idx).name
        for b in binaries
        if graph.binary(b).features != CargoFeatures()
    }
    return sorted(names)


def _cargo_steps(
    graph: DistGraph,
    config: DistConfig,
    target: str,
    binaries: list[BinaryIdx],
    wrapper: CargoWrapper | None,
    base_rustflags: str,
) -> Result[list[BuildStep], BuildError]:
    rustflags = compute_rustflags(target, msvc_crt_static=config.msvc_crt_static, base=base_rustflags)

    precise = config.precise_builds
    customised = _customised_packages(graph, binaries)
    if precise is None:
        precise = bool(customised)
    elif not precise and customised:
        return Err(PreciseImpossible(packages=tuple(customised)))

    if not precise:
        return Ok(
            [
                CargoBuildStep(
                    target=target,
                    package=None,
                    features=CargoFeatures(),
                    rustflags=rustflags,
                    profile=PROFILE_DIST,
                    wrapper=wrapper,
                    working_dir=graph.workspace_root,
                    expected_binaries=tuple(binaries),
                )
            ]
        )

    groups: dict[tuple[str, CargoFeatures], list[BinaryIdx]] = {}
    for bin_idx in binaries:
        binary = graph.binary(bin_idx)
        package = graph.package(binary.pkg_idx)
        groups.setdefault((package.name, binary.features), []).append(bin_idx)

    return Ok(
        [
            CargoBuildStep(
                target=target,
                package=pkg_spec,
                features=features,
                rustflags=rustflags,
                profile=PROFILE_DIST,
                wrapper=wrapper,
                working_dir=graph.workspace_root,
                expected_binaries=tuple(expected),
            )
            for (pkg_spec, features), expected in sorted(groups.items())
        ]
    )


def _generic_steps(graph: DistGraph, target: str, binaries: list[BinaryIdx]) -> list[BuildStep]:
    by_package: dict[PackageIdx, list[BinaryIdx]] = {}
    for bin_idx in binaries:
        by_package.setdefault(graph.binary(bin_idx).pkg_idx, []).append(bin_idx)

    steps: list[BuildStep] = []
    for pkg_idx, expected in by_package.items():
        package = graph.package(pkg_idx)
        steps.append(
            GenericBuildStep(
                target=target,
                package_idx=pkg_idx,
                command=package.build_command,
                working_dir=package.root,
                out_dir=package.root,
                expected_binaries=tuple(expected),
            )
        )
    return steps


def compute_build_steps(
    graph: DistGraph,
    config: DistConfig,
    *,
    base_rustflags: str = "",
) -> Result[list[BuildStep], BuildError]:
    """Every build step the graph needs, in execution order.

    Only binaries with at least one pending copy destination are built.
    Extra-artifact builds come last.
    """
    by_target: dict[str, list[BinaryIdx]] = {}
    for idx, binary in enumerate(graph.binaries):
        if binary.needs_build:
            by_target.setdefault(binary.target, []).append(BinaryIdx(idx))

    steps: list[BuildStep] = []
    for target in sorted(by_target):
        binaries = by_target[target]
        cargo_bins = [b for b in binaries if graph.package(graph.binary(b).pkg_idx).backend == "cargo"]
        generic_bins = [b for b in binaries if graph.package(graph.binary(b).pkg_idx).backend == "generic"]

        if cargo_bins:
            wrapper: CargoWrapper | None = None
            if target != graph.host:
                steps.append(ToolchainSetupStep(target=target))
                chosen = build_wrapper_for_cross(graph.host, target)
                if isinstance(chosen, Err):
                    return chosen
                wrapper = chosen.value
            cargo_steps = _cargo_steps(graph, config, target, cargo_bins, wrapper, base_rustflags)
            if isinstance(cargo_steps, Err):
                return cargo_steps
            steps.extend(cargo_steps.value)

        if generic_bins:
            steps.extend(_generic_steps(graph, target, generic_bins))

    steps.extend(compute_extra_builds(graph))
    return Ok(steps)
