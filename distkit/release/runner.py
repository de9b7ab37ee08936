"""Build step execution and artifact bundling.

Runs the steps produced by the scheduler as blocking subprocesses, feeds
backend output to the expectation tracker, and afterwards packs archives
and writes checksum files. Installers, signing and uploads happen
elsewhere.
"""

from __future__ import annotations

import json
import os
import tarfile
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from zipfile import ZIP_DEFLATED, ZipFile

from distkit.core.result import Err, Ok, Result
from distkit.core.structured import as_str_dict, get_str, get_str_list
from distkit.output.console import ConsoleProtocol, Style
from distkit.platform.files import atomic_write_text, copy_file, sha_file
from distkit.platform.process import ProcessError, run, run_streaming
from distkit.platform.triple import TargetTriple

from .env import (
    calculate_cflags,
    calculate_ldflags,
    fetch_brew_env,
    parse_env,
    select_brew_env,
)
from .errors import (
    BuildCommandFailed,
    BuildError,
    BuildFailed,
    BuildToolMissing,
    BundleFailed,
    MissingBinaries,
    StepFailure,
)
from .expectations import BuildExpectations, LinkageCheck
from .linkage import determine_linkage
from .manifest import DistManifest
from .model import (
    Artifact,
    BuildStep,
    CargoBuildStep,
    CargoWrapper,
    Checksum,
    DistGraph,
    ExecutableZip,
    ExtraBuildStep,
    GenericBuildStep,
    SourceTarball,
    ToolchainSetupStep,
    UnifiedChecksum,
)

__all__ = [
    "bundle_artifacts",
    "cargo_build_command",
    "generic_build_env",
    "parse_cargo_message",
    "run_build_steps",
]

type StreamRunner = Callable[
    [list[str], Path, Callable[[str], None], dict[str, str] | None],
    Result[int, ProcessError],
]


def _stream(
    cmd: list[str], cwd: Path, on_line: Callable[[str], None], env: dict[str, str] | None
) -> Result[int, ProcessError]:
    return run_streaming(cmd, cwd, on_line, env=env)


def platform_cc(target: str) -> str:
    triple = TargetTriple(target)
    if triple.is_darwin:
        return "clang"
    if triple.is_linux:
        return "gcc"
    if triple.is_windows:
        return "cl.exe"
    return "cc"


def platform_cxx(target: str) -> str:
    triple = TargetTriple(target)
    if triple.is_darwin:
        return "clang++"
    if triple.is_linux:
        return "g++"
    if triple.is_windows:
        return "cl.exe"
    return "c++"


def cargo_build_command(step: CargoBuildStep) -> list[str]:
    cmd = ["cargo"]
    match step.wrapper:
        case CargoWrapper.ZIGBUILD:
            cmd.append("zigbuild")
        case CargoWrapper.XWIN:
            cmd += ["xwin", "build"]
        case None:
            cmd.append("build")
    cmd += [
        "--profile",
        step.profile,
        "--message-format=json-render-diagnostics",
        "--target",
        step.target,
    ]
    features = step.features
    if not features.default_features:
        cmd.append("--no-default-features")
    if features.all_features:
        cmd.append("--all-features")
    elif features.features:
        cmd += ["--features", ",".join(features.features)]
    if step.package:
        cmd += ["--package", step.package]
    else:
        cmd.append("--workspace")
    return cmd


def parse_cargo_message(line: str) -> tuple[str, list[Path]] | None:
    """(package id, produced files) from a `compiler-artifact` JSON line."""
    if not line.startswith("{"):
        return None
    try:
        message = as_str_dict(json.loads(line))
    except ValueError:
        return None
    if message is None or get_str(message, "reason") != "compiler-artifact":
        return None
    package_id = get_str(message, "package_id")
    filenames = get_str_list(message, "filenames")
    if package_id is None or filenames is None:
        return None
    return package_id, [Path(f) for f in filenames]


def _cargo_id_name_version(package_id: str) -> tuple[str, str | None]:
    # Legacy form: "name version (source)"
    if " " in package_id:
        parts = package_id.split(" ")
        return parts[0], parts[1] if len(parts) > 1 else None
    # pkgid form: "source#name@version" or "source/name#version"
    source, _, fragment = package_id.partition("#")
    if "@" in fragment:
        name, _, version = fragment.partition("@")
        return name, version
    return source.rstrip("/").rsplit("/", 1)[-1], fragment or None


def _resolve_pkg_id(graph: DistGraph, package_id: str) -> str:
    """Map a backend package id onto the id the graph's binaries carry."""
    if any(p.pkg_id == package_id for p in graph.packages):
        return package_id
    name, version = _cargo_id_name_version(package_id)
    for package in graph.packages:
        if package.name != name:
            continue
        if version is None or package.version is None or str(package.version) == version:
            return package.pkg_id
    return package_id


def _brew_flags(working_dir: Path, console: ConsoleProtocol) -> Mapping[str, str] | None:
    """Parsed package-manager environment, or None when unavailable."""
    fetched = fetch_brew_env(working_dir)
    if isinstance(fetched, Err):
        console.warning(f"ignoring Brewfile environment: {fetched.error}")
        return None
    if fetched.value is None:
        return None
    parsed = parse_env(fetched.value)
    if isinstance(parsed, Err):
        console.warning(f"ignoring Brewfile environment: malformed line {parsed.error.line!r}")
        return None
    return parsed.value


def generic_build_env(
    target: str | None,
    *,
    base_env: Mapping[str, str],
    brew_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Environment for a user-supplied build command."""
    env = dict(base_env)
    if brew_env is not None:
        env.update(select_brew_env(brew_env, current_path=base_env.get("PATH")))
        cflags = calculate_cflags(brew_env)
        env["CFLAGS"] = cflags
        env["CPPFLAGS"] = cflags
        env["LDFLAGS"] = calculate_ldflags(brew_env)
    if target is not None:
        env["DISTKIT_TARGET"] = target
        env["CC"] = base_env.get("CC") or platform_cc(target)
        env["CXX"] = base_env.get("CXX") or platform_cxx(target)
    return env


class _StepRunner:
    def __init__(
        self,
        graph: DistGraph,
        manifest: DistManifest,
        console: ConsoleProtocol,
        *,
        stream: StreamRunner,
        check_linkage: LinkageCheck,
        base_env: Mapping[str, str],
    ) -> None:
        self._graph = graph
        self._manifest = manifest
        self._console = console
        self._stream = stream
        self._check_linkage = check_linkage
        self._base_env = base_env

    def _echo(self, line: str) -> None:
        self._console.print(line, Style.DIM)

    def _exec(
        self, step: str, cmd: list[str], cwd: Path, on_line: Callable[[str], None], env: dict[str, str] | None
    ) -> Result[None, StepFailure]:
        result = self._stream(cmd, cwd, on_line, env)
        if isinstance(result, Err):
            return Err(BuildToolMissing(tool=cmd[0], reason=result.error.stderr))
        if result.value != 0:
            return Err(BuildCommandFailed(step=step, command=tuple(cmd), returncode=result.value))
        return Ok(None)

    def _finish(self, tracker: BuildExpectations) -> Result[None, StepFailure]:
        finished = tracker.finish()
        if isinstance(finished, Err):
            return finished
        return tracker.process_bins(self._manifest, self._console, check_linkage=self._check_linkage)

    def toolchain(self, step: ToolchainSetupStep) -> Result[None, StepFailure]:
        self._console.info(f"ensuring the {step.target} toolchain is installed")
        cmd = ["rustup", "target", "add", step.target]
        return self._exec(f"rustup target add {step.target}", cmd, self._graph.workspace_root, self._echo, None)

    def cargo(self, step: CargoBuildStep) -> Result[None, StepFailure]:
        self._console.info(step.describe())
        tracker = BuildExpectations(self._graph, step.expected_binaries, step=step.describe())
        tracker.start()

        def on_line(line: str) -> None:
            parsed = parse_cargo_message(line)
            if parsed is not None:
                package_id, filenames = parsed
                tracker.found_bins(_resolve_pkg_id(self._graph, package_id), filenames)

        env = dict(self._base_env)
        rustflags = step.rustflags
        brew_env = _brew_flags(step.working_dir, self._console)
        if brew_env is not None:
            env.update(select_brew_env(brew_env, current_path=self._base_env.get("PATH")))
            rustflags = f"{rustflags} {calculate_ldflags(brew_env)}".strip()
        if rustflags:
            env["RUSTFLAGS"] = rustflags
        ran = self._exec(step.describe(), cargo_build_command(step), step.working_dir, on_line, env)
        if isinstance(ran, Err):
            tracker.fail()
            return ran
        return self._finish(tracker)

    def generic(self, step: GenericBuildStep) -> Result[None, StepFailure]:
        self._console.info(f"building {step.describe()}")
        package = self._graph.package(step.package_idx)
        tracker = BuildExpectations(self._graph, step.expected_binaries, step=step.describe())
        tracker.start()

        env = generic_build_env(
            step.target,
            base_env=self._base_env,
            brew_env=_brew_flags(step.working_dir, self._console),
        )
        ran = self._exec(step.describe(), list(step.command), step.working_dir, self._echo, env)
        if isinstance(ran, Err):
            tracker.fail()
            return ran

        symbols = sorted(step.out_dir.glob("*.pdb"))
        for bin_idx in step.expected_binaries:
            binary = self._graph.binary(bin_idx)
            tracker.found_bin(package.pkg_id, step.out_dir / binary.file_name, symbols)
        return self._finish(tracker)

    def extra(self, step: ExtraBuildStep) -> Result[None, StepFailure]:
        self._console.info(step.describe())
        env = generic_build_env(
            None,
            base_env=self._base_env,
            brew_env=_brew_flags(step.working_dir, self._console),
        )
        ran = self._exec(step.describe(), list(step.command), step.working_dir, self._echo, env)
        if isinstance(ran, Err):
            return ran

        missing: list[tuple[str, str]] = []
        for relpath in step.artifact_relpaths:
            src = step.working_dir / relpath
            if not src.is_file():
                missing.append(("extra build", Path(relpath).name))
                continue
            try:
                copy_file(src, step.dest_dir / src.name)
            except OSError as e:
                return Err(BundleFailed(artifact=src.name, reason=str(e)))
        if missing:
            return Err(MissingBinaries(step=step.describe(), missing=tuple(missing)))
        return Ok(None)

    def run(self, step: BuildStep) -> Result[None, StepFailure]:
        match step:
            case ToolchainSetupStep():
                return self.toolchain(step)
            case CargoBuildStep():
                return self.cargo(step)
            case GenericBuildStep():
                return self.generic(step)
            case ExtraBuildStep():
                return self.extra(step)


def run_build_steps(
    graph: DistGraph,
    steps: Sequence[BuildStep],
    manifest: DistManifest,
    console: ConsoleProtocol,
    *,
    stream: StreamRunner = _stream,
    check_linkage: LinkageCheck = determine_linkage,
    base_env: Mapping[str, str] | None = None,
) -> Result[None, BuildFailed]:
    """Run every step; failures of all steps are reported together."""
    runner = _StepRunner(
        graph,
        manifest,
        console,
        stream=stream,
        check_linkage=check_linkage,
        base_env=dict(os.environ) if base_env is None else base_env,
    )
    failures: list[StepFailure] = []
    for step in steps:
        result = runner.run(step)
        if isinstance(result, Err):
            failures.append(result.error)
    if failures:
        return Err(BuildFailed(failures=tuple(failures)))
    return Ok(None)


# Bundling


def _archive(artifact: Artifact, kind: ExecutableZip) -> None:
    prefix = kind.archive_dir.name
    files = [(kind.archive_dir / rel, f"{prefix}/{rel}") for rel in sorted(kind.required_binaries.values())]
    files += [(src, f"{prefix}/{src.name}") for src in kind.static_assets]
    for src, _ in files:
        if not src.is_file():
            raise FileNotFoundError(f"{src} was not produced")

    dest = artifact.file_path
    dest.parent.mkdir(parents=True, exist_ok=True)
    if kind.format == ".zip":
        # Build outputs may carry pre-1980 mtimes that ZIP cannot store.
        with ZipFile(dest, "w", compression=ZIP_DEFLATED, strict_timestamps=False) as zf:
            for src, arc in files:
                zf.write(src, arcname=arc)
        return
    mode = "w:gz" if kind.format == ".tar.gz" else "w:xz"
    with tarfile.open(dest, mode) as tf:
        for src, arc in files:
            tf.add(src, arcname=arc)


def _source_tarball(artifact: Artifact, kind: SourceTarball) -> Result[None, BundleFailed]:
    result = run(
        ["git", "archive", "--format=tar.gz", "--prefix=source/", "-o", str(artifact.file_path), "HEAD"],
        cwd=kind.working_dir,
    )
    if isinstance(result, Err):
        return Err(BundleFailed(artifact=artifact.id, reason=str(result.error)))
    return Ok(None)


def _record_checksum(manifest: DistManifest, artifact_id: str, style: str, digest: str) -> None:
    entry = manifest.artifacts.get(artifact_id)
    if entry is not None:
        entry.checksums[style] = digest


def bundle_artifacts(
    graph: DistGraph,
    manifest: DistManifest,
    console: ConsoleProtocol,
) -> Result[None, BuildError]:
    """Create archives and checksum files for the graph's artifacts.

    Artifacts produced by other tools (installers, updaters) are skipped;
    checksums of files that do not exist here are skipped with a warning.
    """
    graph.dist_dir.mkdir(parents=True, exist_ok=True)

    for artifact in graph.artifacts:
        match artifact.kind:
            case ExecutableZip() as kind:
                try:
                    _archive(artifact, kind)
                except OSError as e:
                    return Err(BundleFailed(artifact=artifact.id, reason=str(e)))
                console.success(f"packaged {artifact.id}")
            case SourceTarball() as kind:
                made = _source_tarball(artifact, kind)
                if isinstance(made, Err):
                    return made
                console.success(f"packaged {artifact.id}")
            case _:
                pass

    try:
        _write_checksums(graph, manifest, console)
    except OSError as e:
        return Err(BundleFailed(artifact="checksums", reason=str(e)))
    return Ok(None)


def _write_checksums(graph: DistGraph, manifest: DistManifest, console: ConsoleProtocol) -> None:
    for artifact in graph.artifacts:
        match artifact.kind:
            case Checksum(style=style, of=of_idx):
                of = graph.artifact(of_idx)
                if not of.file_path.is_file():
                    console.warning(f"{of.id} was not produced here; skipping {artifact.id}")
                    continue
                digest = sha_file(of.file_path, style)
                atomic_write_text(artifact.file_path, f"{digest} *{of.id}\n")
                _record_checksum(manifest, of.id, style, digest)
            case _:
                pass

    for artifact in graph.artifacts:
        match artifact.kind:
            case UnifiedChecksum(style=style):
                lines: list[str] = []
                for other in sorted(graph.artifacts, key=lambda a: a.id):
                    if isinstance(other.kind, (Checksum, UnifiedChecksum)) or not other.file_path.is_file():
                        continue
                    digest = sha_file(other.file_path, style)
                    _record_checksum(manifest, other.id, style, digest)
                    lines.append(f"{digest} *{other.id}\n")
                atomic_write_text(artifact.file_path, "".join(lines))
            case _:
                pass
