from __future__ import annotations

import json
import tarfile
from collections.abc import Callable
from pathlib import Path
from zipfile import ZipFile

import pytest

from distkit.core.config import DistConfig, ExtraArtifactConfig
from distkit.core.result import Err, Ok, Result
from distkit.output.console import MockConsole
from distkit.platform.files import sha_file
from distkit.platform.process import ProcessError
from distkit.release.errors import BuildCommandFailed, BuildFailed, BuildToolMissing, LinkageError, MissingBinaries
from distkit.release.linkage import Linkage
from distkit.release.manifest import build_manifest
from distkit.release.model import ArtifactMode, BuildStep, CargoBuildStep, CargoFeatures, CargoWrapper, DistGraph
from distkit.release.runner import (
    bundle_artifacts,
    cargo_build_command,
    generic_build_env,
    parse_cargo_message,
    run_build_steps,
)
from distkit.release.scheduler import compute_build_steps

from ._fixtures import LINUX, WIN, make_graph, package

type OnLine = Callable[[str], None]


def _no_linkage(path: Path, target: str) -> Result[Linkage, LinkageError]:
    return Ok(Linkage.empty(path.name, target))


def _steps(graph: DistGraph, config: DistConfig) -> list[BuildStep]:
    steps = compute_build_steps(graph, config)
    assert isinstance(steps, Ok)
    return steps.value


def test_cargo_build_command() -> None:
    step = CargoBuildStep(
        target=WIN,
        package="app",
        features=CargoFeatures(default_features=False, features=("a", "b")),
        rustflags="",
        profile="dist",
        wrapper=CargoWrapper.XWIN,
        working_dir=Path("/ws"),
        expected_binaries=(),
    )
    assert cargo_build_command(step) == [
        "cargo", "xwin", "build",
        "--profile", "dist",
        "--message-format=json-render-diagnostics",
        "--target", WIN,
        "--no-default-features",
        "--features", "a,b",
        "--package", "app",
    ]  # fmt: skip


def test_parse_cargo_message() -> None:
    line = json.dumps(
        {"reason": "compiler-artifact", "package_id": "app 1.0.0 (path+file:///ws)", "filenames": ["/t/app"]}
    )
    assert parse_cargo_message(line) == ("app 1.0.0 (path+file:///ws)", [Path("/t/app")])
    assert parse_cargo_message(json.dumps({"reason": "build-finished", "success": True})) is None
    assert parse_cargo_message("   Compiling app v1.0.0") is None
    assert parse_cargo_message("{truncated") is None


def test_generic_build_env() -> None:
    env = generic_build_env(LINUX, base_env={"PATH": "/usr/bin", "CXX": "clang++"})
    assert env["DISTKIT_TARGET"] == LINUX
    assert env["CC"] == "gcc"
    assert env["CXX"] == "clang++"
    assert "CFLAGS" not in env

    brew = {"HOMEBREW_DEPENDENCIES": "zstd", "HOMEBREW_OPT": "/opt/homebrew/opt"}
    env = generic_build_env(None, base_env={"PATH": "/usr/bin"}, brew_env=brew)
    assert env["CFLAGS"] == "-I/opt/homebrew/opt/zstd/include"
    assert env["LDFLAGS"] == "-L/opt/homebrew/opt/zstd/lib"
    assert env["PATH"].startswith("/usr/bin:")
    assert "DISTKIT_TARGET" not in env


class TestRunBuildSteps:
    def test_generic_build_produces_archive(self, tmp_path: Path) -> None:
        config = DistConfig(source_tarball=False)
        pkg_root = tmp_path / "tool"
        pkg_root.mkdir()
        graph = make_graph(
            [package("tool", backend="generic", build_command=("make",), root=pkg_root)],
            config=config,
            root=tmp_path,
        )
        manifest = build_manifest(graph)
        seen: dict[str, object] = {}

        def stream(cmd: list[str], cwd: Path, on_line: OnLine, env: dict[str, str] | None) -> Result[int, ProcessError]:
            seen["cmd"], seen["env"] = cmd, env
            (cwd / "tool").write_bytes(b"\x7fELF tool")
            on_line("built tool")
            return Ok(0)

        console = MockConsole()
        result = run_build_steps(
            graph, _steps(graph, config), manifest, console, stream=stream, check_linkage=_no_linkage, base_env={}
        )

        assert result == Ok(None)
        assert seen["cmd"] == ["make"]
        assert isinstance(seen["env"], dict) and seen["env"]["DISTKIT_TARGET"] == LINUX
        assert console.find("built tool")
        (binary,) = graph.binaries
        assert binary.id in manifest.assets

        assert bundle_artifacts(graph, manifest, console) == Ok(None)
        archive = graph.dist_dir / f"tool-{LINUX}.tar.xz"
        with tarfile.open(archive) as tf:
            assert tf.getnames() == [f"tool-{LINUX}/tool"]
        digest = sha_file(archive)
        assert (graph.dist_dir / f"tool-{LINUX}.tar.xz.sha256").read_text(encoding="utf-8") == (
            f"{digest} *tool-{LINUX}.tar.xz\n"
        )
        assert manifest.artifacts[f"tool-{LINUX}.tar.xz"].checksums == {"sha256": digest}
        assert f"tool-{LINUX}.tar.xz" in (graph.dist_dir / "sha256.sum").read_text(encoding="utf-8")

    def test_cargo_events_fill_expectations(self, tmp_path: Path) -> None:
        config = DistConfig(source_tarball=False)
        graph = make_graph([package("app")], config=config, targets=(WIN,), host=WIN, root=tmp_path, mode=ArtifactMode.LOCAL)
        manifest = build_manifest(graph)
        out = tmp_path / "target" / WIN / "dist"

        def stream(cmd: list[str], cwd: Path, on_line: OnLine, env: dict[str, str] | None) -> Result[int, ProcessError]:
            out.mkdir(parents=True)
            (out / "app.exe").write_bytes(b"MZ")
            (out / "app.pdb").write_bytes(b"PDB")
            on_line("   Compiling app v1.0.0")
            on_line(json.dumps({"reason": "compiler-artifact", "package_id": "path+file:///elsewhere#dep@0.1.0", "filenames": [str(out / "app.exe")]}))
            on_line(json.dumps({"reason": "compiler-artifact", "package_id": "path+file:///ws#app@1.0.0", "filenames": [str(out / "app.exe"), str(out / "app.pdb")]}))
            return Ok(0)

        result = run_build_steps(
            graph, _steps(graph, config), manifest, MockConsole(), stream=stream, check_linkage=_no_linkage, base_env={}
        )

        assert result == Ok(None)
        (binary,) = graph.binaries
        assert binary.copy_symbols_to[0].read_bytes() == b"PDB"

        assert bundle_artifacts(graph, manifest, MockConsole()) == Ok(None)
        with ZipFile(graph.dist_dir / f"app-{WIN}.zip") as zf:
            assert zf.namelist() == [f"app-{WIN}/app.exe"]

    def test_cargo_build_uses_brewfile_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config = DistConfig(source_tarball=False)
        graph = make_graph([package("app")], config=config, root=tmp_path, mode=ArtifactMode.LOCAL)
        manifest = build_manifest(graph)
        out = tmp_path / "target" / LINUX / "dist"
        brew_lines = ["HOMEBREW_DEPENDENCIES=zstd", "HOMEBREW_OPT=/opt/homebrew/opt", "PKG_CONFIG_PATH=/opt/pc"]
        monkeypatch.setattr("distkit.release.runner.fetch_brew_env", lambda working_dir: Ok(brew_lines))
        seen: dict[str, str] = {}

        def stream(cmd: list[str], cwd: Path, on_line: OnLine, env: dict[str, str] | None) -> Result[int, ProcessError]:
            assert env is not None
            seen.update(env)
            out.mkdir(parents=True)
            (out / "app").write_bytes(b"\x7fELF app")
            on_line(json.dumps({"reason": "compiler-artifact", "package_id": "path+file:///ws#app@1.0.0", "filenames": [str(out / "app")]}))
            return Ok(0)

        result = run_build_steps(
            graph, _steps(graph, config), manifest, MockConsole(), stream=stream, check_linkage=_no_linkage,
            base_env={"PATH": "/usr/bin"},
        )

        assert result == Ok(None)
        assert seen["RUSTFLAGS"] == "-L/opt/homebrew/opt/zstd/lib"
        assert seen["PKG_CONFIG_PATH"] == "/opt/pc"
        assert seen["PATH"] == "/usr/bin:/opt/homebrew/opt/zstd/bin:/opt/homebrew/opt/zstd/sbin"

    def test_all_step_failures_are_reported_together(self, tmp_path: Path) -> None:
        config = DistConfig(source_tarball=False)
        roots = {name: tmp_path / name for name in ("broken", "lazy", "fine")}
        for root in roots.values():
            root.mkdir()
        packages = [
            package(name, backend="generic", build_command=(f"build-{name}",), root=root)
            for name, root in roots.items()
        ]
        graph = make_graph(packages, config=config, root=tmp_path)

        def stream(cmd: list[str], cwd: Path, on_line: OnLine, env: dict[str, str] | None) -> Result[int, ProcessError]:
            if cmd == ["build-broken"]:
                return Ok(2)
            if cmd == ["build-fine"]:
                (cwd / "fine").write_bytes(b"ok")
            return Ok(0)

        result = run_build_steps(
            graph, _steps(graph, config), build_manifest(graph), MockConsole(),
            stream=stream, check_linkage=_no_linkage, base_env={},
        )  # fmt: skip

        assert isinstance(result, Err)
        assert isinstance(result.error, BuildFailed)
        failures = result.error.failures
        assert len(failures) == 2
        assert isinstance(failures[0], BuildCommandFailed) and failures[0].returncode == 2
        assert isinstance(failures[1], MissingBinaries) and failures[1].missing == (("lazy", "lazy"),)
        fine = next(b for b in graph.binaries if b.name == "fine")
        assert fine.copy_exe_to[0].is_file()

    def test_missing_build_tool(self, tmp_path: Path) -> None:
        config = DistConfig(source_tarball=False)
        graph = make_graph([package("tool", backend="generic", build_command=("nope",), root=tmp_path)], config=config, root=tmp_path)

        def stream(cmd: list[str], cwd: Path, on_line: OnLine, env: dict[str, str] | None) -> Result[int, ProcessError]:
            return Err(ProcessError(command=tuple(cmd), returncode=-1, stdout="", stderr="No such file"))

        result = run_build_steps(
            graph, _steps(graph, config), build_manifest(graph), MockConsole(),
            stream=stream, check_linkage=_no_linkage, base_env={},
        )  # fmt: skip

        assert isinstance(result, Err)
        (failure,) = result.error.failures
        assert failure == BuildToolMissing(tool="nope", reason="No such file")

    def test_extra_artifacts_are_copied(self, tmp_path: Path) -> None:
        config = DistConfig(
            source_tarball=False,
            extra_artifacts=(ExtraArtifactConfig(artifacts=("gen/schema.json",), build=("gen",), working_dir=tmp_path),),
        )
        graph = make_graph([package("app")], config=config, mode=ArtifactMode.GLOBAL, root=tmp_path)

        def stream(cmd: list[str], cwd: Path, on_line: OnLine, env: dict[str, str] | None) -> Result[int, ProcessError]:
            (cwd / "gen").mkdir()
            (cwd / "gen" / "schema.json").write_text("{}", encoding="utf-8")
            return Ok(0)

        result = run_build_steps(
            graph, _steps(graph, config), build_manifest(graph), MockConsole(),
            stream=stream, check_linkage=_no_linkage, base_env={},
        )  # fmt: skip

        assert result == Ok(None)
        assert (graph.dist_dir / "schema.json").read_text(encoding="utf-8") == "{}"
