from __future__ import annotations

from pathlib import Path

from distkit.core.config import DistConfig, ExtraArtifactConfig
from distkit.core.result import Err, Ok
from distkit.output.console import MockConsole, Style
from distkit.release.errors import NothingToRelease, NoTargets
from distkit.release.graph import build_graph, select_packages
from distkit.release.model import (
    ArtifactMode,
    BinaryKind,
    Checksum,
    DistGraph,
    ExecutableZip,
    Installer,
    SourceTarball,
    Symbols,
    UnifiedChecksum,
)
from distkit.release.tag import parse_tag

from ._fixtures import LINUX, MAC, WIN, make_graph, package


def _ids(graph: DistGraph) -> set[str]:
    return {a.id for a in graph.artifacts}


class TestSelectPackages:
    def test_skips_packages_without_binaries(self) -> None:
        packages = [package("app", "1.0.0"), package("lib", "1.0.0", binaries=())]
        announcing = parse_tag(packages, "v1.0.0")
        assert isinstance(announcing, Ok)
        console = MockConsole()

        result = select_packages(packages, announcing.value, console)

        assert isinstance(result, Ok)
        assert result.value == [0]
        assert console.find("lib: skipped (no binaries)")[0].style == Style.DIM
        assert console.find("app: releasing 1.0.0")

    def test_explicit_library_tag_is_nothing_to_release(self) -> None:
        packages = [package("app", "1.0.0"), package("lib", "2.0.0", binaries=())]
        announcing = parse_tag(packages, "lib-v2.0.0")
        assert isinstance(announcing, Ok)

        result = select_packages(packages, announcing.value, MockConsole())

        assert isinstance(result, Err)
        assert isinstance(result.error, NothingToRelease)
        assert "lib" in result.error.reason

    def test_version_mismatch_is_skipped(self) -> None:
        packages = [package("a", "1.0.0"), package("b", "2.0.0")]
        announcing = parse_tag(packages, "v2.0.0")
        assert isinstance(announcing, Ok)
        console = MockConsole()

        result = select_packages(packages, announcing.value, console)

        assert isinstance(result, Ok)
        assert result.value == [1]
        assert console.find("a: skipped (version 1.0.0 != 2.0.0)")


class TestBuildGraph:
    def test_app_and_library_workspace(self) -> None:
        graph = make_graph(
            [package("app", "1.0.0"), package("lib", "1.0.0", binaries=())],
            config=DistConfig(),
            targets=(LINUX,),
        )

        assert [r.app_name for r in graph.releases] == ["app"]
        assert len(graph.variants) == 1
        assert _ids(graph) == {
            f"app-{LINUX}.tar.xz",
            f"app-{LINUX}.tar.xz.sha256",
            "source.tar.gz",
            "source.tar.gz.sha256",
            "sha256.sum",
        }
        (binary,) = graph.binaries
        assert binary.id == f"app-v1.0.0-{LINUX}-app"
        assert binary.file_name == "app"
        assert binary.copy_exe_to == [Path("/ws/target/distrib") / f"app-{LINUX}" / "app"]

    def test_archive_formats_follow_target(self) -> None:
        graph = make_graph([package()], targets=(LINUX, WIN, MAC))
        zips = {a.id: a for a in graph.artifacts if isinstance(a.kind, ExecutableZip)}
        assert set(zips) == {f"app-{LINUX}.tar.xz", f"app-{WIN}.zip", f"app-{MAC}.tar.xz"}
        assert list(zips[f"app-{WIN}.zip"].required_binaries.values()) == ["app.exe"]

    def test_windows_binaries_and_symbols(self) -> None:
        graph = make_graph([package(cdylibs=("core",), cstaticlibs=("core",))], targets=(WIN,))

        by_kind = {b.kind: b for b in graph.binaries}
        assert by_kind[BinaryKind.EXECUTABLE].file_name == "app.exe"
        assert by_kind[BinaryKind.DYNAMIC_LIBRARY].file_name == "core.dll"
        assert by_kind[BinaryKind.DYNAMIC_LIBRARY].id.endswith("-cdylib")
        assert by_kind[BinaryKind.STATIC_LIBRARY].file_name == "core.lib"

        symbols = [a for a in graph.artifacts if isinstance(a.kind, Symbols)]
        assert sorted(a.id for a in symbols) == [
            f"app-v1.0.0-{WIN}-app.pdb",
            f"app-v1.0.0-{WIN}-core-cdylib.pdb",
        ]
        assert by_kind[BinaryKind.STATIC_LIBRARY].copy_symbols_to == []

    def test_no_symbols_off_msvc(self) -> None:
        graph = make_graph([package()], targets=(LINUX, MAC))
        assert not any(isinstance(a.kind, Symbols) for a in graph.artifacts)

    def test_installers_filter_compatible_targets(self) -> None:
        config = DistConfig(installers=("shell", "powershell", "homebrew", "msi", "npm"))
        graph = make_graph([package()], config=config, targets=(LINUX, WIN, MAC))
        installers = {a.id: a for a in graph.artifacts if isinstance(a.kind, Installer)}

        assert installers["app-installer.sh"].target_triples == (LINUX, MAC)
        assert installers["app-installer.ps1"].target_triples == (WIN,)
        assert installers["app.rb"].target_triples == (LINUX, MAC)
        assert installers["app-npm-package.tar.gz"].target_triples == (LINUX, WIN, MAC)
        assert installers[f"app-{WIN}.msi"].is_global is False
        (exe,) = [b for b in graph.binaries if b.target == WIN]
        assert len(exe.copy_exe_to) == 2

    def test_powershell_dropped_without_windows(self) -> None:
        config = DistConfig(installers=("powershell", "msi"))
        graph = make_graph([package()], config=config, targets=(LINUX,))
        assert not any(isinstance(a.kind, Installer) for a in graph.artifacts)

    def test_hosting_urls_in_install_hint(self) -> None:
        config = DistConfig(installers=("shell",), hosting=("github",), github_repo="acme/app")
        graph = make_graph([package()], config=config, tag="v1.0.0")
        (release,) = graph.releases
        assert release.hosting["github"]["owner"] == "acme"
        shell = next(a for a in graph.artifacts if a.id == "app-installer.sh")
        assert isinstance(shell.kind, Installer)
        assert "https://github.com/acme/app/releases/download/v1.0.0/app-installer.sh" in shell.kind.hint

    def test_checksums_disabled(self) -> None:
        graph = make_graph([package()], config=DistConfig(checksum="false"))
        assert not any(isinstance(a.kind, (Checksum, UnifiedChecksum)) for a in graph.artifacts)

    def test_shared_global_artifacts_across_releases(self) -> None:
        config = DistConfig(
            extra_artifacts=(
                ExtraArtifactConfig(artifacts=("out/schema.json",), build=("make",), working_dir=Path("/ws")),
            ),
        )
        graph = make_graph([package("a"), package("b")], config=config)

        tarballs = [a for a in graph.artifacts if isinstance(a.kind, SourceTarball)]
        assert len(tarballs) == 1
        assert "schema.json" in _ids(graph)
        for release in graph.releases:
            ids = {graph.artifact(i).id for i in release.global_artifacts}
            assert {"source.tar.gz", "schema.json", "sha256.sum"} <= ids

    def test_local_mode_has_no_global_artifacts(self) -> None:
        graph = make_graph([package()], mode=ArtifactMode.LOCAL, targets=(LINUX, MAC))
        assert all(not a.is_global for a in graph.artifacts)
        assert len([a for a in graph.artifacts if isinstance(a.kind, ExecutableZip)]) == 2

    def test_global_mode_builds_nothing(self) -> None:
        graph = make_graph([package()], mode=ArtifactMode.GLOBAL, targets=(LINUX, MAC))
        assert all(a.is_global for a in graph.artifacts)
        assert not any(b.needs_build for b in graph.binaries)

    def test_host_mode_only_builds_host_target(self) -> None:
        graph = make_graph([package()], mode=ArtifactMode.HOST, targets=(LINUX, MAC), host=LINUX)
        zips = [a for a in graph.artifacts if isinstance(a.kind, ExecutableZip)]
        assert [z.target_triples for z in zips] == [(LINUX,)]
        assert any(a.is_global for a in graph.artifacts)

    def test_package_target_restriction(self) -> None:
        graph = make_graph([package(targets=(MAC,))], targets=(LINUX, MAC))
        assert [v.target for v in graph.variants] == [MAC]

    def test_no_supported_targets(self) -> None:
        packages = [package(targets=(MAC,))]
        announcing = parse_tag(packages, "v1.0.0")
        assert isinstance(announcing, Ok)
        result = build_graph(
            packages,
            announcing.value,
            DistConfig(),
            workspace_root=Path("/ws"),
            targets=(LINUX,),
            mode=ArtifactMode.ALL,
            host=LINUX,
            console=MockConsole(),
        )
        assert isinstance(result, Err)
        assert result.error == NoTargets(app_name="app")

    def test_targets_fall_back_to_config_then_host(self) -> None:
        configured = make_graph([package()], config=DistConfig(targets=(MAC,)), targets=())
        assert configured.targets == (MAC,)
        bare = make_graph([package()], targets=(), host=LINUX)
        assert bare.targets == (LINUX,)

    def test_artifact_ids_are_unique(self) -> None:
        config = DistConfig(installers=("shell", "powershell", "msi", "homebrew", "npm"))
        graph = make_graph([package("a"), package("b")], config=config, targets=(LINUX, WIN, MAC))
        ids = [a.id for a in graph.artifacts]
        assert len(ids) == len(set(ids))
