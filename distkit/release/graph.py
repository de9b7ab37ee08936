"""Release graph construction.

Turns the packages chosen by the announcement tag, the requested targets
and an artifact mode into Releases, Variants, Artifacts and Binaries. The
result is a plain `DistGraph` value; nothing here touches the network or
runs a build.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from distkit.core.config import DistConfig, InstallerStyle
from distkit.core.result import Err, Ok, Result
from distkit.output.console import ConsoleProtocol, Style
from distkit.platform.triple import TargetTriple

from .errors import GraphError, NothingToRelease, NoTargets
from .model import (
    Artifact,
    ArtifactIdx,
    ArtifactMode,
    Binary,
    BinaryIdx,
    BinaryKind,
    Checksum,
    DistGraph,
    ExecutableZip,
    ExtraArtifact,
    Installer,
    Package,
    PackageIdx,
    Release,
    ReleaseIdx,
    SourceTarball,
    Symbols,
    UnifiedChecksum,
    Updater,
    Variant,
    VariantIdx,
)
from .tag import AllMatchingVersion, AnnouncementTag, SinglePackage

__all__ = ["build_graph", "select_packages"]

SOURCE_TARBALL_NAME = "source.tar.gz"


def select_packages(
    packages: Sequence[Package],
    announcing: AnnouncementTag,
    console: ConsoleProtocol,
) -> Result[list[PackageIdx], GraphError]:
    """Pick the packages to release, reporting each decision.

    Packages without binaries are never released, even when the tag names
    them explicitly.
    """
    selected: list[PackageIdx] = []
    for i, package in enumerate(packages):
        idx = PackageIdx(i)
        match announcing.selection:
            case SinglePackage(idx=chosen) if chosen != idx:
                console.print(f"{package.name}: skipped (not selected by tag)", Style.DIM)
                continue
            case AllMatchingVersion(version=version) if package.version != version:
                have = package.version if package.version is not None else "no version"
                console.print(f"{package.name}: skipped (version {have} != {version})", Style.DIM)
                continue
            case _:
                pass
        if not package.has_binaries:
            console.print(f"{package.name}: skipped (no binaries)", Style.DIM)
            continue
        console.info(f"{package.name}: releasing {announcing.version}")
        selected.append(idx)

    if not selected:
        match announcing.selection:
            case SinglePackage(idx=chosen):
                reason = f"package {packages[chosen].name} has no binaries to release"
            case AllMatchingVersion(version=version):
                reason = f"no package with binaries has version {version}"
        return Err(NothingToRelease(tag=announcing.tag, reason=reason))
    return Ok(selected)


def _hosting(config: DistConfig, tag: str) -> dict[str, dict[str, str]]:
    if "github" not in config.hosting or not config.github_repo or "/" not in config.github_repo:
        return {}
    owner, repo = config.github_repo.split("/", 1)
    return {
        "github": {
            "owner": owner,
            "repo": repo,
            "artifact_download_url": f"https://github.com/{owner}/{repo}/releases/download/{tag}",
        }
    }


def _wants_local(mode: ArtifactMode, target: str, host: str) -> bool:
    match mode:
        case ArtifactMode.LOCAL | ArtifactMode.ALL:
            return True
        case ArtifactMode.HOST:
            return target == host
        case ArtifactMode.GLOBAL:
            return False


def _binary_id(release: Release, target: str, name: str, kind: BinaryKind) -> str:
    base = f"{release.app_name}-v{release.version}-{target}-{name}"
    match kind:
        case BinaryKind.EXECUTABLE:
            return base
        case BinaryKind.DYNAMIC_LIBRARY:
            return f"{base}-cdylib"
        case BinaryKind.STATIC_LIBRARY:
            return f"{base}-cstaticlib"


def _variant_binaries(graph: DistGraph, variant_idx: VariantIdx) -> list[BinaryIdx]:
    variant = graph.variant(variant_idx)
    release = graph.release(variant.release)
    package = graph.package(release.package_idx)
    triple = TargetTriple(variant.target)

    wanted = [
        *((name, BinaryKind.EXECUTABLE, triple.exe_name(name)) for name in package.binaries),
        *((name, BinaryKind.DYNAMIC_LIBRARY, triple.dylib_name(name)) for name in package.cdylibs),
        *((name, BinaryKind.STATIC_LIBRARY, triple.staticlib_name(name)) for name in package.cstaticlibs),
    ]
    for name, kind, file_name in wanted:
        idx = graph.add_binary(
            Binary(
                id=_binary_id(release, variant.target, name, kind),
                name=name,
                kind=kind,
                pkg_idx=release.package_idx,
                pkg_id=package.pkg_id,
                target=variant.target,
                file_name=file_name,
                features=package.features,
            )
        )
        if idx not in variant.binaries:
            variant.binaries.append(idx)
    return variant.binaries


def _add_checksum(
    graph: DistGraph, config: DistConfig, of_idx: ArtifactIdx, owner: list[ArtifactIdx]
) -> None:
    if config.checksum == "false":
        return
    of = graph.artifact(of_idx)
    checksum_id = f"{of.id}.{config.checksum}"
    idx = graph.find_artifact(checksum_id)
    if idx is None:
        idx = graph.add_artifact(
            Artifact(
                id=checksum_id,
                kind=Checksum(style=config.checksum, of=of_idx),
                target_triples=of.target_triples,
                file_path=graph.dist_dir / checksum_id,
                is_global=of.is_global,
            )
        )
    of.checksum = idx
    if idx not in owner:
        owner.append(idx)


def _add_local_artifacts(graph: DistGraph, config: DistConfig, variant_idx: VariantIdx) -> None:
    variant = graph.variant(variant_idx)
    release = graph.release(variant.release)
    package = graph.package(release.package_idx)
    triple = TargetTriple(variant.target)
    app = release.app_name
    bins = _variant_binaries(graph, variant_idx)

    fmt = config.windows_archive if triple.is_windows else config.unix_archive
    zip_id = f"{app}-{variant.target}{fmt}"
    archive = ExecutableZip(
        archive_dir=graph.dist_dir / f"{app}-{variant.target}",
        format=fmt,
        static_assets=list(package.static_assets),
    )
    for bin_idx in bins:
        binary = graph.binary(bin_idx)
        binary.copy_exe_to.append(archive.archive_dir / binary.file_name)
        archive.required_binaries[bin_idx] = binary.file_name
    zip_idx = graph.add_artifact(
        Artifact(
            id=zip_id,
            kind=archive,
            target_triples=(variant.target,),
            file_path=graph.dist_dir / zip_id,
            is_global=False,
        )
    )
    variant.local_artifacts.append(zip_idx)
    _add_checksum(graph, config, zip_idx, variant.local_artifacts)

    symbol_kind = triple.symbol_kind
    if symbol_kind is not None:
        for bin_idx in bins:
            binary = graph.binary(bin_idx)
            if binary.kind is BinaryKind.STATIC_LIBRARY:
                continue
            symbols_id = f"{binary.id}{symbol_kind.ext}"
            symbols_path = graph.dist_dir / symbols_id
            symbols_idx = graph.add_artifact(
                Artifact(
                    id=symbols_id,
                    kind=Symbols(symbol_kind=symbol_kind),
                    target_triples=(variant.target,),
                    file_path=symbols_path,
                    is_global=False,
                )
            )
            binary.copy_symbols_to.append(symbols_path)
            binary.symbols_artifact = symbols_idx
            variant.local_artifacts.append(symbols_idx)

    if "msi" in config.installers and triple.is_windows:
        exes = [b for b in bins if graph.binary(b).kind is BinaryKind.EXECUTABLE]
        if exes:
            msi_id = f"{app}-{variant.target}.msi"
            msi_dir = graph.dist_dir / f"{app}-{variant.target}-msi"
            installer = Installer(
                style="msi",
                hint=f"download {msi_id} and run it",
                description="Install prebuilt binaries via an msi",
            )
            for bin_idx in exes:
                binary = graph.binary(bin_idx)
                binary.copy_exe_to.append(msi_dir / binary.file_name)
                installer.required_binaries[bin_idx] = binary.file_name
            msi_idx = graph.add_artifact(
                Artifact(
                    id=msi_id,
                    kind=installer,
                    target_triples=(variant.target,),
                    file_path=graph.dist_dir / msi_id,
                    is_global=False,
                )
            )
            variant.local_artifacts.append(msi_idx)
            _add_checksum(graph, config, msi_idx, variant.local_artifacts)


def _add_global(graph: DistGraph, release: Release, artifact: Artifact) -> ArtifactIdx:
    """Find-or-create a global artifact and attach it to the release."""
    idx = graph.find_artifact(artifact.id)
    if idx is None:
        idx = graph.add_artifact(artifact)
    if idx not in release.global_artifacts:
        release.global_artifacts.append(idx)
    return idx


def _installer(
    style: InstallerStyle, release: Release, targets: Sequence[str]
) -> tuple[str, str, str, tuple[str, ...]] | None:
    """Id, install hint, description and compatible targets of a global installer."""
    app = release.app_name
    triples = [TargetTriple(t) for t in targets]
    base_url = release.hosting.get("github", {}).get("artifact_download_url")

    def url(artifact_id: str) -> str:
        return f"{base_url}/{artifact_id}" if base_url else artifact_id

    match style:
        case "shell":
            compatible = [t for t in triples if not t.is_windows]
            artifact_id = f"{app}-installer.sh"
            hint = f"curl --proto '=https' --tlsv1.2 -LsSf {url(artifact_id)} | sh"
            description = "Install prebuilt binaries via shell script"
        case "powershell":
            compatible = [t for t in triples if t.is_windows]
            artifact_id = f"{app}-installer.ps1"
            hint = f'powershell -ExecutionPolicy ByPass -c "irm {url(artifact_id)} | iex"'
            description = "Install prebuilt binaries via powershell script"
        case "homebrew":
            compatible = [t for t in triples if t.is_darwin or t.is_linux]
            artifact_id = f"{app}.rb"
            hint = f"brew install {app}"
            description = "Install prebuilt binaries via Homebrew"
        case "npm":
            compatible = list(triples)
            artifact_id = f"{app}-npm-package.tar.gz"
            hint = f"npm install {app}@{release.version}"
            description = "Install prebuilt binaries into your npm project"
        case "msi":
            return None
    if not compatible:
        return None
    return artifact_id, hint, description, tuple(str(t) for t in compatible)


def _add_global_artifacts(graph: DistGraph, config: DistConfig, release_idx: ReleaseIdx) -> None:
    release = graph.release(release_idx)
    targets = [graph.variant(v).target for v in release.variants]

    for style in config.installers:
        found = _installer(style, release, targets)
        if found is None:
            continue
        artifact_id, hint, description, compatible = found
        _add_global(
            graph,
            release,
            Artifact(
                id=artifact_id,
                kind=Installer(style=style, hint=hint, description=description),
                target_triples=compatible,
                file_path=graph.dist_dir / artifact_id,
                is_global=True,
            ),
        )

    if config.source_tarball:
        tarball_idx = _add_global(
            graph,
            release,
            Artifact(
                id=SOURCE_TARBALL_NAME,
                kind=SourceTarball(working_dir=graph.workspace_root),
                target_triples=(),
                file_path=graph.dist_dir / SOURCE_TARBALL_NAME,
                is_global=True,
            ),
        )
        _add_checksum(graph, config, tarball_idx, release.global_artifacts)

    for extra in config.extra_artifacts:
        for relpath in extra.artifacts:
            name = Path(relpath).name
            _add_global(
                graph,
                release,
                Artifact(
                    id=name,
                    kind=ExtraArtifact(
                        working_dir=extra.working_dir,
                        command=extra.build,
                        relpath=relpath,
                    ),
                    target_triples=(),
                    file_path=graph.dist_dir / name,
                    is_global=True,
                ),
            )

    if config.install_updater:
        updater_id = f"{release.app_name}-update"
        _add_global(
            graph,
            release,
            Artifact(
                id=updater_id,
                kind=Updater(app_name=release.app_name),
                target_triples=tuple(targets),
                file_path=graph.dist_dir / updater_id,
                is_global=True,
            ),
        )

    if config.checksum != "false":
        unified_id = f"{config.checksum}.sum"
        _add_global(
            graph,
            release,
            Artifact(
                id=unified_id,
                kind=UnifiedChecksum(style=config.checksum),
                target_triples=(),
                file_path=graph.dist_dir / unified_id,
                is_global=True,
            ),
        )


def build_graph(
    packages: Sequence[Package],
    announcing: AnnouncementTag,
    config: DistConfig,
    *,
    workspace_root: Path,
    targets: Sequence[str],
    mode: ArtifactMode,
    host: str,
    console: ConsoleProtocol,
) -> Result[DistGraph, GraphError]:
    """Build the release graph for one run.

    `targets` overrides the configured targets; with neither, the host
    triple is the only target.
    """
    selected = select_packages(packages, announcing, console)
    if isinstance(selected, Err):
        return selected

    requested = tuple(targets) or config.targets or (host,)
    graph = DistGraph(
        packages=list(packages),
        announcement_tag=announcing.tag,
        announcement_is_prerelease=announcing.prerelease,
        workspace_root=workspace_root,
        dist_dir=workspace_root / config.dist_dir,
        host=host,
        mode=mode,
        targets=requested,
    )

    for pkg_idx in selected.value:
        package = graph.package(pkg_idx)
        release_idx = graph.add_release(
            Release(
                app_name=package.name,
                version=package.version or announcing.version,
                package_idx=pkg_idx,
                hosting=_hosting(config, announcing.tag),
            )
        )
        pkg_targets = [t for t in requested if package.supports_target(t)]
        if not pkg_targets:
            return Err(NoTargets(app_name=package.name))

        for target in pkg_targets:
            variant_idx = graph.add_variant(
                Variant(id=f"{package.name}-{target}", target=target, release=release_idx)
            )
            if _wants_local(mode, target, host):
                _add_local_artifacts(graph, config, variant_idx)

        if mode.includes_global:
            _add_global_artifacts(graph, config, release_idx)

    return Ok(graph)
