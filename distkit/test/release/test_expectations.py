from __future__ import annotations

from pathlib import Path

import pytest

from distkit.core.result import Err, Ok, Result
from distkit.output.console import MockConsole
from distkit.release.errors import LinkageCheckInvalidOS, LinkageError, MissingBinaries
from distkit.release.expectations import BuildExpectations, StepState
from distkit.release.linkage import Library, Linkage
from distkit.release.manifest import DistManifest
from distkit.release.model import BinaryIdx, DistGraph

from ._fixtures import LINUX, WIN, make_graph, package


def _graph(tmp_path: Path, target: str = LINUX) -> DistGraph:
    return make_graph([package("app"), package("other")], targets=(target,), host=target, root=tmp_path)


def _all(graph: DistGraph) -> list[BinaryIdx]:
    return [BinaryIdx(i) for i in range(len(graph.binaries))]


def _write(path: Path, content: bytes = b"bin") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def _system_linkage(path: Path, target: str) -> Result[Linkage, LinkageError]:
    return Ok(Linkage(binary=path.name, target=target, system=[Library("/lib/libc.so.6", "libc6")]))


def test_output_is_matched_by_package_id_and_file_name(tmp_path: Path) -> None:
    graph = _graph(tmp_path)
    tracker = BuildExpectations(graph, _all(graph), step="build")
    tracker.start()

    # Same file name, wrong package: ignored.
    assert not tracker.found_bin("other 1.0.0", _write(tmp_path / "out" / "app"))
    assert not tracker.found_bin("app 1.0.0", _write(tmp_path / "out" / "stray"))
    assert tracker.found_bin("app 1.0.0", _write(tmp_path / "out" / "app"))

    result = tracker.finish()

    assert isinstance(result, Err)
    assert result.error == MissingBinaries(step="build", missing=(("other", "other"),))
    assert tracker.state is StepState.FAILED


def test_reported_but_absent_file_is_missing(tmp_path: Path) -> None:
    graph = _graph(tmp_path)
    expected = [i for i in _all(graph) if graph.binary(i).name == "app"]
    tracker = BuildExpectations(graph, expected, step="build")
    tracker.start()

    tracker.found_bin("app 1.0.0", tmp_path / "nowhere" / "app")

    assert isinstance(tracker.finish(), Err)


def test_satisfied_step_copies_binaries_and_records_assets(tmp_path: Path) -> None:
    graph = _graph(tmp_path)
    tracker = BuildExpectations(graph, _all(graph), step="build")
    tracker.start()
    tracker.found_bins("app 1.0.0", [_write(tmp_path / "out" / "app", b"A")])
    tracker.found_bins("other 1.0.0", [_write(tmp_path / "out" / "other", b"O")])
    assert isinstance(tracker.finish(), Ok)
    assert tracker.state is StepState.SATISFIED

    manifest = DistManifest()
    console = MockConsole()
    result = tracker.process_bins(manifest, console, check_linkage=_system_linkage)

    assert result == Ok(None)
    app = next(b for b in graph.binaries if b.name == "app")
    (dest,) = app.copy_exe_to
    assert dest.read_bytes() == b"A"
    assert manifest.assets[app.id]["system"] == graph.system_id
    assert manifest.linkage[app.id]["system"] == [{"path": "/lib/libc.so.6", "source": "libc6"}]
    assert not console.has_warning()


def test_linkage_failure_degrades_to_empty_report(tmp_path: Path) -> None:
    graph = _graph(tmp_path)
    expected = [i for i in _all(graph) if graph.binary(i).name == "app"]
    tracker = BuildExpectations(graph, expected, step="build")
    tracker.start()
    tracker.found_bin("app 1.0.0", _write(tmp_path / "out" / "app"))
    assert isinstance(tracker.finish(), Ok)

    def broken(path: Path, target: str) -> Result[Linkage, LinkageError]:
        return Err(LinkageCheckInvalidOS(host="x86_64-apple-darwin", target=target))

    console = MockConsole()
    manifest = DistManifest()
    assert tracker.process_bins(manifest, console, check_linkage=broken) == Ok(None)

    assert console.has_warning()
    (slot,) = tracker.expected
    assert slot.linkage is not None and slot.linkage.is_empty
    assert graph.binary(slot.binary).copy_exe_to[0].is_file()


def test_windows_symbols_follow_their_binary(tmp_path: Path) -> None:
    graph = make_graph([package("app")], targets=(WIN,), host=WIN, root=tmp_path)
    tracker = BuildExpectations(graph, _all(graph), step="build")
    tracker.start()
    out = tmp_path / "out"
    tracker.found_bins(
        "app 1.0.0",
        [_write(out / "app.exe"), _write(out / "app.pdb", b"PDB"), _write(out / "other.pdb")],
    )
    assert isinstance(tracker.finish(), Ok)
    (slot,) = tracker.expected
    assert slot.sym_paths == [out / "app.pdb"]

    assert tracker.process_bins(DistManifest(), MockConsole(), check_linkage=_system_linkage) == Ok(None)
    (binary,) = graph.binaries
    (symbols_dest,) = binary.copy_symbols_to
    assert symbols_dest.read_bytes() == b"PDB"


def test_state_transitions_are_enforced(tmp_path: Path) -> None:
    graph = _graph(tmp_path)
    tracker = BuildExpectations(graph, _all(graph), step="build")

    with pytest.raises(RuntimeError):
        tracker.found_bin("app 1.0.0", tmp_path / "app")
    with pytest.raises(RuntimeError):
        tracker.finish()

    tracker.start()
    with pytest.raises(RuntimeError):
        tracker.start()
    tracker.fail()
    with pytest.raises(RuntimeError):
        tracker.process_bins(DistManifest(), MockConsole())
