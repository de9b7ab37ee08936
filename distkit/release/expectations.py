"""Binary-expectation tracking.

Each build step promises a set of binaries. While the step runs, every
file the backend reports is matched against those promises by package id
and file name; anything else is ignored. When the step ends it is either
satisfied (every promised binary exists on disk) or failed with the list
of what is missing.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path

from distkit.core.result import Err, Ok, Result
from distkit.output.console import ConsoleProtocol
from distkit.platform.files import copy_file
from distkit.platform.triple import SymbolKind, TargetTriple

from .errors import BundleFailed, LinkageError, MissingBinaries
from .linkage import Linkage, determine_linkage, linkage_error_message
from .manifest import AssetInfo, DistManifest
from .model import BinaryIdx, DistGraph

__all__ = ["BuildExpectations", "ExpectedBinary", "StepState"]

SYMBOL_EXTS = frozenset(kind.ext for kind in SymbolKind)

type LinkageCheck = Callable[[Path, str], Result[Linkage, LinkageError]]


class StepState(Enum):
    PENDING = auto()
    RUNNING = auto()
    SATISFIED = auto()
    FAILED = auto()

    def __str__(self) -> str:
        return self.name.lower()


def _paths() -> list[Path]:
    return []


@dataclass(slots=True)
class ExpectedBinary:
    binary: BinaryIdx
    src_path: Path | None = None
    sym_paths: list[Path] = field(default_factory=_paths)
    linkage: Linkage | None = None


class BuildExpectations:
    """Tracks the binaries one build step must produce."""

    def __init__(self, graph: DistGraph, expected: Sequence[BinaryIdx], *, step: str) -> None:
        self._graph = graph
        self.step = step
        self.state = StepState.PENDING
        # pkg_id -> file name -> slot
        self._slots: dict[str, dict[str, ExpectedBinary]] = {}
        for bin_idx in expected:
            binary = graph.binary(bin_idx)
            self._slots.setdefault(binary.pkg_id, {})[binary.file_name] = ExpectedBinary(binary=bin_idx)

    @property
    def expected(self) -> list[ExpectedBinary]:
        return [slot for by_name in self._slots.values() for slot in by_name.values()]

    def start(self) -> None:
        if self.state is not StepState.PENDING:
            raise RuntimeError(f"{self.step}: cannot start a step that is {self.state}")
        self.state = StepState.RUNNING

    def found_bin(self, pkg_id: str, path: Path, symbol_candidates: Sequence[Path] = ()) -> bool:
        """Record a produced file; returns False when nothing expected it."""
        if self.state is not StepState.RUNNING:
            raise RuntimeError(f"{self.step}: output reported while {self.state}")

        slot = self._slots.get(pkg_id, {}).get(path.name)
        if slot is None:
            return False
        slot.src_path = path

        binary = self._graph.binary(slot.binary)
        symbol_kind = TargetTriple(binary.target).symbol_kind
        if symbol_kind is not None:
            stem = Path(binary.file_name).stem
            for candidate in symbol_candidates:
                if candidate.suffix == symbol_kind.ext and candidate.stem == stem:
                    if candidate not in slot.sym_paths:
                        slot.sym_paths.append(candidate)
        return True

    def found_bins(self, pkg_id: str, filenames: Sequence[Path]) -> None:
        """Record every file of one backend event, pairing binaries with symbols."""
        symbols = [p for p in filenames if p.suffix in SYMBOL_EXTS]
        for path in filenames:
            if path.suffix not in SYMBOL_EXTS:
                self.found_bin(pkg_id, path, symbols)

    def finish(self) -> Result[list[ExpectedBinary], MissingBinaries]:
        """Close the step: satisfied only if every promised binary exists."""
        if self.state is not StepState.RUNNING:
            raise RuntimeError(f"{self.step}: cannot finish a step that is {self.state}")

        missing: list[tuple[str, str]] = []
        for slot in self.expected:
            if slot.src_path is None or not slot.src_path.is_file():
                binary = self._graph.binary(slot.binary)
                package = self._graph.package(binary.pkg_idx)
                missing.append((package.name, binary.name))

        if missing:
            self.state = StepState.FAILED
            return Err(MissingBinaries(step=self.step, missing=tuple(missing)))
        self.state = StepState.SATISFIED
        return Ok(self.expected)

    def fail(self) -> None:
        self.state = StepState.FAILED

    def process_bins(
        self,
        manifest: DistManifest,
        console: ConsoleProtocol,
        *,
        check_linkage: LinkageCheck = determine_linkage,
    ) -> Result[None, BundleFailed]:
        """Classify linkage, record assets and copy binaries to their destinations."""
        if self.state is not StepState.SATISFIED:
            raise RuntimeError(f"{self.step}: cannot process binaries of a step that is {self.state}")

        graph = self._graph
        for slot in self.expected:
            assert slot.src_path is not None
            binary = graph.binary(slot.binary)

            checked = check_linkage(slot.src_path, binary.target)
            if isinstance(checked, Err):
                console.warning(
                    f"skipping linkage check for {binary.name}: {linkage_error_message(checked.error)}"
                )
                linkage = Linkage.empty(slot.src_path.name, binary.target)
            else:
                linkage = checked.value
            slot.linkage = linkage

            info = AssetInfo(
                id=binary.id,
                name=binary.name,
                system=graph.system_id,
                linkage=linkage,
                target_triples=(binary.target,),
            )
            manifest.assets[binary.id] = info.to_dict()
            manifest.linkage[binary.id] = linkage.to_dict()

            try:
                for dest in binary.copy_exe_to:
                    copy_file(slot.src_path, dest)
                for sym_path in slot.sym_paths:
                    for dest in binary.copy_symbols_to:
                        copy_file(sym_path, dest)
            except OSError as e:
                return Err(BundleFailed(artifact=binary.id, reason=str(e)))
        return Ok(None)
