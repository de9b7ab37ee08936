"""Tests for distkit.output.errors module."""

from __future__ import annotations

from pathlib import Path

import pytest

from distkit.core.config import ConfigError
from distkit.core.errors import ErrorCode
from distkit.core.workspace import WorkspaceError
from distkit.output.console import MockConsole, Style
from distkit.output.errors import DistError, error_exit_code, print_error
from distkit.release.errors import (
    BinaryParseError,
    BuildCommandFailed,
    BuildFailed,
    BuildToolMissing,
    BundleFailed,
    ContradictoryTagVersion,
    EnvQueryFailed,
    LinkageCheckInvalidOS,
    ManifestParseFailed,
    ManifestWriteFailed,
    MissingBinaries,
    NoTargets,
    NothingToRelease,
    NoVersion,
    PreciseImpossible,
    TooManyUnrelatedApps,
    UnsupportedCrossCompile,
)


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (NoVersion("v1"), ErrorCode.USER_ERROR),
        (NothingToRelease(None, "no apps"), ErrorCode.USER_ERROR),
        (NoTargets("app"), ErrorCode.USER_ERROR),
        (ConfigError("bad"), ErrorCode.USER_ERROR),
        (BinaryParseError(Path("a"), "short"), ErrorCode.USER_ERROR),
        (PreciseImpossible(("app",)), ErrorCode.USER_ERROR),
        (UnsupportedCrossCompile("x86_64-apple-darwin", "x86_64-unknown-linux-gnu"), ErrorCode.ENV_ERROR),
        (BuildToolMissing("cargo", "not found"), ErrorCode.ENV_ERROR),
        (LinkageCheckInvalidOS("a", "b"), ErrorCode.ENV_ERROR),
        (BuildFailed((BuildCommandFailed("s", ("make",), 2),)), ErrorCode.BUILD_ERROR),
        (MissingBinaries("s", (("app 1.0.0", "app"),)), ErrorCode.BUILD_ERROR),
        (ManifestParseFailed(Path("m.json"), "bad json"), ErrorCode.MANIFEST_ERROR),
        (ManifestWriteFailed(Path("m.json"), "read-only"), ErrorCode.IO_ERROR),
        (BundleFailed("app.tar.xz", "disk full"), ErrorCode.IO_ERROR),
    ],
)
def test_error_exit_code(error: DistError, code: ErrorCode) -> None:
    assert error_exit_code(error) == int(code)


def test_print_no_version_has_hint() -> None:
    console = MockConsole()
    print_error(NoVersion("release-candidate"), console)
    assert console.outputs[0].style == Style.ERROR
    assert "release-candidate" in console.outputs[0].message
    assert console.outputs[1].message.startswith("hint:")


def test_print_contradictory_version() -> None:
    console = MockConsole()
    print_error(ContradictoryTagVersion("app-v2.0.0", "app", "1.0.0", "2.0.0"), console)
    assert "app 2.0.0" in console.text
    assert "1.0.0" in console.text


def test_print_too_many_apps_includes_help() -> None:
    console = MockConsole()
    print_error(TooManyUnrelatedApps("a 1.0.0\nb 2.0.0"), console)
    assert "a 1.0.0\nb 2.0.0" in console.messages


def test_print_build_failed_lists_every_failure() -> None:
    console = MockConsole()
    error = BuildFailed(
        (
            BuildCommandFailed("cargo build (workspace) for x", ("cargo",), 101),
            MissingBinaries("make for x", (("tool 1.0.0", "tool"),)),
        )
    )
    print_error(error, console)
    assert console.messages[0] == "error: 2 build step(s) failed"
    assert "error: cargo build (workspace) for x failed (exit 101)" in console.messages
    assert "  tool 1.0.0: tool" in console.messages
    assert console.count(Style.ERROR) == 3


def test_print_precise_impossible_lists_packages() -> None:
    console = MockConsole()
    print_error(PreciseImpossible(("a", "b")), console)
    assert console.messages[0].startswith("error: precise-builds = false")
    assert console.messages[1].endswith(": a, b")


def test_print_workspace_error_shows_search_root() -> None:
    console = MockConsole()
    print_error(WorkspaceError("no workspace", searched_from=Path("/tmp/x")), console)
    assert console.messages == ["error: no workspace", f"searched from: {Path('/tmp/x')}"]


def test_print_env_query_failure() -> None:
    console = MockConsole()
    print_error(EnvQueryFailed("brew not installed"), console)
    assert "brew not installed" in console.text
