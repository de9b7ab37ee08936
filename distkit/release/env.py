"""Package-manager environment query.

When a `Brewfile` sits next to the build, `brew bundle exec` is asked for
the environment it would build under. A handful of its variables, plus
include/library flags for every dependency, are passed to generic builds.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from distkit.core.result import Err, Ok, Result
from distkit.platform.process import ProcessError, run

from .errors import EnvError, EnvParseError, EnvQueryFailed

__all__ = [
    "calculate_cflags",
    "calculate_ldflags",
    "fetch_brew_env",
    "formulas_from_env",
    "parse_env",
    "select_brew_env",
]

_PASSTHROUGH_VARS = ("PKG_CONFIG_PATH", "PKG_CONFIG_LIBDIR", "CMAKE_INCLUDE_PATH", "CMAKE_LIBRARY_PATH")

type Runner = Callable[[list[str], Path], Result[str, ProcessError]]


def _run(cmd: list[str], cwd: Path) -> Result[str, ProcessError]:
    return run(cmd, cwd=cwd)


def fetch_brew_env(working_dir: Path, *, runner: Runner = _run) -> Result[list[str] | None, EnvError]:
    """Capture `brew bundle exec` environment lines, or None when not applicable."""
    if os.environ.get("DO_NOT_USE_BREWFILE"):
        return Ok(None)
    if not (working_dir / "Brewfile").is_file():
        return Ok(None)

    # NUL separated so values containing newlines survive.
    result = runner(["brew", "bundle", "exec", "--", "/usr/bin/env", "-0"], working_dir)
    if isinstance(result, Err):
        return Err(EnvQueryFailed(reason=str(result.error)))

    output = result.value.rstrip().rstrip("\0")
    if not output:
        return Ok([])
    return Ok(output.split("\0"))


def parse_env(lines: Sequence[str]) -> Result[dict[str, str], EnvError]:
    """Parse `KEY=value` lines; later duplicates win."""
    parsed: dict[str, str] = {}
    for line in lines:
        key, sep, value = line.partition("=")
        if not sep:
            return Err(EnvParseError(line=line))
        parsed[key] = value
    return Ok(parsed)


def formulas_from_env(environment: Mapping[str, str]) -> list[tuple[str, str]]:
    """(formula, opt prefix) for every dependency brew bundle resolved."""
    deps = environment.get("HOMEBREW_DEPENDENCIES")
    opt_prefix = environment.get("HOMEBREW_OPT")
    if not deps or not opt_prefix:
        return []
    out: list[tuple[str, str]] = []
    for dep in deps.split(","):
        short_name = dep.rsplit("/", 1)[-1]
        out.append((dep, f"{opt_prefix}/{short_name}"))
    return out


def select_brew_env(
    environment: Mapping[str, str], *, current_path: str | None = None
) -> dict[str, str]:
    """Variables from the Brewfile environment worth passing on to a build."""
    selected: dict[str, str] = {}

    paths: list[str] = []
    for _, pkg_opt in formulas_from_env(environment):
        paths.append(f"{pkg_opt}/bin")
        paths.append(f"{pkg_opt}/sbin")
    our_path = current_path if current_path is not None else os.environ.get("PATH")
    if paths and our_path:
        selected["PATH"] = ":".join([our_path, *paths])

    for key in _PASSTHROUGH_VARS:
        if key in environment:
            selected[key] = environment[key]
    return selected


def calculate_ldflags(environment: Mapping[str, str]) -> str:
    return " ".join(f"-L{pkg_opt}/lib" for _, pkg_opt in formulas_from_env(environment))


def calculate_cflags(environment: Mapping[str, str]) -> str:
    return " ".join(f"-I{pkg_opt}/include" for _, pkg_opt in formulas_from_env(environment))
