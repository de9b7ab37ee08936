from __future__ import annotations

from distkit.release.semver import SemVer, parse_version


def test_parse_version() -> None:
    assert parse_version("1.2.3") == SemVer(1, 2, 3)
    assert parse_version("0.1.0-beta.2") == SemVer(0, 1, 0, ("beta", "2"))


def test_parse_version_rejects_non_semver() -> None:
    assert parse_version("v1.2.3") is None
    assert parse_version("1.2") is None
    assert parse_version("01.2.3") is None
    assert parse_version("app") is None


def test_build_metadata_is_ignored_for_equality() -> None:
    a = parse_version("1.0.0+abc")
    b = parse_version("1.0.0+def")
    assert a == b
    assert hash(a) == hash(b)
    assert str(a) == "1.0.0+abc"


def test_precedence() -> None:
    ordered = [
        "1.0.0-alpha",
        "1.0.0-alpha.1",
        "1.0.0-alpha.beta",
        "1.0.0-beta",
        "1.0.0-beta.2",
        "1.0.0-beta.11",
        "1.0.0-rc.1",
        "1.0.0",
        "1.0.1",
        "1.1.0",
    ]
    versions = [parse_version(v) for v in ordered]
    assert all(v is not None for v in versions)
    for lower, higher in zip(versions, versions[1:], strict=False):
        assert lower is not None and higher is not None
        assert lower < higher


def test_is_prerelease_and_tag() -> None:
    assert SemVer(1, 0, 0, ("rc", "1")).is_prerelease
    assert not SemVer(1, 0, 0).is_prerelease
    assert SemVer(2, 0, 0).to_tag() == "v2.0.0"
