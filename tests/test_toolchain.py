import subprocess
from pathlib import Path

import pytest

import build_zlib
from build_zlib import Architecture, BuildType, UnsupportedError


@pytest.mark.parametrize(
    ("token", "triple", "abi_name"),
    [
        ("arm", "armv7a-linux-androideabi", "armeabi-v7a"),
        ("arm64", "aarch64-linux-android", "arm64-v8a"),
        ("x86", "i686-linux-android", "x86"),
        ("x86-64", "x86_64-linux-android", "x86-64"),
    ],
)
def test_architecture_table(token: str, triple: str, abi_name: str) -> None:
    arch = Architecture.from_token(token)

    assert arch.triple == triple
    assert arch.abi_name == abi_name


@pytest.mark.parametrize("token", ["mips", "x86_64", "ARM", "", "all"])
def test_unknown_architecture_is_rejected(token: str) -> None:
    with pytest.raises(UnsupportedError, match="Architecture not supported"):
        Architecture.from_token(token)


def test_build_type_tokens() -> None:
    assert BuildType.from_token("debug") is BuildType.DEBUG
    assert BuildType.from_token("Release") is BuildType.RELEASE
    with pytest.raises(UnsupportedError):
        BuildType.from_token("profile")


def test_host_tag_mapping() -> None:
    assert build_zlib.host_tag_for("Linux") == "linux-x86_64"
    assert build_zlib.host_tag_for("Darwin") == "darwin-x86_64"
    with pytest.raises(UnsupportedError, match="OS not supported"):
        build_zlib.host_tag_for("FreeBSD")


def test_detect_host_tag_reads_uname(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = []

    def fake_run(cmd, **kwargs):
        seen.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="Darwin\n", stderr="")

    monkeypatch.setattr(build_zlib, "run_command", fake_run)

    assert build_zlib.detect_host_tag() == "darwin-x86_64"
    assert seen == [["uname", "-s"]]


def test_detect_host_tag_reports_failed_detection(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(build_zlib, "run_command", fake_run)

    with pytest.raises(UnsupportedError, match="Failed to detect OS"):
        build_zlib.detect_host_tag()


def test_resolve_toolchain_paths(tmp_path: Path) -> None:
    profile = build_zlib.resolve_toolchain(tmp_path, Architecture.ARM64, 24, host_tag="linux-x86_64")
    bin_dir = tmp_path / "toolchains" / "llvm" / "prebuilt" / "linux-x86_64" / "bin"

    assert profile.target_triple == "aarch64-linux-android"
    assert profile.cc == bin_dir / "aarch64-linux-android24-clang"
    assert profile.as_ == profile.cc
    assert profile.cxx == bin_dir / "aarch64-linux-android24-clang++"
    assert profile.ld == bin_dir / "ld"
    assert profile.ar == bin_dir / "llvm-ar"
    assert profile.ranlib == bin_dir / "llvm-ranlib"
    assert profile.strip == bin_dir / "llvm-strip"


def test_toolchain_env_has_every_tool(tmp_path: Path) -> None:
    profile = build_zlib.resolve_toolchain(tmp_path, Architecture.ARM, 21, host_tag="darwin-x86_64")
    env = profile.as_env()

    assert sorted(env) == ["AR", "AS", "CC", "CXX", "LD", "RANLIB", "STRIP"]
    assert env["CC"].endswith("darwin-x86_64/bin/armv7a-linux-androideabi21-clang")


def test_resolve_toolchain_detects_host_when_not_given(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(build_zlib, "detect_host_tag", lambda: "linux-x86_64")

    profile = build_zlib.resolve_toolchain(tmp_path, Architecture.X86, 21)

    assert profile.host_tag == "linux-x86_64"
    assert profile.cc.name == "i686-linux-android21-clang"
