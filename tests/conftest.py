"""Shared test fixtures."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest

import build_zlib


def make_zlib_tarball(path: Path, version: str = build_zlib.DEFAULT_ZLIB_VERSION) -> Path:
    """Write a minimal zlib-<version>.tar.gz with a configure script."""
    path.parent.mkdir(parents=True, exist_ok=True)
    configure = b"#!/bin/sh\necho configured\n"
    with tarfile.open(path, "w:gz") as tar:
        info = tarfile.TarInfo(f"zlib-{version}")
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
        tar.addfile(info)

        info = tarfile.TarInfo(f"zlib-{version}/configure")
        info.size = len(configure)
        info.mode = 0o755
        tar.addfile(info, io.BytesIO(configure))
    return path


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run the test from an empty working directory without ANDROID_NDK set."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(build_zlib.NDK_ENV_VAR, raising=False)
    return tmp_path


@pytest.fixture
def request_in(workspace: Path) -> build_zlib.BuildRequest:
    return build_zlib.BuildRequest(
        ndk_dir=workspace / "ndk",
        downloads_dir=workspace / "downloads",
        output_dir=workspace / "output",
        log_file=workspace / "build.log",
        work_dir=workspace,
    )


@pytest.fixture
def fake_download(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> list[str]:
    """Serve zlib tarballs locally; returns the list of requested URLs."""
    calls: list[str] = []

    def urlretrieve(url: str, dest: Path):
        calls.append(url)
        version = Path(url).name[len("zlib-"):-len(".tar.gz")]
        make_zlib_tarball(Path(dest), version)
        return str(dest), None

    monkeypatch.setattr(build_zlib.urllib.request, "urlretrieve", urlretrieve)
    return calls
