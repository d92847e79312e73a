# imgmirror - tests - command line
# Copyright (C) 2025  Clyso GmbH
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

import errno
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner
from conftest import REGISTRY, FakeDownloader, FakeEngine, pulled_image

from imgmirror.__main__ import cmd_main
from imgmirror.cmds import mirror as cmds_mirror
from imgmirror.config import TransferConfig
from imgmirror.engines import ContainerEngine, EngineError
from imgmirror.mirror import driver


@pytest.fixture
def files(tmp_path: Path) -> tuple[Path, Path]:
    manifest_path = tmp_path / "manifest.yaml"
    _ = manifest_path.write_text(
        yaml.safe_dump(
            {
                "run-id": "1.0.0-b1",
                "images": [pulled_image(n) for n in ("foo", "bar", "baz")],
            }
        )
    )
    config_path = tmp_path / "config.yaml"
    _ = config_path.write_text(
        yaml.safe_dump({"state": {"root": str(tmp_path / "state")}})
    )
    return manifest_path, config_path


@pytest.fixture
def cli_engine(engine: FakeEngine, monkeypatch: pytest.MonkeyPatch) -> FakeEngine:
    def _select(preferred: str | None = None) -> ContainerEngine:  # noqa: ARG001
        return engine

    monkeypatch.setattr(cmds_mirror, "select_engine", _select)
    return engine


def test_mirror(
    files: tuple[Path, Path], cli_engine: FakeEngine, tmp_path: Path
) -> None:
    manifest_path, config_path = files

    result = CliRunner().invoke(
        cmd_main, [REGISTRY, "-m", str(manifest_path), "-c", str(config_path)]
    )

    assert result.exit_code == 0, result.output
    assert "Using fake to process the images." in result.output
    assert "Resuming" not in result.output
    assert "3/3" in result.output
    assert len(cli_engine.called("push")) == 3
    assert not (tmp_path / "state" / "registry.example.com-5000" / "1.0.0-b1").exists()


def test_mirror_legacy_mode_and_env(
    files: tuple[Path, Path], cli_engine: FakeEngine
) -> None:
    manifest_path, config_path = files

    result = CliRunner().invoke(
        cmd_main,
        [REGISTRY + "/", "DOWNLOAD_OR_PULL_ONLY"],
        env={
            "IMGMIRROR_MANIFEST": str(manifest_path),
            "IMGMIRROR_CONFIG": str(config_path),
        },
    )

    assert result.exit_code == 0, result.output
    assert len(cli_engine.called("pull")) == 3
    assert not cli_engine.called("push")


def test_bad_mode(files: tuple[Path, Path], cli_engine: FakeEngine) -> None:
    manifest_path, config_path = files

    result = CliRunner().invoke(
        cmd_main,
        [REGISTRY, "upload", "-m", str(manifest_path), "-c", str(config_path)],
    )

    assert result.exit_code == 2
    assert "unknown run mode" in result.output
    assert not cli_engine.calls


def test_missing_manifest(tmp_path: Path, cli_engine: FakeEngine) -> None:
    result = CliRunner().invoke(
        cmd_main, [REGISTRY, "-m", str(tmp_path / "nope.yaml")]
    )

    assert result.exit_code == errno.ENOENT
    assert not cli_engine.calls


def test_missing_destination(files: tuple[Path, Path], cli_engine: FakeEngine) -> None:
    manifest_path, config_path = files

    result = CliRunner().invoke(
        cmd_main, ["-m", str(manifest_path), "-c", str(config_path)]
    )

    assert result.exit_code == errno.EINVAL
    assert not cli_engine.calls


def test_no_engine(files: tuple[Path, Path], monkeypatch: pytest.MonkeyPatch) -> None:
    manifest_path, config_path = files

    def _select(preferred: str | None = None) -> ContainerEngine:  # noqa: ARG001
        raise EngineError(-1, "no usable container engine found")

    monkeypatch.setattr(cmds_mirror, "select_engine", _select)

    result = CliRunner().invoke(
        cmd_main, [REGISTRY, "-m", str(manifest_path), "-c", str(config_path)]
    )

    assert result.exit_code == errno.ENOENT
    assert "no usable container engine found" in result.output


def test_push_failure_exit_code(
    files: tuple[Path, Path], cli_engine: FakeEngine
) -> None:
    manifest_path, config_path = files
    cli_engine.fail_push.add(f"{REGISTRY}/acme/bar:1.0")

    result = CliRunner().invoke(
        cmd_main, [REGISTRY, "-m", str(manifest_path), "-c", str(config_path)]
    )

    assert result.exit_code == 1
    assert "2/3" in result.output


def test_interrupt_clears_in_flight_marker(
    files: tuple[Path, Path], cli_engine: FakeEngine, tmp_path: Path
) -> None:
    manifest_path, config_path = files
    state_dir = tmp_path / "state" / "registry.example.com-5000" / "1.0.0-b1"

    def _interrupt(ref: str) -> None:
        if ref.endswith("/acme/bar:1.0"):
            raise KeyboardInterrupt

    cli_engine.on_push = _interrupt

    result = CliRunner().invoke(
        cmd_main, [REGISTRY, "-m", str(manifest_path), "-c", str(config_path)]
    )

    assert result.exit_code == 130
    assert (state_dir / "acme-foo:1.0").read_text().strip() == "done"
    assert not (state_dir / "acme-bar:1.0").exists()
    assert not (state_dir / "acme-baz:1.0").exists()


def test_interrupt_while_pushing_packaged_image(
    tmp_path: Path,
    cli_engine: FakeEngine,
    downloader: FakeDownloader,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _downloader(_config: TransferConfig) -> FakeDownloader:
        return downloader

    monkeypatch.setattr(driver, "ArtifactDownloader", _downloader)

    manifest_path = tmp_path / "manifest.yaml"
    _ = manifest_path.write_text(
        yaml.safe_dump(
            {
                "run-id": "1.0.0-b1",
                "artifact-base-url": "https://artifacts.example.com/repo",
                "packages": [
                    {
                        "archive": "packages/bundle-1.0.tar.gz",
                        "images": [pulled_image("foo")],
                    }
                ],
            }
        )
    )
    config_path = tmp_path / "config.yaml"
    _ = config_path.write_text(
        yaml.safe_dump({"state": {"root": str(tmp_path / "state")}})
    )
    state_dir = tmp_path / "state" / "registry.example.com-5000" / "1.0.0-b1"
    args = [REGISTRY, "-m", str(manifest_path), "-c", str(config_path)]
    cli_engine.loads["bundle-1.0.tar.gz"] = "vendor.example.com/acme/foo:1.0"

    def _interrupt(_ref: str) -> None:
        raise KeyboardInterrupt

    cli_engine.on_push = _interrupt
    result = CliRunner().invoke(cmd_main, args)

    assert result.exit_code == 130
    assert (state_dir / "bundle-1.0.tar.gz-status").read_text().strip() == (
        "downloaded"
    )
    assert not (state_dir / "acme-foo:1.0").exists()

    cli_engine.on_push = None
    result = CliRunner().invoke(cmd_main, args)

    assert result.exit_code == 0, result.output
    assert "1/1" in result.output
    assert "Resuming from recorded progress (1 markers)." in result.output
    assert len(cli_engine.called("push")) == 2
    assert len(downloader.fetched) == 1
    assert not state_dir.exists()
