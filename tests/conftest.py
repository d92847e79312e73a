# imgmirror - tests - fixtures
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

from collections.abc import Callable
from pathlib import Path
from typing import override

import pytest

from imgmirror.config import PushWaitConfig
from imgmirror.engines import ContainerEngine, EngineError
from imgmirror.manifest import Manifest
from imgmirror.mirror.handlers import ImageMirror
from imgmirror.state.files import FileStateStore
from imgmirror.transfer import DownloadError

REGISTRY = "registry.example.com:5000"
BASE_URL = "https://artifacts.example.com/repo"


class FakeEngine(ContainerEngine):
    """Container engine double, recording every call made to it."""

    calls: list[tuple[str, ...]]
    loads: dict[str, str]
    digests: dict[str, str]
    fail_pull: set[str]
    fail_load: set[str]
    fail_push: set[str]
    fail_tag: set[str]
    on_push: Callable[[str], None] | None

    def __init__(self) -> None:
        self.calls = []
        self.loads = {}
        self.digests = {}
        self.fail_pull = set()
        self.fail_load = set()
        self.fail_push = set()
        self.fail_tag = set()
        self.on_push = None

    @property
    @override
    def name(self) -> str:
        return "fake"

    def called(self, op: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] == op]

    @override
    def pull(self, ref: str) -> None:
        self.calls.append(("pull", ref))
        if ref in self.fail_pull:
            raise EngineError(1, f"pull {ref}")

    @override
    def load(self, archive: str) -> str:
        name = Path(archive).name
        self.calls.append(("load", name))
        if name in self.fail_load or name not in self.loads:
            raise EngineError(1, f"load {name}")
        return self.loads[name]

    @override
    def inspect_digest(self, ref: str) -> str | None:
        self.calls.append(("inspect", ref))
        return self.digests.get(ref)

    @override
    def tag(self, src: str, dst: str) -> None:
        self.calls.append(("tag", src, dst))
        if src in self.fail_tag:
            raise EngineError(1, f"tag {src}")

    @override
    def push(self, ref: str) -> None:
        self.calls.append(("push", ref))
        if self.on_push is not None:
            self.on_push(ref)
        if ref in self.fail_push:
            raise EngineError(1, f"push {ref}")

    @override
    def remove_image(self, ref: str) -> None:
        self.calls.append(("rm", ref))


class FakeDownloader:
    """Writes a small payload in place of downloading, unless told to fail."""

    fetched: list[str]
    fail: set[str]

    def __init__(self) -> None:
        self.fetched = []
        self.fail = set()

    def fetch(self, url: str, dest: Path) -> None:
        self.fetched.append(url)
        if url in self.fail:
            _ = dest.write_bytes(b"partial")
            raise DownloadError(f"unable to download '{url}'")
        _ = dest.write_bytes(b"archive")

    def close(self) -> None:
        pass


class FakeSleep:
    slept: list[float]

    def __init__(self) -> None:
        self.slept = []

    def __call__(self, secs: float) -> None:
        self.slept.append(secs)


def make_manifest(
    images: list[dict[str, object]],
    packages: list[dict[str, object]] | None = None,
) -> Manifest:
    return Manifest.model_validate(
        {
            "run-id": "1.0.0-b1",
            "artifact-base-url": BASE_URL,
            "images": images,
            "packages": packages or [],
        }
    )


def archived_image(name: str, digest: str = "") -> dict[str, object]:
    return {
        "source": f"vendor.example.com/acme/{name}:1.0",
        "destination": f"acme/{name}:1.0",
        "digest": digest or f"sha256:{name}",
        "size": "10Mi",
        "archive": f"images/{name}-1.0.tar.gz",
    }


def pulled_image(name: str, digest: str = "") -> dict[str, object]:
    return {
        "source": f"vendor.example.com/acme/{name}:1.0",
        "destination": f"acme/{name}:1.0",
        "digest": digest,
    }


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def store(state_dir: Path) -> FileStateStore:
    return FileStateStore(state_dir)


MirrorFactory = Callable[..., ImageMirror]


@pytest.fixture
def make_mirror(
    engine: FakeEngine,
    downloader: FakeDownloader,
    store: FileStateStore,
    state_dir: Path,
    sleep: FakeSleep,
) -> MirrorFactory:
    def _make(
        manifest: Manifest,
        *,
        timeout: float = 30.0,
        interval: float = 10.0,
    ) -> ImageMirror:
        return ImageMirror(
            manifest,
            REGISTRY,
            engine=engine,
            store=store,
            downloader=downloader,  # pyright: ignore[reportArgumentType]
            work_dir=state_dir / ".archives",
            push_wait=PushWaitConfig(timeout=timeout, interval=interval),
            sleep=sleep,
        )

    return _make
