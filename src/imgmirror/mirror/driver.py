# imgmirror - mirroring driver
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

from __future__ import annotations

import enum
from pathlib import Path

from imgmirror.config import Config
from imgmirror.console import Symbols, perror, pinfo, pwarn, rprint
from imgmirror.engines import ContainerEngine
from imgmirror.manifest import Manifest
from imgmirror.mirror import logger as parent_logger
from imgmirror.mirror.handlers import ImageMirror
from imgmirror.mirror.results import RunSummary
from imgmirror.state import StateStore
from imgmirror.state.files import FileStateStore
from imgmirror.transfer import ArtifactDownloader
from imgmirror.utils import sanitize_for_path

logger = parent_logger.getChild("driver")


class RunMode(enum.StrEnum):
    COMBINED = "combined"
    DOWNLOAD_ONLY = "download-or-pull-only"
    PUSH_ONLY = "push-only"

    @classmethod
    def parse(cls, value: str) -> RunMode:
        """Parse a run mode, accepting the legacy upper case mode names too."""
        v = value.strip()
        alias = _MODE_ALIASES.get(v.upper())
        if alias is not None:
            return alias
        try:
            return RunMode(v.lower())
        except ValueError:
            raise ValueError(f"unknown run mode '{value}'") from None


_MODE_ALIASES: dict[str, RunMode] = {
    "DOWNLOAD_OR_PULL_AND_PUSH": RunMode.COMBINED,
    "DOWNLOAD_OR_PULL_ONLY": RunMode.DOWNLOAD_ONLY,
    "DOCKER_PUSH_ONLY": RunMode.PUSH_ONLY,
}


def get_state_dir(root: Path, registry: str, run_id: str) -> Path:
    """State directory shared by all invocations for `registry` and `run_id`."""
    # some podman versions can't load a file whose path contains a ':'.
    return root / sanitize_for_path(registry, chars=":") / run_id


def setup_mirror(
    config: Config,
    manifest: Manifest,
    registry: str,
    engine: ContainerEngine,
) -> tuple[ImageMirror, StateStore]:
    state_dir = get_state_dir(config.state.root, registry, manifest.run_id)
    logger.debug(f"using state directory '{state_dir}'")

    store = FileStateStore(state_dir, use_lock=config.state.lock)
    mirror = ImageMirror(
        manifest,
        registry,
        engine=engine,
        store=store,
        downloader=ArtifactDownloader(config.transfer),
        work_dir=state_dir / ".archives",
        push_wait=config.push_wait,
    )
    return mirror, store


def run_mirror(mirror: ImageMirror, mode: RunMode) -> RunSummary:
    """
    Handle every image in the manifest according to `mode`.

    A failing image never stops the run; its failure is accounted for in the
    returned summary.
    """
    manifest = mirror.manifest
    summary = RunSummary(manifest.total)

    for img in manifest.images:
        match mode:
            case RunMode.COMBINED:
                res = (
                    mirror.download_and_push(img)
                    if img.archive
                    else mirror.pull_and_push(img)
                )
            case RunMode.DOWNLOAD_ONLY:
                res = (
                    mirror.download_only(img)
                    if img.archive
                    else mirror.pull_only(img)
                )
            case RunMode.PUSH_ONLY:
                res = mirror.push_only(img)
        logger.debug(f"{res.subject}: {res.outcome}")
        summary.add(res)

    if mode != RunMode.PUSH_ONLY:
        for pkg in manifest.packages:
            summary.add(mirror.download_package(pkg))
            for img in pkg.images:
                _ = mirror.mark_as_downloaded(pkg, img)

    if mode != RunMode.DOWNLOAD_ONLY:
        for _, img in manifest.packaged_images():
            summary.add(mirror.push_only(img))
        for pkg in manifest.packages:
            _ = mirror.complete_package(pkg)

    return summary


_FAILURE_MESSAGES: dict[RunMode, tuple[str, str]] = {
    RunMode.COMBINED: (
        "Failed to download and push {errors} images.",
        "processed",
    ),
    RunMode.DOWNLOAD_ONLY: (
        "Failed to download or pull {errors} images.",
        "downloaded or pulled",
    ),
    RunMode.PUSH_ONLY: (
        "Failed to {engine} push {errors} images.",
        "pushed",
    ),
}


def finalize(
    summary: RunSummary,
    mode: RunMode,
    *,
    store: StateStore,
    registry: str,
    engine_name: str,
) -> int:
    """Report on the run, and return the process' exit code."""
    rprint("")
    if mode != RunMode.DOWNLOAD_ONLY:
        # only pushes, or images found already pushed, count as completed.
        rprint(
            f"Downloaded and pushed {summary.completed}/{summary.total} "
            + f"images to {registry}."
        )

    if summary.all_done:
        store.remove_all()
        return 0

    if summary.errors == 0:
        pinfo("Remaining images are being processed by another invocation.")
        return 0

    failed_fmt, what = _FAILURE_MESSAGES[mode]
    perror(
        f"{Symbols.CROSS_MARK} "
        + failed_fmt.format(errors=summary.errors, engine=engine_name)
    )
    pwarn(
        "Try running again. It will skip any images that have been "
        + f"{what} successfully."
    )
    return 1
