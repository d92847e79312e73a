# imgmirror - commands - mirror
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

from imgmirror.cmds import logger as parent_logger
from imgmirror.config import Config
from imgmirror.console import perror, pinfo, pwarn
from imgmirror.engines import EngineError
from imgmirror.engines.cli import select_engine
from imgmirror.manifest import Manifest
from imgmirror.mirror.driver import RunMode, finalize, run_mirror, setup_mirror
from imgmirror.state import StateError

logger = parent_logger.getChild("mirror")

INTERRUPTED_EXIT_CODE = 130


def mirror_images(
    config: Config, manifest: Manifest, registry: str, mode: RunMode
) -> int:
    """Mirror the manifest's images into `registry`, returning the exit code."""
    try:
        engine = select_engine(config.engine)
    except EngineError as e:
        perror(str(e))
        return errno.ENOENT

    pinfo(f"Using {engine.name} to process the images.")
    pinfo(f"Copying {manifest.total} images to {registry} ({mode.value}).")

    try:
        mirror, store = setup_mirror(config, manifest, registry, engine)
        tracked = store.keys()
    except StateError as e:
        perror(str(e))
        return errno.ENOTRECOVERABLE

    if tracked:
        pinfo(f"Resuming from recorded progress ({len(tracked)} markers).")

    try:
        summary = run_mirror(mirror, mode)
    except KeyboardInterrupt:
        logger.info(f"interrupted while handling '{mirror.in_flight}'")
        if mode == RunMode.COMBINED:
            mirror.abort_in_flight()
        pwarn("interrupted")
        return INTERRUPTED_EXIT_CODE
    except StateError as e:
        perror(f"unable to track progress: {e}")
        return errno.ENOTRECOVERABLE
    finally:
        mirror.close()

    logger.debug(
        f"completed {summary.completed}/{summary.total}, errors: {summary.errors}"
    )

    try:
        return finalize(
            summary, mode, store=store, registry=registry, engine_name=engine.name
        )
    except StateError as e:
        perror(str(e))
        return errno.ENOTRECOVERABLE

