#!/usr/bin/env python3

# Mirrors container images into a private registry
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

import logging
import sys
from pathlib import Path
from typing import override

import click

from imgmirror.cmds import get_config, get_destination, get_manifest
from imgmirror.cmds.mirror import mirror_images
from imgmirror.logger import logger, set_debug_logging
from imgmirror.mirror.driver import RunMode

_help_message = """Copy container images into a custom registry.

Copies every image listed in the MANIFEST to DESTINATION, a registry
optionally followed by a path. The destination must have been logged into
beforehand, with 'docker login' or 'podman login'.

MODE is one of 'combined' (the default), where each image is downloaded or
pulled and then pushed; 'download-or-pull-only', which only downloads or pulls
images; and 'push-only', which pushes the images downloaded or pulled by
another invocation running in 'download-or-pull-only' mode.

Several invocations may run at the same time for the same destination. They
keep track of which images have been handled in a shared state directory,
which is removed once all the images have been copied. Re-running skips the
images already copied.
"""


class _RunModeType(click.ParamType):
    name: str = "mode"

    @override
    def convert(
        self,
        value: str | RunMode,
        param: click.Parameter | None,
        ctx: click.Context | None,
    ) -> RunMode:
        if isinstance(value, RunMode):
            return value
        try:
            return RunMode.parse(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


@click.command(help=_help_message)
@click.argument("destination", required=False, type=str)
@click.argument(
    "mode",
    required=False,
    type=_RunModeType(),
    default=RunMode.COMBINED.value,
)
@click.option(
    "-d", "--debug", help="Enable debug output", is_flag=True, envvar="IMGMIRROR_DEBUG"
)
@click.option(
    "-c",
    "--config",
    "config_path",
    help="Path to configuration file.",
    type=click.Path(
        exists=False,
        dir_okay=False,
        file_okay=True,
        readable=True,
        resolve_path=True,
        path_type=Path,
    ),
    envvar="IMGMIRROR_CONFIG",
    default="imgmirror.config.yaml",
)
@click.option(
    "-m",
    "--manifest",
    "manifest_path",
    help="Path to the images manifest.",
    type=click.Path(
        exists=False,
        dir_okay=False,
        file_okay=True,
        readable=True,
        resolve_path=True,
        path_type=Path,
    ),
    envvar="IMGMIRROR_MANIFEST",
    default="imgmirror.manifest.yaml",
)
def cmd_main(
    destination: str | None,
    mode: RunMode,
    debug: bool,
    config_path: Path,
    manifest_path: Path,
) -> None:
    if debug:
        set_debug_logging()

    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.CRITICAL)

    logger.debug(f"config path: {config_path}, manifest path: {manifest_path}")
    config = get_config(config_path)
    manifest = get_manifest(manifest_path)
    registry = get_destination(destination, manifest, config)

    sys.exit(mirror_images(config, manifest, registry, mode))


if __name__ == "__main__":
    cmd_main()
