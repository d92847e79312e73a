# imgmirror - commands
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
import sys
from pathlib import Path

from imgmirror.config import Config, ConfigError
from imgmirror.console import perror
from imgmirror.logger import logger as root_logger
from imgmirror.manifest import Manifest, ManifestError

logger = root_logger.getChild("cmds")


def get_config(config_path: Path | None) -> Config:
    """Load the configuration, exiting on error."""
    try:
        return Config.load_or_default(config_path)
    except ConfigError as e:
        perror(f"unable to read configuration file: {e}")
        sys.exit(errno.EINVAL)


def get_manifest(manifest_path: Path) -> Manifest:
    """Load the images manifest, exiting on error."""
    if not manifest_path.exists():
        perror(f"manifest '{manifest_path}' not found")
        sys.exit(errno.ENOENT)

    try:
        return Manifest.load(manifest_path)
    except ManifestError as e:
        perror(f"unable to read manifest: {e}")
        sys.exit(errno.EINVAL)


def get_destination(arg: str | None, manifest: Manifest, config: Config) -> str:
    """Pick the destination registry, in order: argument, manifest, config."""
    dest = arg or manifest.destination or config.default_destination
    if not dest:
        perror("destination registry not specified")
        sys.exit(errno.EINVAL)

    dest = dest.rstrip("/")
    logger.debug(f"destination registry: {dest}")
    return dest
