# imgmirror - utilities
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

import subprocess
from typing import override

from imgmirror.errors import MirrorError
from imgmirror.logger import logger as root_logger

logger = root_logger.getChild("utils")


class CommandError(MirrorError):
    @override
    def __str__(self) -> str:
        return "command error" + (f": {self.msg}" if self.msg else "")


CmdArgs = list[str]


def run_cmd(cmd: CmdArgs, env: dict[str, str] | None = None) -> tuple[int, str, str]:
    """Run `cmd` to completion, returning its exit code, stdout and stderr."""
    logger.debug(f"sync run '{cmd}'")
    try:
        p = subprocess.run(cmd, env=env, capture_output=True)  # noqa: S603
    except OSError as e:
        logger.exception(f"error running '{cmd}'")
        raise CommandError(f"unable to run '{cmd[0]}': {e}") from e

    stdout = p.stdout.decode("utf-8", errors="replace")
    stderr = p.stderr.decode("utf-8", errors="replace")
    if p.returncode != 0:
        logger.debug(
            f"error running '{cmd}': retcode = {p.returncode}, res: {stderr.strip()}"
        )

    return (p.returncode, stdout, stderr)


def sanitize_for_path(value: str, *, chars: str, replacement: str = "-") -> str:
    """Replace every character of `chars` in `value` by `replacement`."""
    return value.translate({ord(c): replacement for c in chars})
