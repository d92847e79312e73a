# imgmirror - docker and podman engines
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

import shutil
from typing import override

from imgmirror.engines import ContainerEngine, EngineError
from imgmirror.engines import logger as parent_logger
from imgmirror.utils import CmdArgs, CommandError, run_cmd

logger = parent_logger.getChild("cli")


def parse_loaded_ref(output: str) -> str | None:
    """Obtain the image reference from the output of an engine's `load`."""
    lines = [ln.strip() for ln in output.splitlines() if ln.strip()]
    if not lines:
        return None

    # e.g., 'Loaded image: registry.example.com/foo/bar:1.0'
    last = lines[-1]
    idx = last.find(": ")
    return last[idx + 2 :].strip() if idx >= 0 else last


class CLIEngine(ContainerEngine):
    """Drive a container engine through its command line interface."""

    binary: str
    inspect_digest_fmt: str

    @property
    @override
    def name(self) -> str:
        return self.binary

    def _run(self, args: CmdArgs) -> tuple[int, str, str]:
        cmd: CmdArgs = [self.binary, *args]
        try:
            return run_cmd(cmd)
        except CommandError as e:
            raise EngineError(-1, str(e)) from e

    def _run_checked(self, what: str, args: CmdArgs) -> str:
        rc, stdout, stderr = self._run(args)
        if rc != 0:
            msg = f"{self.binary} {what} failed: {stderr.strip()}"
            logger.error(msg)
            raise EngineError(rc, msg)
        return stdout

    @override
    def pull(self, ref: str) -> None:
        logger.info(f"pull '{ref}'")
        _ = self._run_checked("pull", ["pull", ref])

    @override
    def load(self, archive: str) -> str:
        logger.info(f"load '{archive}'")
        out = self._run_checked("load", ["load", "-i", archive])
        ref = parse_loaded_ref(out)
        if not ref:
            msg = f"unable to find loaded image reference for '{archive}'"
            logger.error(msg)
            raise EngineError(0, msg)
        return ref

    @override
    def inspect_digest(self, ref: str) -> str | None:
        rc, stdout, stderr = self._run(
            ["inspect", f"--format={self.inspect_digest_fmt}", ref]
        )
        if rc != 0:
            logger.error(f"unable to inspect '{ref}': {stderr.strip()}")
            return None

        digest = stdout.strip()
        return digest if digest else None

    @override
    def tag(self, src: str, dst: str) -> None:
        logger.debug(f"tag '{src}' as '{dst}'")
        _ = self._run_checked("tag", ["tag", src, dst])

    @override
    def push(self, ref: str) -> None:
        logger.info(f"push '{ref}'")
        _ = self._run_checked("push", ["push", ref])

    @override
    def remove_image(self, ref: str) -> None:
        try:
            rc, _, stderr = self._run(["image", "rm", ref])
        except EngineError as e:
            logger.warning(f"unable to remove image '{ref}': {e}")
            return

        if rc != 0:
            logger.warning(f"unable to remove image '{ref}': {stderr.strip()}")


class DockerEngine(CLIEngine):
    binary = "docker"
    inspect_digest_fmt = "{{index .Id}}"


class PodmanEngine(CLIEngine):
    binary = "podman"
    # podman reports the bare image id, without the algorithm prefix.
    inspect_digest_fmt = "sha256:{{.Id}}"


_ENGINES: dict[str, type[CLIEngine]] = {
    "docker": DockerEngine,
    "podman": PodmanEngine,
}


def select_engine(preferred: str | None = None) -> CLIEngine:
    """
    Select the container engine to use.

    When `preferred` is not specified, docker takes precedence over podman.
    """
    candidates = [preferred] if preferred else ["docker", "podman"]
    for name in candidates:
        engine_cls = _ENGINES.get(name)
        if not engine_cls:
            raise EngineError(-1, f"unknown container engine '{name}'")
        if shutil.which(engine_cls.binary):
            logger.debug(f"using container engine '{name}'")
            return engine_cls()

    msg = "no usable container engine found (tried: " + ", ".join(candidates) + ")"
    logger.error(msg)
    raise EngineError(-1, msg)
