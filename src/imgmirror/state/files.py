# imgmirror - file based progress state
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

import contextlib
import fcntl
import os
import shutil
from collections.abc import Iterator
from pathlib import Path
from typing import override

from imgmirror.state import MarkerState, StateError, StateStore
from imgmirror.state import logger as parent_logger

logger = parent_logger.getChild("files")


class FileStateStore(StateStore):
    """
    Keep one marker file per key in a directory shared by all processes.

    Each marker holds a single state token. Markers are replaced through a
    rename, so a reader sees either the previous or the new token. When
    `use_lock` is set, `locked()` takes an advisory lock on a per-key lock file.
    """

    path: Path
    use_lock: bool

    def __init__(self, path: Path, *, use_lock: bool = False) -> None:
        self.path = path
        self.use_lock = use_lock

        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"unable to create state directory '{self.path}': {e}"
            logger.error(msg)
            raise StateError(msg) from e

    def _marker_path(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise StateError(f"invalid marker key '{key}'")
        return self.path / key

    @override
    def read(self, key: str) -> MarkerState:
        marker = self._marker_path(key)
        try:
            token = marker.read_text()
        except FileNotFoundError:
            return MarkerState.ABSENT
        except OSError as e:
            msg = f"unable to read marker '{marker}': {e}"
            logger.error(msg)
            raise StateError(msg) from e

        return MarkerState.from_token(token)

    @override
    def write(self, key: str, state: MarkerState) -> None:
        if state == MarkerState.ABSENT:
            self.clear(key)
            return
        if state == MarkerState.UNKNOWN:
            raise StateError(f"refusing to write unknown state for '{key}'")

        marker = self._marker_path(key)
        tmp = self.path / f".{key}.{os.getpid()}.tmp"
        try:
            _ = tmp.write_text(f"{state.value}\n")
            _ = tmp.replace(marker)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            msg = f"unable to write marker '{marker}': {e}"
            logger.error(msg)
            raise StateError(msg) from e

        logger.debug(f"marker '{key}' -> '{state.value}'")

    @override
    def clear(self, key: str) -> None:
        marker = self._marker_path(key)
        try:
            marker.unlink(missing_ok=True)
        except OSError as e:
            msg = f"unable to remove marker '{marker}': {e}"
            logger.error(msg)
            raise StateError(msg) from e

        logger.debug(f"marker '{key}' cleared")

    @override
    def keys(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            return sorted(
                p.name
                for p in self.path.iterdir()
                if p.is_file() and not p.name.startswith(".")
            )
        except OSError as e:
            msg = f"unable to list markers in '{self.path}': {e}"
            logger.error(msg)
            raise StateError(msg) from e

    @override
    def remove_all(self) -> None:
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            msg = f"unable to remove state directory '{self.path}': {e}"
            logger.error(msg)
            raise StateError(msg) from e

        logger.debug(f"removed state directory '{self.path}'")

    @override
    @contextlib.contextmanager
    def locked(self, key: str) -> Iterator[None]:
        if not self.use_lock:
            yield
            return

        lock_path = self.path / f".{key}.lock"
        with lock_path.open("a") as fd:
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
