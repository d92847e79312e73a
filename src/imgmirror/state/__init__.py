# imgmirror - progress state
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

import abc
import contextlib
import enum
from collections.abc import Iterator
from typing import override

from imgmirror.errors import MirrorError
from imgmirror.logger import logger as root_logger

logger = root_logger.getChild("state")


class StateError(MirrorError):
    @override
    def __str__(self) -> str:
        return "state error" + (f": {self.msg}" if self.msg else "")


class MarkerState(enum.StrEnum):
    """
    Progress of an image, or of a package, as persisted in its marker.

    The value is the token written to the marker. `ABSENT` stands for a missing
    marker, and `UNKNOWN` for a marker holding something we can't make sense of;
    neither is ever written. Only packages are ever `LOAD_FAILED`, and only
    images are ever `PUSHING`.
    """

    ABSENT = ""
    STARTED = "started"
    DOWNLOADED = "downloaded"
    PUSHING = "pushing"
    DOWNLOAD_FAILED = "download failed"
    LOAD_FAILED = "load failed"
    DONE = "done"
    UNKNOWN = "unknown"

    @classmethod
    def from_token(cls, token: str) -> "MarkerState":
        token = token.strip()
        if not token:
            return MarkerState.UNKNOWN
        try:
            return MarkerState(token)
        except ValueError:
            logger.debug(f"unknown marker token '{token}'")
            return MarkerState.UNKNOWN


class StateStore(abc.ABC):
    """
    Shared store of progress markers, keyed by a filesystem-safe string.

    Several processes may operate on the same store at once. Individual reads
    and writes are atomic, but a read followed by a write is not, unless done
    while holding `locked()` on a store that supports locking.
    """

    @abc.abstractmethod
    def read(self, key: str) -> MarkerState:
        pass

    @abc.abstractmethod
    def write(self, key: str, state: MarkerState) -> None:
        pass

    @abc.abstractmethod
    def clear(self, key: str) -> None:
        """Remove the marker for `key`, bringing it back to `ABSENT`."""
        pass

    @abc.abstractmethod
    def keys(self) -> list[str]:
        pass

    @abc.abstractmethod
    def remove_all(self) -> None:
        pass

    @contextlib.contextmanager
    def locked(self, key: str) -> Iterator[None]:  # noqa: ARG002
        yield

    def claim(self, key: str, expected: MarkerState, new: MarkerState) -> bool:
        """Move `key` from `expected` to `new`, if it is still at `expected`."""
        with self.locked(key):
            if self.read(key) != expected:
                return False
            self.write(key, new)
            return True
