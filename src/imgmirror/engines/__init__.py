# imgmirror - container engines
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
from typing import override

from imgmirror.errors import MirrorError
from imgmirror.logger import logger as root_logger

logger = root_logger.getChild("engines")


class EngineError(MirrorError):
    retcode: int

    def __init__(self, retcode: int, msg: str) -> None:
        super().__init__(msg)
        self.retcode = retcode

    @override
    def __str__(self) -> str:
        return f"engine error: {self.msg} (retcode: {self.retcode})"


class ContainerEngine(abc.ABC):
    """
    Operations the mirror needs from a local container engine.

    Every operation is synchronous. Failures raise `EngineError`, except for
    `inspect_digest()`, which returns `None` when no digest can be obtained,
    and `remove_image()`, which only logs.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        pass

    @abc.abstractmethod
    def pull(self, ref: str) -> None:
        pass

    @abc.abstractmethod
    def load(self, archive: str) -> str:
        """Load an image archive, returning the reference of the loaded image."""
        pass

    @abc.abstractmethod
    def inspect_digest(self, ref: str) -> str | None:
        pass

    @abc.abstractmethod
    def tag(self, src: str, dst: str) -> None:
        pass

    @abc.abstractmethod
    def push(self, ref: str) -> None:
        pass

    @abc.abstractmethod
    def remove_image(self, ref: str) -> None:
        pass
