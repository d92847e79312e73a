# imgmirror - logger
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

logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("imgmirror")
logger.setLevel(logging.ERROR)


def set_debug_logging() -> None:
    logger.setLevel(logging.DEBUG)
