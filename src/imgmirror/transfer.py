# imgmirror - artifact transfer
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

import time
from collections.abc import Callable
from pathlib import Path
from typing import override

import httpx

from imgmirror.config import TransferConfig
from imgmirror.errors import MirrorError
from imgmirror.logger import logger as root_logger

logger = root_logger.getChild("transfer")

_CHUNK_SIZE = 1024 * 1024


def _is_transient(status_code: int) -> bool:
    return (
        status_code == httpx.codes.TOO_MANY_REQUESTS
        or status_code >= httpx.codes.INTERNAL_SERVER_ERROR
    )


class DownloadError(MirrorError):
    @override
    def __str__(self) -> str:
        return "download error" + (f": {self.msg}" if self.msg else "")


class ArtifactDownloader:
    """
    Download artifacts over HTTP(S), resuming partial downloads.

    A partial file left behind by a failed attempt, by this or a previous
    process, is continued from where it stopped whenever the server honours
    range requests.
    """

    _client: httpx.Client
    _retries: int
    _retry_delay: float
    _sleep: Callable[[float], None]

    def __init__(
        self,
        config: TransferConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = httpx.Client(
            verify=config.verify_tls,
            timeout=config.timeout,
            follow_redirects=True,
            transport=transport,
        )
        self._retries = config.retries
        self._retry_delay = config.retry_delay
        self._sleep = sleep

    def close(self) -> None:
        self._client.close()

    def fetch(self, url: str, dest: Path) -> None:
        """Download `url` to `dest`, retrying on connection errors and 5xx or 429."""
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self._fetch_once(url, dest)
            except httpx.HTTPError as e:
                if isinstance(e, httpx.HTTPStatusError) and not _is_transient(
                    e.response.status_code
                ):
                    msg = f"unable to download '{url}': {e}"
                    logger.error(msg)
                    raise DownloadError(msg) from e

                logger.warning(
                    f"error downloading '{url}' (attempt {attempt}/{attempts}): {e}"
                )
                if attempt < attempts:
                    self._sleep(self._retry_delay)
                continue

            logger.info(f"downloaded '{url}' to '{dest}'")
            return

        msg = f"unable to download '{url}' after {attempts} attempts"
        logger.error(msg)
        raise DownloadError(msg)

    def _fetch_once(self, url: str, dest: Path) -> None:
        offset = dest.stat().st_size if dest.exists() else 0
        headers = {"Range": f"bytes={offset}-"} if offset > 0 else {}

        with self._client.stream("GET", url, headers=headers) as res:
            if (
                offset > 0
                and res.status_code == httpx.codes.REQUESTED_RANGE_NOT_SATISFIABLE
            ):
                logger.debug(f"'{dest}' is already complete")
                return

            _ = res.raise_for_status()

            if res.status_code == httpx.codes.PARTIAL_CONTENT:
                logger.debug(f"resuming '{url}' at offset {offset}")
                mode = "ab"
            else:
                mode = "wb"

            try:
                with dest.open(mode) as fd:
                    for chunk in res.iter_bytes(_CHUNK_SIZE):
                        _ = fd.write(chunk)
            except OSError as e:
                msg = f"unable to write '{dest}': {e}"
                logger.error(msg)
                raise DownloadError(msg) from e
