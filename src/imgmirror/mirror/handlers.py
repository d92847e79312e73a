# imgmirror - image handlers
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

import enum
import time
from collections.abc import Callable, Collection
from pathlib import Path

from imgmirror.config import PushWaitConfig
from imgmirror.console import (
    Symbols,
    pdot,
    perror,
    pheader,
    pinfo,
    psuccess,
    rprint,
)
from imgmirror.engines import ContainerEngine, EngineError
from imgmirror.manifest import ImageRecord, Manifest, PackageRecord
from imgmirror.mirror import logger as parent_logger
from imgmirror.mirror.results import FailureKind, Outcome, StepResult
from imgmirror.state import MarkerState, StateStore
from imgmirror.transfer import ArtifactDownloader, DownloadError

logger = parent_logger.getChild("handlers")


class VerifyPolicy(enum.StrEnum):
    # digests must match; an unobtainable digest is a failure.
    STRICT = "strict"
    # only two different, non-empty, digests are a failure.
    LENIENT = "lenient"


# states in which a producer must leave an image alone.
_PRODUCED_STATES = frozenset(
    {MarkerState.DOWNLOADED, MarkerState.PUSHING, MarkerState.DONE}
)

# states the push-only handler waits for.
_PUSH_READY_STATES = frozenset(
    {
        MarkerState.DOWNLOADED,
        MarkerState.PUSHING,
        MarkerState.DOWNLOAD_FAILED,
        MarkerState.DONE,
    }
)

_PACKAGE_BUSY_STATES = frozenset(
    {MarkerState.STARTED, MarkerState.DOWNLOADED, MarkerState.DONE}
)


class ImageMirror:
    """
    Mirror images into `registry`, one image at a time.

    There is one handler per transfer mode. Each starts by reading the image's
    marker, and leaves alone any image some other process is working on.
    Handlers never raise on an image's failure; they report it through the
    returned `StepResult`, having left the marker in a state from which a
    later invocation may retry.
    """

    manifest: Manifest
    registry: str

    _engine: ContainerEngine
    _store: StateStore
    _downloader: ArtifactDownloader
    _work_dir: Path
    _push_wait: PushWaitConfig
    _sleep: Callable[[float], None]
    _in_flight: str | None

    def __init__(
        self,
        manifest: Manifest,
        registry: str,
        *,
        engine: ContainerEngine,
        store: StateStore,
        downloader: ArtifactDownloader,
        work_dir: Path,
        push_wait: PushWaitConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.manifest = manifest
        self.registry = registry
        self._engine = engine
        self._store = store
        self._downloader = downloader
        self._work_dir = work_dir
        self._push_wait = push_wait
        self._sleep = sleep
        self._in_flight = None

    def close(self) -> None:
        self._downloader.close()

    @property
    def in_flight(self) -> str | None:
        """Marker key of the image or package currently being acquired or pushed."""
        return self._in_flight

    def abort_in_flight(self) -> None:
        """Drop the in-flight marker, so a later invocation starts it afresh."""
        if self._in_flight is None:
            return
        logger.info(f"interrupted, clearing marker '{self._in_flight}'")
        self._store.clear(self._in_flight)
        self._in_flight = None

    def _counter(self, img: ImageRecord) -> str:
        return f"{img.index}/{self.manifest.total}"

    def _start(self, key: str, *, skip: Collection[MarkerState]) -> MarkerState:
        """
        Mark `key` as started, unless its current state is one of `skip`.

        Returns the state found before doing so.
        """
        with self._store.locked(key):
            state = self._store.read(key)
            if state not in skip:
                self._store.write(key, MarkerState.STARTED)
                self._in_flight = key
        return state

    def _archive_path(self, archive: str) -> Path:
        self._work_dir.mkdir(parents=True, exist_ok=True)
        return self._work_dir / Path(archive).name

    def _fetch(self, archive: str) -> Path:
        dest = self._archive_path(archive)
        self._downloader.fetch(self.manifest.artifact_url(archive), dest)
        return dest

    def _verify(
        self, img: ImageRecord, local_ref: str, policy: VerifyPolicy
    ) -> StepResult | None:
        """Check the local image's digest, returning a result on failure only."""
        actual = self._engine.inspect_digest(local_ref)
        expected = img.digest

        if actual is None:
            if policy == VerifyPolicy.LENIENT:
                logger.warning(f"unable to obtain digest for '{local_ref}', ignoring")
                return None
            msg = (
                f"Could not retrieve the image information for '{local_ref}'. "
                + "The archive might be invalid or inaccessible."
            )
            perror(msg)
            return StepResult.failed(
                img.destination, FailureKind.DIGEST_UNAVAILABLE, msg
            )

        if actual == expected or (policy == VerifyPolicy.LENIENT and not expected):
            logger.debug(f"digest for '{local_ref}': {actual}")
            return None

        rprint(f"{expected or '<none>'} is different from {actual}")
        msg = f"Image checksum for {local_ref} does not match."
        perror(msg)
        return StepResult.failed(img.destination, FailureKind.DIGEST_MISMATCH, msg)

    def _push(self, img: ImageRecord, local_ref: str) -> StepResult:
        """
        Tag `local_ref` under the destination registry, if needed, and push it.

        The destination-tagged image is removed afterwards when it was tagged
        here. The marker is left to the caller in case of failure.
        """
        dest = img.destination_ref(self.registry)
        tagged = local_ref != dest
        try:
            if tagged:
                self._engine.tag(local_ref, dest)
            self._engine.push(dest)
        except EngineError as e:
            logger.debug(f"push of '{dest}' failed: {e}")
            msg = f"Failed to perform {self._engine.name} push {dest}"
            perror(msg)
            return StepResult.failed(img.destination, FailureKind.PUBLISH, msg)
        finally:
            if tagged:
                self._engine.remove_image(dest)

        self._store.write(img.marker_key, MarkerState.DONE)
        psuccess(f"{Symbols.CHECK_MARK} Pushed {self._counter(img)} {img.destination}")
        return StepResult.ok(img.destination, Outcome.PUSHED)

    def _skip_or_done(self, img: ImageRecord, state: MarkerState) -> StepResult:
        if state == MarkerState.DONE:
            pinfo("Already processed.")
            return StepResult.ok(img.destination, Outcome.ALREADY_DONE)
        pinfo("Being processed by another invocation, skipping.")
        return StepResult.ok(img.destination, Outcome.SKIPPED)

    #
    # combined mode
    #

    def download_and_push(self, img: ImageRecord) -> StepResult:
        """Download an image archive, load, verify and push it."""
        assert img.archive
        pheader(f"Processing {self._counter(img)} {img.destination}")

        key = img.marker_key
        state = self._start(key, skip=set(MarkerState) - {MarkerState.ABSENT})
        if state != MarkerState.ABSENT:
            return self._skip_or_done(img, state)

        res = self._download_and_push(img, img.archive)
        self._in_flight = None
        return res

    def _download_and_push(self, img: ImageRecord, archive: str) -> StepResult:
        key = img.marker_key
        try:
            archive_path = self._fetch(archive)
        except DownloadError as e:
            self._store.clear(key)
            msg = f"Failed to download {self.manifest.artifact_url(archive)}"
            perror(msg)
            logger.debug(f"download failed: {e}")
            return StepResult.failed(img.destination, FailureKind.TRANSFER, msg)

        self._store.write(key, MarkerState.DOWNLOADED)

        try:
            try:
                local_ref = self._engine.load(str(archive_path))
            except EngineError as e:
                self._store.clear(key)
                msg = f"Failed to load {archive_path.name}: {e}"
                perror(msg)
                return StepResult.failed(img.destination, FailureKind.LOAD, msg)

            try:
                res = self._verify(img, local_ref, VerifyPolicy.STRICT)
                if res is None:
                    res = self._push(img, local_ref)
                if res.is_error:
                    self._store.clear(key)
                return res
            finally:
                self._engine.remove_image(local_ref)
        finally:
            archive_path.unlink(missing_ok=True)

    def pull_and_push(self, img: ImageRecord) -> StepResult:
        """Pull an image from its source registry, verify and push it."""
        pheader(f"Processing {self._counter(img)} {img.destination}")

        key = img.marker_key
        state = self._start(key, skip=set(MarkerState) - {MarkerState.ABSENT})
        if state != MarkerState.ABSENT:
            return self._skip_or_done(img, state)

        res = self._pull_and_push(img)
        self._in_flight = None
        return res

    def _pull_and_push(self, img: ImageRecord) -> StepResult:
        key = img.marker_key
        try:
            self._engine.pull(img.source)
        except EngineError as e:
            self._store.clear(key)
            msg = f"Failed to {self._engine.name} pull {img.source}"
            perror(msg)
            logger.debug(f"pull failed: {e}")
            return StepResult.failed(img.destination, FailureKind.TRANSFER, msg)

        self._store.write(key, MarkerState.DOWNLOADED)

        try:
            res = self._verify(img, img.source, VerifyPolicy.LENIENT)
            if res is None:
                res = self._push(img, img.source)
            if res.is_error:
                self._store.clear(key)
            return res
        finally:
            self._engine.remove_image(img.source)

    #
    # split mode, producers
    #

    def download_only(self, img: ImageRecord) -> StepResult:
        """
        Download and load an image archive, leaving it tagged for a pusher.

        Failures are recorded in the marker as 'download failed', letting the
        push-only invocation waiting on this image know it can stop waiting.
        """
        assert img.archive

        key = img.marker_key
        state = self._start(key, skip=_PRODUCED_STATES)
        if state in _PRODUCED_STATES:
            return self._produced(img, state)

        pheader(
            f"Downloading {self._counter(img)} {img.archive} for {img.destination}"
        )
        res = self._download_only(img, img.archive)
        self._in_flight = None
        return res

    def _download_only(self, img: ImageRecord, archive: str) -> StepResult:
        key = img.marker_key
        try:
            archive_path = self._fetch(archive)
        except DownloadError as e:
            self._store.write(key, MarkerState.DOWNLOAD_FAILED)
            msg = f"Failed to download {self.manifest.artifact_url(archive)}"
            perror(msg)
            logger.debug(f"download failed: {e}")
            return StepResult.failed(img.destination, FailureKind.TRANSFER, msg)

        try:
            try:
                local_ref = self._engine.load(str(archive_path))
            except EngineError as e:
                # a load failure is reported to pushers as a failed download.
                self._store.write(key, MarkerState.DOWNLOAD_FAILED)
                msg = f"Failed to load {archive_path.name}: {e}"
                perror(msg)
                return StepResult.failed(img.destination, FailureKind.LOAD, msg)

            return self._stage_for_push(img, local_ref, VerifyPolicy.STRICT)
        finally:
            archive_path.unlink(missing_ok=True)

    def pull_only(self, img: ImageRecord) -> StepResult:
        """Pull an image, leaving it tagged for a pusher."""
        key = img.marker_key
        state = self._start(key, skip=_PRODUCED_STATES)
        if state in _PRODUCED_STATES:
            return self._produced(img, state)

        pheader(f"Pulling {self._counter(img)} {img.destination}")
        res = self._pull_only(img)
        self._in_flight = None
        return res

    def _pull_only(self, img: ImageRecord) -> StepResult:
        try:
            self._engine.pull(img.source)
        except EngineError as e:
            self._store.write(img.marker_key, MarkerState.DOWNLOAD_FAILED)
            msg = f"Failed to {self._engine.name} pull {img.source}"
            perror(msg)
            logger.debug(f"pull failed: {e}")
            return StepResult.failed(img.destination, FailureKind.TRANSFER, msg)

        return self._stage_for_push(img, img.source, VerifyPolicy.LENIENT)

    def _produced(self, img: ImageRecord, state: MarkerState) -> StepResult:
        if state == MarkerState.DONE:
            logger.debug(f"'{img.destination}' already pushed")
            return StepResult.ok(img.destination, Outcome.ALREADY_DONE)
        logger.debug(f"'{img.destination}' is '{state.value}', skipping")
        return StepResult.ok(img.destination, Outcome.SKIPPED)

    def _stage_for_push(
        self, img: ImageRecord, local_ref: str, policy: VerifyPolicy
    ) -> StepResult:
        """Verify and tag a freshly acquired image under its destination."""
        key = img.marker_key
        dest = img.destination_ref(self.registry)
        try:
            res = self._verify(img, local_ref, policy)
            if res is not None:
                self._store.write(key, MarkerState.DOWNLOAD_FAILED)
                return res

            if local_ref != dest:
                try:
                    self._engine.tag(local_ref, dest)
                except EngineError as e:
                    self._store.write(key, MarkerState.DOWNLOAD_FAILED)
                    msg = f"Failed to tag {local_ref} as {dest}: {e}"
                    perror(msg)
                    return StepResult.failed(img.destination, FailureKind.LOAD, msg)

            self._store.write(key, MarkerState.DOWNLOADED)
            psuccess(f"Downloaded {self._counter(img)} {img.destination}")
            return StepResult.ok(img.destination, Outcome.DOWNLOADED)
        finally:
            if local_ref != dest:
                self._engine.remove_image(local_ref)

    #
    # split mode, consumer
    #

    def _wait_for_download(self, key: str) -> MarkerState:
        """Poll the marker until it is ready to be acted upon, or we time out."""
        state = self._store.read(key)
        elapsed = 0.0
        while state not in _PUSH_READY_STATES:
            if elapsed > self._push_wait.timeout:
                break
            self._sleep(self._push_wait.interval)
            pdot()
            state = self._store.read(key)
            elapsed += self._push_wait.interval

        if elapsed > 0:
            rprint("")
        return state

    def push_only(self, img: ImageRecord) -> StepResult:
        """
        Push an image once a producer has downloaded it.

        Waits, up to the configured timeout, for the producer to finish. The
        first process to observe the image as downloaded claims it by marking
        it as being pushed; any other will skip it.
        """
        pheader(f"Processing {self._counter(img)} {img.destination}")

        key = img.marker_key
        state = self._wait_for_download(key)

        if state == MarkerState.DOWNLOADED:
            if not self._store.claim(key, MarkerState.DOWNLOADED, MarkerState.PUSHING):
                state = self._store.read(key)
                logger.debug(f"lost claim on '{key}' to another invocation ({state})")
                return self._skip_or_done(img, state)

            self._in_flight = key
            res = self._claimed_push(img)
            self._in_flight = None
            return res

        if state == MarkerState.DONE:
            pinfo("The image was already processed.")
            return StepResult.ok(img.destination, Outcome.ALREADY_DONE)

        if state == MarkerState.PUSHING:
            pinfo("Pushing in another invocation, skipping.")
            return StepResult.ok(img.destination, Outcome.SKIPPED)

        if state == MarkerState.DOWNLOAD_FAILED:
            msg = "The image was not downloaded or pulled successfully."
            perror(msg)
            return StepResult.failed(img.destination, FailureKind.NOT_DOWNLOADED, msg)

        msg = (
            f"Timed out after {self._push_wait.timeout:g}s waiting for "
            + f"{img.destination} to be downloaded or pulled."
        )
        perror(msg)
        return StepResult.failed(img.destination, FailureKind.TIMEOUT, msg)

    def _claimed_push(self, img: ImageRecord) -> StepResult:
        key = img.marker_key
        dest = img.destination_ref(self.registry)
        pinfo("Pushing ...")

        try:
            if img.requires_explicit_tag:
                self._engine.tag(img.source, dest)
            self._engine.push(dest)
        except EngineError as e:
            # leave the image in place, for a later push attempt.
            self._store.write(key, MarkerState.DOWNLOADED)
            rprint(f"{self._engine.name} push exit code = {e.retcode}")
            msg = f"Failed to perform {self._engine.name} push {dest}"
            perror(msg)
            return StepResult.failed(img.destination, FailureKind.PUBLISH, msg)

        self._store.write(key, MarkerState.DONE)
        psuccess(f"{Symbols.CHECK_MARK} Pushed {self._counter(img)} {img.destination}")
        self._engine.remove_image(dest)
        if img.requires_explicit_tag:
            self._engine.remove_image(img.source)
        return StepResult.ok(img.destination, Outcome.PUSHED)

    #
    # packages
    #

    def download_package(self, pkg: PackageRecord) -> StepResult:
        """Download a package and load all of its images."""
        key = pkg.marker_key
        state = self._start(key, skip=_PACKAGE_BUSY_STATES)
        if state in _PACKAGE_BUSY_STATES:
            logger.debug(f"package '{pkg.filename}' is '{state.value}', skipping")
            return StepResult.ok(pkg.filename, Outcome.SKIPPED)

        pheader(f"Downloading {pkg.archive}")
        if pkg.checksum:
            rprint(f"checksum: {pkg.checksum}, size: {pkg.size or 'unknown'}")
        res = self._download_package(pkg)
        self._in_flight = None
        return res

    def _download_package(self, pkg: PackageRecord) -> StepResult:
        key = pkg.marker_key
        try:
            archive_path = self._fetch(pkg.archive)
        except DownloadError as e:
            self._store.write(key, MarkerState.DOWNLOAD_FAILED)
            msg = f"Failed to download {self.manifest.artifact_url(pkg.archive)}"
            perror(msg)
            logger.debug(f"download failed: {e}")
            return StepResult.failed(pkg.filename, FailureKind.TRANSFER, msg)

        try:
            _ = self._engine.load(str(archive_path))
        except EngineError as e:
            self._store.write(key, MarkerState.LOAD_FAILED)
            msg = f"Failed to load {pkg.filename}"
            perror(msg)
            logger.debug(f"load failed: {e}")
            return StepResult.failed(pkg.filename, FailureKind.LOAD, msg)
        finally:
            archive_path.unlink(missing_ok=True)

        self._store.write(key, MarkerState.DOWNLOADED)
        psuccess(f"Downloaded {pkg.filename}")
        return StepResult.ok(pkg.filename, Outcome.DOWNLOADED)

    def mark_as_downloaded(self, pkg: PackageRecord, img: ImageRecord) -> bool:
        """
        Mark an image as downloaded once its package has been loaded.

        Returns whether the image's marker was changed.
        """
        if self._store.read(pkg.marker_key) != MarkerState.DOWNLOADED:
            return False

        key = img.marker_key
        with self._store.locked(key):
            if self._store.read(key) in _PRODUCED_STATES:
                return False
            self._store.write(key, MarkerState.DOWNLOADED)
        return True

    def complete_package(self, pkg: PackageRecord) -> bool:
        """Mark a package as done once all of its images have been pushed."""
        if self._store.read(pkg.marker_key) == MarkerState.DONE:
            return False
        if any(
            self._store.read(img.marker_key) != MarkerState.DONE for img in pkg.images
        ):
            return False

        self._store.write(pkg.marker_key, MarkerState.DONE)
        logger.debug(f"package '{pkg.filename}' done")
        return True
