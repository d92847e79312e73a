# imgmirror - manifest
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

# NOTE: pydantic makes basedpyright complain about 'Any' when using Field
# defaults. Disable temporarily.
#
# pyright: reportAny=false

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path, PurePosixPath
from typing import Annotated, ClassVar, Self, override

import pydantic
import yaml

from imgmirror.errors import MirrorError
from imgmirror.logger import logger as root_logger

logger = root_logger.getChild("manifest")


class ManifestError(MirrorError):
    @override
    def __str__(self) -> str:
        return "manifest error" + (f": {self.msg}" if self.msg else "")


_record_config = pydantic.ConfigDict(
    frozen=True,
    validate_by_alias=True,
    validate_by_name=True,
    serialize_by_alias=True,
)


class ImageRecord(pydantic.BaseModel):
    """One image to be mirrored."""

    model_config: ClassVar[pydantic.ConfigDict] = _record_config

    # display only, assigned in manifest order when not specified.
    index: Annotated[int, pydantic.Field(ge=0)] = 0
    source: str
    destination: str
    digest: str = ""
    size: str = ""
    archive: str | None = None
    requires_explicit_tag: Annotated[
        bool, pydantic.Field(alias="requires-explicit-tag")
    ] = False

    @property
    def marker_key(self) -> str:
        return self.destination.replace("/", "-")

    def destination_ref(self, registry: str) -> str:
        return f"{registry}/{self.destination}"


class PackagedImageRecord(ImageRecord):
    """
    An image shipped inside a package archive.

    Loading a package leaves its images under their source reference, hence
    they must be tagged before being pushed.
    """

    requires_explicit_tag: Annotated[
        bool, pydantic.Field(alias="requires-explicit-tag")
    ] = True


class PackageRecord(pydantic.BaseModel):
    """An archive bundling several images, downloaded and loaded at once."""

    model_config: ClassVar[pydantic.ConfigDict] = _record_config

    archive: str
    checksum: str = ""
    size: str = ""
    images: list[PackagedImageRecord] = pydantic.Field(default=[])

    @property
    def filename(self) -> str:
        return PurePosixPath(self.archive).name

    @property
    def marker_key(self) -> str:
        return f"{self.filename}-status"


class Manifest(pydantic.BaseModel):
    model_config: ClassVar[pydantic.ConfigDict] = pydantic.ConfigDict(
        validate_by_alias=True,
        validate_by_name=True,
        serialize_by_alias=True,
    )

    run_id: Annotated[str, pydantic.Field(alias="run-id", min_length=1)]
    destination: str | None = None
    artifact_base_url: Annotated[
        str | None, pydantic.Field(alias="artifact-base-url")
    ] = None
    images: list[ImageRecord] = pydantic.Field(default=[])
    packages: list[PackageRecord] = pydantic.Field(default=[])

    @pydantic.model_validator(mode="after")
    def _assign_indices(self) -> Self:
        """Number images in manifest order, package members last."""
        pos = 0

        def _number[T: ImageRecord](img: T) -> T:
            nonlocal pos
            pos += 1
            return img if img.index else img.model_copy(update={"index": pos})

        self.images = [_number(img) for img in self.images]
        self.packages = [
            pkg.model_copy(update={"images": [_number(img) for img in pkg.images]})
            for pkg in self.packages
        ]
        return self

    @pydantic.model_validator(mode="after")
    def _check_archives(self) -> Self:
        needs_url = any(img.archive for img in self.images) or bool(self.packages)
        if needs_url and not self.artifact_base_url:
            raise ValueError("archives are specified but 'artifact-base-url' is not")
        return self

    @property
    def total(self) -> int:
        """Number of images to be pushed, including those inside packages."""
        return len(self.images) + sum(len(pkg.images) for pkg in self.packages)

    def packaged_images(self) -> Iterator[tuple[PackageRecord, PackagedImageRecord]]:
        for pkg in self.packages:
            for img in pkg.images:
                yield pkg, img

    def artifact_url(self, archive: str) -> str:
        if not self.artifact_base_url:
            raise ManifestError(f"no artifact base url to obtain '{archive}' from")
        return f"{self.artifact_base_url.rstrip('/')}/{archive.lstrip('/')}"

    @classmethod
    def load(cls, path: Path) -> Manifest:
        if not path.exists() or not path.is_file():
            raise ManifestError(f"manifest '{path}' does not exist or is not a file")

        try:
            raw_data = path.read_text()
            if path.suffix.lower() in (".yaml", ".yml"):
                manifest = Manifest.model_validate(yaml.safe_load(raw_data))
            else:
                manifest = Manifest.model_validate_json(raw_data)

        except (yaml.YAMLError, pydantic.ValidationError) as e:
            msg = f"error loading manifest at '{path}': {e}"
            logger.error(msg)
            raise ManifestError(msg) from e
        except Exception as e:
            msg = f"unexpected error loading manifest at '{path}': {e}"
            logger.error(msg)
            raise ManifestError(msg) from e

        logger.debug(
            f"loaded manifest '{path}': {len(manifest.images)} images, "
            + f"{len(manifest.packages)} packages"
        )
        return manifest
