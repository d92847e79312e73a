# imgmirror - config
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

from __future__ import annotations

from pathlib import Path
from typing import Annotated, ClassVar, Literal

import pydantic
import yaml

from imgmirror.errors import MirrorError
from imgmirror.logger import logger as root_logger

logger = root_logger.getChild("config")


class ConfigError(MirrorError):
    pass


class StateConfig(pydantic.BaseModel):
    """Where progress markers are kept, and how they are updated."""

    root: Path = Path("/tmp/imgmirror")  # noqa: S108
    lock: bool = False


class TransferConfig(pydantic.BaseModel):
    model_config: ClassVar[pydantic.ConfigDict] = pydantic.ConfigDict(
        validate_by_alias=True,
        validate_by_name=True,
        serialize_by_alias=True,
    )

    retries: Annotated[int, pydantic.Field(ge=0)] = 10
    retry_delay: Annotated[float, pydantic.Field(alias="retry-delay", ge=0)] = 5.0
    timeout: Annotated[float, pydantic.Field(gt=0)] = 60.0
    verify_tls: Annotated[bool, pydantic.Field(alias="verify-tls")] = False


class PushWaitConfig(pydantic.BaseModel):
    """Bounds the push-only wait for a producer to download an image."""

    timeout: Annotated[float, pydantic.Field(ge=0)] = 1800.0
    interval: Annotated[float, pydantic.Field(gt=0)] = 10.0


class Config(pydantic.BaseModel):
    model_config: ClassVar[pydantic.ConfigDict] = pydantic.ConfigDict(
        validate_by_alias=True,
        validate_by_name=True,
        serialize_by_alias=True,
    )

    default_destination: Annotated[
        str | None, pydantic.Field(alias="default-destination")
    ] = None
    engine: Literal["docker", "podman"] | None = None
    state: StateConfig = pydantic.Field(default_factory=StateConfig)
    transfer: TransferConfig = pydantic.Field(default_factory=TransferConfig)
    push_wait: Annotated[
        PushWaitConfig,
        pydantic.Field(alias="push-wait", default_factory=PushWaitConfig),
    ]

    @classmethod
    def load(cls, path: Path) -> Config:
        if not path.exists() or not path.is_file():
            raise ConfigError(f"config file '{path}' does not exist or is not a file")

        try:
            raw_data = path.read_text()
            if path.suffix.lower() in (".yaml", ".yml"):
                config = Config.model_validate(yaml.safe_load(raw_data) or {})
            else:
                config = Config.model_validate_json(raw_data)

        except (yaml.YAMLError, pydantic.ValidationError) as e:
            msg = f"error loading config at '{path}': {e}"
            logger.error(msg)
            raise ConfigError(msg) from e
        except Exception as e:
            msg = f"unexpected error loading config at '{path}': {e}"
            logger.error(msg)
            raise ConfigError(msg) from e

        return config

    @classmethod
    def load_or_default(cls, path: Path | None) -> Config:
        """Load config from `path` if it exists, otherwise use the defaults."""
        if path is None or not path.exists():
            logger.debug(f"config file '{path}' not found, using defaults")
            return Config()
        return Config.load(path)
