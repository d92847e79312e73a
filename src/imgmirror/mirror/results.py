# imgmirror - mirroring results
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

import enum
from typing import ClassVar

import pydantic


class Outcome(enum.StrEnum):
    PUSHED = "pushed"
    ALREADY_DONE = "already done"
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureKind(enum.StrEnum):
    TRANSFER = "transfer"
    LOAD = "load"
    DIGEST_MISMATCH = "digest mismatch"
    DIGEST_UNAVAILABLE = "digest unavailable"
    PUBLISH = "publish"
    NOT_DOWNLOADED = "not downloaded"
    TIMEOUT = "timeout"


class StepResult(pydantic.BaseModel):
    """Outcome of handling one image, or one package, in this process."""

    model_config: ClassVar[pydantic.ConfigDict] = pydantic.ConfigDict(frozen=True)

    subject: str
    outcome: Outcome
    failure: FailureKind | None = None
    msg: str | None = None

    @classmethod
    def ok(cls, subject: str, outcome: Outcome) -> StepResult:
        return cls(subject=subject, outcome=outcome)

    @classmethod
    def failed(cls, subject: str, kind: FailureKind, msg: str) -> StepResult:
        return cls(subject=subject, outcome=Outcome.FAILED, failure=kind, msg=msg)

    @property
    def is_completed(self) -> bool:
        return self.outcome in (Outcome.PUSHED, Outcome.ALREADY_DONE)

    @property
    def is_error(self) -> bool:
        return self.outcome == Outcome.FAILED


class RunSummary:
    """
    Counters for the work performed by this process only.

    Images completed by other processes are only accounted for when this
    process observes their markers as done.
    """

    total: int
    completed: int
    errors: int

    def __init__(self, total: int) -> None:
        self.total = total
        self.completed = 0
        self.errors = 0

    def add(self, result: StepResult) -> None:
        if result.is_completed:
            self.completed += 1
        elif result.is_error:
            self.errors += 1

    @property
    def all_done(self) -> bool:
        return self.completed == self.total
