# imgmirror - console output
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

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.markup import escape
from rich.theme import Theme


class _MirrorHighlighter(RegexHighlighter):
    base_style: str = "mirror."
    highlights: list[str] = [  # noqa: RUF012
        r"(?P<digest>sha256:[a-f0-9]{64})",
        r"(?P<count>\b\d+/\d+\b)",
    ]


_theme = Theme(
    {
        "mirror.digest": "purple",
        "mirror.count": "gold1",
    }
)
console = Console(highlighter=_MirrorHighlighter(), theme=_theme)


def perror(s: str) -> None:
    console.print(
        f"[bold][red]error:[/red] {escape(s)}[/bold]",
    )


def pinfo(s: str) -> None:
    console.print(escape(s), style="cyan")


def psuccess(s: str) -> None:
    console.print(escape(s), style="bold green")


def pwarn(s: str) -> None:
    console.print(f"[bold yellow]warning:[/bold yellow] {escape(s)}")


def pheader(s: str) -> None:
    console.print()
    console.print(escape(s), style="bold")


def rprint(s: str) -> None:
    console.print(escape(s))


def pdot() -> None:
    console.print(".", end="")


class Symbols(enum.StrEnum):
    CHECK_MARK = "\u2713"
    CROSS_MARK = "\u2717"
