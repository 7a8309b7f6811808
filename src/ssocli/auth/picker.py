"""Selecting one account or role out of a list.

The role-credential resolver only needs "given a non-empty ordered list,
return exactly one element or fail if the user aborts". :class:`Picker`
is that contract; :class:`PromptPicker` implements it with a numbered list
on stderr and a Typer prompt.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Sequence, TypeVar

import click
import typer

from ssocli.exceptions import SelectionAbortedError
from ssocli.output import OutputManager

T = TypeVar("T")


class Picker(ABC):
    @abstractmethod
    def select(self, label: str, items: Sequence[T], describe: Callable[[T], str]) -> T:
        """Return one element of the non-empty *items*.

        Raises:
            SelectionAbortedError: If the user aborts.
        """


class PromptPicker(Picker):
    """Numbered-list picker. A single item is chosen without prompting."""

    def __init__(self, output: OutputManager) -> None:
        self._output = output

    def select(self, label: str, items: Sequence[T], describe: Callable[[T], str]) -> T:
        if not items:
            raise ValueError(f"nothing to select for {label}")
        if len(items) == 1:
            self._output.info(f"Using the only available {label}: {describe(items[0])}")
            return items[0]

        self._output.notice(f"Available {label}s:")
        for i, item in enumerate(items, 1):
            self._output.notice(f"  {i}. {describe(item)}")

        try:
            choice = typer.prompt(
                f"Select {label} number",
                type=click.IntRange(1, len(items)),
                default=1,
                err=True,
            )
        except (click.exceptions.Abort, KeyboardInterrupt, EOFError):
            raise SelectionAbortedError(f"{label} selection aborted") from None
        return items[choice - 1]
