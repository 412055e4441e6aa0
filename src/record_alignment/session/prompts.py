"""User-input providers for the interactive session.

The controller only talks to a :class:`Prompter`; :class:`ClickPrompter`
backs it with terminal prompts, and ``record_alignment.testing`` ships a
scripted one for tests.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Protocol

import click

logger = logging.getLogger(__name__)


class Prompter(Protocol):
    def choose(self, title: str, options: Sequence[str]) -> int | None:
        """Return the 0-based index of the chosen option (None if dismissed)."""
        ...

    def ask(self, prompt: str, default: str) -> str | None:
        """Return typed text (None if dismissed); the prompter shows ``default``."""
        ...

    def show(self, message: str) -> None: ...


class ClickPrompter:
    """Terminal menus built on ``click.prompt``."""

    def choose(self, title: str, options: Sequence[str]) -> int | None:
        click.secho(title, bold=True)
        for number, label in enumerate(options, start=1):
            click.echo(f"  {number}) {label}")
        choice = click.prompt("選択", type=click.IntRange(1, len(options)))
        return int(choice) - 1

    def ask(self, prompt: str, default: str) -> str | None:
        return str(click.prompt(prompt, default=default, show_default=True))

    def show(self, message: str) -> None:
        click.echo(message)


def ask_number(
    prompter: Prompter,
    prompt: str,
    current: float,
    *,
    integer: bool = False,
    minimum: float | None = None,
) -> float:
    """Prompt for a number, keeping ``current`` on empty or invalid input."""
    default = f"{current:g}"
    text = prompter.ask(prompt, default)
    if text is None or not text.strip():
        return current
    try:
        value = float(text)
    except ValueError:
        logger.debug("Ignoring non-numeric input %r", text)
        return current
    if not math.isfinite(value):
        logger.debug("Ignoring non-finite input %r", text)
        return current
    if integer and value != int(value):
        logger.debug("Ignoring non-integer input %r", text)
        return current
    if minimum is not None and value < minimum:
        logger.debug("Ignoring input %r below %g", text, minimum)
        return current
    return int(value) if integer else value
