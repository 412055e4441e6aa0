"""Synthetic records and a scripted prompter for tests and demos."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence

import numpy as np
import numpy.typing as npt
from numpy.random import default_rng

from record_alignment.records import Record, RecordSet

# menu answers (0-based) for the default session menus
KEEP = 0
KEEP_ALL_STAGES = (KEEP, KEEP, KEEP, KEEP)
CORRELATE = 3
ABORT_CORRELATION = 4
ACCEPT = 0
REDO = 1
ABORT_REVIEW = 2


def ricker(
    npts: int, *, delta: float, center: float, frequency: float
) -> npt.NDArray[np.float64]:
    t = np.arange(npts, dtype=np.float64) * delta - center
    arg = (np.pi * frequency * t) ** 2
    return (1.0 - 2.0 * arg) * np.exp(-arg)


def shifted_records(
    shifts: Sequence[float],
    *,
    delta: float = 0.01,
    npts: int = 1000,
    center: float = 2.0,
    frequency: float = 2.0,
    polarities: Sequence[int] | None = None,
    noise: float = 0.0,
    seed: int = 0,
    distances: Sequence[float] | None = None,
) -> RecordSet:
    """Copies of one Ricker pulse delayed by whole-sample ``shifts``."""
    base = ricker(npts, delta=delta, center=center, frequency=frequency)
    rng = default_rng(seed)
    records = []
    for idx, shift in enumerate(shifts):
        k = int(round(shift / delta))
        data = np.zeros(npts, dtype=np.float64)
        if k >= 0:
            data[k:] = base[: npts - k]
        else:
            data[:k] = base[-k:]
        if polarities is not None:
            data *= polarities[idx]
        if noise > 0:
            data = data + noise * rng.standard_normal(npts)
        records.append(
            Record(
                data=data,
                delta=delta,
                name=f"rec{idx:02d}",
                distance=None if distances is None else float(distances[idx]),
            )
        )
    return RecordSet(records)


class ScriptedPrompter:
    """Prompter that replays canned answers in order.

    ``choose`` expects ints (0-based) or None, ``ask`` expects strings or
    None. Every prompt is logged in ``transcript``.
    """

    def __init__(self, answers: Iterable[int | str | None]) -> None:
        self._answers: deque[int | str | None] = deque(answers)
        self.transcript: list[tuple[str, str, tuple[str, ...]]] = []
        self.messages: list[str] = []

    @property
    def remaining(self) -> int:
        return len(self._answers)

    def choose(self, title: str, options: Sequence[str]) -> int | None:
        self.transcript.append(("choose", title, tuple(options)))
        answer = self._next(title)
        if answer is not None and not isinstance(answer, int):
            raise TypeError(f"menu {title!r} expects an int answer, got {answer!r}")
        return answer

    def ask(self, prompt: str, default: str) -> str | None:
        self.transcript.append(("ask", prompt, (default,)))
        answer = self._next(prompt)
        if answer is not None and not isinstance(answer, str):
            raise TypeError(f"prompt {prompt!r} expects a str answer, got {answer!r}")
        return answer

    def show(self, message: str) -> None:
        self.messages.append(message)

    def titles(self) -> list[str]:
        return [title for _, title, _ in self.transcript]

    def _next(self, title: str) -> int | str | None:
        if not self._answers:
            raise RuntimeError(f"scripted answers exhausted at {title!r}")
        return self._answers.popleft()


__all__ = [
    "ABORT_CORRELATION",
    "ABORT_REVIEW",
    "ACCEPT",
    "CORRELATE",
    "KEEP",
    "KEEP_ALL_STAGES",
    "REDO",
    "ScriptedPrompter",
    "ricker",
    "shifted_records",
]
