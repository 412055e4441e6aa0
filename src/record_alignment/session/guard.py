from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass, fields
from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_TOGGLES = ("structure_checks", "header_checks")


@dataclass
class CheckState:
    """Validation toggles shared by the stages of one session."""

    structure_checks: bool = True
    header_checks: bool = True

    def snapshot(self) -> dict[str, bool]:
        return asdict(self)


class StateGuard:
    """Disable toggles on acquisition and restore them exactly once.

    Usable as a context manager; :meth:`release` may also be called
    directly and is a no-op after the first call.
    """

    def __init__(
        self, checks: CheckState, disable: Iterable[str] = DEFAULT_TOGGLES
    ) -> None:
        self.checks = checks
        self.toggles = tuple(disable)
        known = {f.name for f in fields(CheckState)}
        unknown = [name for name in self.toggles if name not in known]
        if unknown:
            raise ValueError(f"unknown check toggles: {', '.join(unknown)}")
        self._saved: dict[str, bool] | None = None
        self.released = False

    @property
    def acquired(self) -> bool:
        return self._saved is not None

    def acquire(self) -> StateGuard:
        if self._saved is not None:
            raise RuntimeError("StateGuard is single-use and already acquired.")
        self._saved = {name: getattr(self.checks, name) for name in self.toggles}
        for name in self.toggles:
            setattr(self.checks, name, False)
        logger.debug("Disabled checks %s (saved %s)", self.toggles, self._saved)
        return self

    def release(self) -> None:
        if self._saved is None or self.released:
            return
        for name, value in self._saved.items():
            setattr(self.checks, name, value)
        self.released = True
        logger.debug("Restored checks %s", self._saved)

    def __enter__(self) -> StateGuard:
        return self.acquire()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


def acquire(
    checks: CheckState, disable: Iterable[str] = DEFAULT_TOGGLES
) -> StateGuard:
    return StateGuard(checks, disable).acquire()
