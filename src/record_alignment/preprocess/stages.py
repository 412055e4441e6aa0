"""Interactive preprocessing stages run before correlation.

Every stage takes the current records, the configuration it used in the
previous cycle (offered as the "keep" choice) and returns the transformed
records with the configuration it applied.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, replace
from typing import Protocol

import numpy as np
import numpy.typing as npt

from record_alignment.records import Record, RecordSet, check_records
from record_alignment.session.guard import CheckState
from record_alignment.session.prompts import Prompter, ask_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageConfig:
    stage: str

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class MoveoutConfig(StageConfig):
    stage: str = "moveout"
    slowness: float = 0.0


@dataclass(frozen=True)
class WindowConfig(StageConfig):
    stage: str = "window"
    start: float | None = None
    end: float | None = None


@dataclass(frozen=True)
class TaperConfig(StageConfig):
    stage: str = "taper"
    width: float = 0.05


@dataclass(frozen=True)
class RaiseConfig(StageConfig):
    stage: str = "raise"
    power: float = 1.0


class Stage(Protocol):
    def __call__(
        self,
        records: RecordSet,
        prior: StageConfig | None,
        *,
        prompter: Prompter,
        checks: CheckState,
    ) -> tuple[RecordSet, StageConfig]: ...


def moveout_stage(
    records: RecordSet,
    prior: StageConfig | None,
    *,
    prompter: Prompter,
    checks: CheckState,
) -> tuple[RecordSet, StageConfig]:
    """Remove a linear moveout ``slowness * distance`` from each record."""
    current = prior if isinstance(prior, MoveoutConfig) else MoveoutConfig()
    choice = prompter.choose(
        "APPLY MOVEOUT?",
        [f"CURRENT ({current.slowness:g} s/unit)", "NONE", "CUSTOM SLOWNESS"],
    )
    config = current
    if choice == 1:
        config = MoveoutConfig(slowness=0.0)
    elif choice == 2:
        slowness = ask_number(
            prompter, "Slowness (time per unit distance)?", current.slowness
        )
        config = MoveoutConfig(slowness=slowness)

    out = apply_moveout(records, slowness=config.slowness)
    _maybe_check(out, checks)
    return out, config


def window_stage(
    records: RecordSet,
    prior: StageConfig | None,
    *,
    prompter: Prompter,
    checks: CheckState,
) -> tuple[RecordSet, StageConfig]:
    """Cut every record to a common ``[start, end]`` time window."""
    current = prior if isinstance(prior, WindowConfig) else WindowConfig()
    choice = prompter.choose(
        "WINDOW RECORDS?",
        [f"CURRENT ({_describe_window(current)})", "FULL RECORD", "CUSTOM WINDOW"],
    )
    config = current
    if choice == 1:
        config = WindowConfig()
    elif choice == 2:
        start_default = current.start if current.start is not None else _earliest(records)
        end_default = current.end if current.end is not None else _latest(records)
        start = ask_number(prompter, "Window start time?", start_default)
        end = ask_number(prompter, "Window end time?", end_default)
        if end > start:
            config = WindowConfig(start=start, end=end)
        else:
            logger.debug("Ignoring empty window [%g, %g]", start, end)

    out = apply_window(records, start=config.start, end=config.end)
    _maybe_check(out, checks)
    return out, config


def taper_stage(
    records: RecordSet,
    prior: StageConfig | None,
    *,
    prompter: Prompter,
    checks: CheckState,
) -> tuple[RecordSet, StageConfig]:
    """Apply a cosine taper of ``width`` (fraction of the record) to each end."""
    current = prior if isinstance(prior, TaperConfig) else TaperConfig()
    presets = [0.0, 0.05, 0.10, 0.25]
    choice = prompter.choose(
        "TAPER RECORDS?",
        [
            f"CURRENT ({current.width:.0%})",
            "NONE",
            *[f"{w:.0%}" for w in presets[1:]],
            "CUSTOM",
        ],
    )
    config = current
    if choice is not None and 1 <= choice <= len(presets):
        config = TaperConfig(width=presets[choice - 1])
    elif choice == len(presets) + 1:
        width = ask_number(
            prompter, "Taper width (fraction, 0-0.5)?", current.width, minimum=0.0
        )
        if width <= 0.5:
            config = TaperConfig(width=width)

    out = apply_taper(records, width=config.width)
    _maybe_check(out, checks)
    return out, config


def raise_stage(
    records: RecordSet,
    prior: StageConfig | None,
    *,
    prompter: Prompter,
    checks: CheckState,
) -> tuple[RecordSet, StageConfig]:
    """Raise amplitudes to a power, keeping the sign."""
    current = prior if isinstance(prior, RaiseConfig) else RaiseConfig()
    presets = [1.0, 0.5, 2.0]
    choice = prompter.choose(
        "RAISE AMPLITUDES TO A POWER?",
        [f"CURRENT ({current.power:g})", "1 (NONE)", "0.5", "2", "CUSTOM"],
    )
    config = current
    if choice is not None and 1 <= choice <= len(presets):
        config = RaiseConfig(power=presets[choice - 1])
    elif choice == len(presets) + 1:
        power = ask_number(prompter, "Power?", current.power)
        if power > 0:
            config = RaiseConfig(power=power)

    out = apply_raise(records, power=config.power)
    _maybe_check(out, checks)
    return out, config


DEFAULT_STAGES: tuple[Stage, ...] = (
    moveout_stage,
    window_stage,
    taper_stage,
    raise_stage,
)


def apply_moveout(records: RecordSet, *, slowness: float) -> RecordSet:
    if slowness == 0:
        return records
    missing = [r.name or "?" for r in records if r.distance is None]
    if missing:
        raise ValueError(f"moveout needs a distance for: {', '.join(missing)}")

    def _shift(rec: Record) -> Record:
        shift = slowness * float(rec.distance)  # type: ignore[arg-type]
        return replace(
            rec, begin=rec.begin - shift, time_correction=rec.time_correction - shift
        )

    return records.map(_shift)


def apply_window(
    records: RecordSet, *, start: float | None, end: float | None
) -> RecordSet:
    if start is None and end is None:
        return records

    def _cut(rec: Record) -> Record:
        times = rec.times()
        mask = np.ones(rec.npts, dtype=bool)
        if start is not None:
            mask &= times >= start - 1e-9 * rec.delta
        if end is not None:
            mask &= times <= end + 1e-9 * rec.delta
        kept = np.flatnonzero(mask)
        if kept.size == 0:
            raise ValueError(
                f"{rec.name or '?'}: window [{start}, {end}] contains no samples."
            )
        first, last = kept[0], kept[-1]
        return replace(rec, data=rec.data[first : last + 1], begin=float(times[first]))

    return records.map(_cut)


def apply_taper(records: RecordSet, *, width: float) -> RecordSet:
    if not 0 <= width <= 0.5:
        raise ValueError("taper width must be within [0, 0.5].")
    if width == 0:
        return records
    return records.map(
        lambda rec: replace(
            rec, data=_apply_fade(rec.data, fade_samples=int(width * rec.npts))
        )
    )


def apply_raise(records: RecordSet, *, power: float) -> RecordSet:
    if power <= 0:
        raise ValueError("power must be positive.")
    if power == 1:
        return records
    return records.map(
        lambda rec: replace(rec, data=np.sign(rec.data) * np.abs(rec.data) ** power)
    )


def _apply_fade(
    data: npt.NDArray[np.float64], *, fade_samples: int
) -> npt.NDArray[np.float64]:
    if fade_samples <= 0:
        return data
    fade_samples = min(fade_samples, data.shape[0] // 2)
    if fade_samples == 0:
        return data
    ramp = 0.5 - 0.5 * np.cos(np.linspace(0, np.pi, fade_samples))
    out = data.copy()
    out[:fade_samples] *= ramp
    out[-fade_samples:] *= ramp[::-1]
    return out


def _maybe_check(records: RecordSet, checks: CheckState) -> None:
    if checks.structure_checks:
        check_records(records)


def _describe_window(config: WindowConfig) -> str:
    if config.start is None and config.end is None:
        return "FULL RECORD"
    return f"{config.start:g} to {config.end:g}"


def _earliest(records: Sequence[Record]) -> float:
    return min(r.begin for r in records)


def _latest(records: Sequence[Record]) -> float:
    return max(r.end for r in records)
