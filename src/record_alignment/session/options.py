from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

import numpy as np

from record_alignment.errors import InvalidOption

DEFAULT_PEAK_COUNT = 5
DEFAULT_MIN_SPACING = 10.0
DEFAULT_USE_ABSOLUTE_COEFFICIENT = True

_PEAK_COUNT_KEYS = {"peakcount", "npeaks"}
_MIN_SPACING_KEYS = {"minspacing", "spacing"}
_ABSOLUTE_KEYS = {"useabsolutecoefficient", "absxc"}


@dataclass(frozen=True)
class SessionConfig:
    """Validated session options.

    ``solver_options`` is forwarded to the network solver as given.
    """

    peak_count: int = DEFAULT_PEAK_COUNT
    min_spacing: float = DEFAULT_MIN_SPACING
    use_absolute_coefficient: bool = DEFAULT_USE_ABSOLUTE_COEFFICIENT
    solver_options: Mapping[str, object] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def correlation_settings(self) -> dict[str, object]:
        return {
            "peak_count": self.peak_count,
            "min_spacing": self.min_spacing,
            "use_absolute_coefficient": self.use_absolute_coefficient,
        }


def is_valid_peak_count(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(
        value, (int, float, np.integer, np.floating)
    ):
        return False
    return math.isfinite(value) and value == int(value) and value >= 1


def is_valid_spacing(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(
        value, (int, float, np.integer, np.floating)
    ):
        return False
    return math.isfinite(value) and value >= 0


def parse_options(
    options: Sequence[object] | Mapping[str, object] | None = None,
) -> SessionConfig:
    """Validate session options given as a mapping or flat key/value pairs.

    Keys are case-insensitive (``peakCount``/``npeaks``,
    ``minSpacing``/``spacing``, ``useAbsoluteCoefficient``/``absxc``);
    anything else is passed to the solver untouched.
    """
    pairs = _as_pairs(options)

    peak_count = DEFAULT_PEAK_COUNT
    min_spacing = DEFAULT_MIN_SPACING
    use_abs = DEFAULT_USE_ABSOLUTE_COEFFICIENT
    solver: dict[str, object] = {}
    for key, value in pairs:
        normalized = key.replace("_", "").lower()
        if normalized in _PEAK_COUNT_KEYS:
            if not is_valid_peak_count(value):
                raise InvalidOption(f"{key} must be an integer >= 1, got {value!r}")
            peak_count = int(value)  # type: ignore[call-overload]
        elif normalized in _MIN_SPACING_KEYS:
            if not is_valid_spacing(value):
                raise InvalidOption(
                    f"{key} must be a non-negative real (time units), got {value!r}"
                )
            min_spacing = float(value)  # type: ignore[arg-type]
        elif normalized in _ABSOLUTE_KEYS:
            if not isinstance(value, (bool, np.bool_)):
                raise InvalidOption(f"{key} must be a boolean, got {value!r}")
            use_abs = bool(value)
        else:
            solver[key] = value

    return SessionConfig(
        peak_count=peak_count,
        min_spacing=min_spacing,
        use_absolute_coefficient=use_abs,
        solver_options=MappingProxyType(solver),
    )


def _as_pairs(
    options: Sequence[object] | Mapping[str, object] | None,
) -> list[tuple[str, object]]:
    if options is None:
        return []
    if isinstance(options, Mapping):
        items = list(options.items())
    else:
        if isinstance(options, (str, bytes)):
            raise InvalidOption("options must be key/value pairs, not a string.")
        flat = list(options)
        if len(flat) % 2:
            raise InvalidOption("Unpaired OPTION/VALUE!")
        items = list(zip(flat[0::2], flat[1::2], strict=True))
    for key, _ in items:
        if not isinstance(key, str):
            raise InvalidOption(f"All OPTIONs must be strings, got {key!r}")
    return items  # type: ignore[return-value]
