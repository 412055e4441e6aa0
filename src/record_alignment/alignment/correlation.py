from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from itertools import combinations

import numpy as np
import numpy.typing as npt
from scipy import signal

from record_alignment.errors import InvalidConfig
from record_alignment.records import Record, RecordSet

logger = logging.getLogger(__name__)

PairKey = tuple[int, int]

# coefficients at or below this are FFT round-off, not correlation
COEFFICIENT_EPS = 1e-9


@dataclass(frozen=True)
class Candidate:
    """One correlation peak: lag of record j relative to record i."""

    lag: float
    coefficient: float
    polarity: int


@dataclass(frozen=True)
class PairwiseMeasurement:
    pair: PairKey
    candidates: tuple[Candidate, ...]
    positive_only: bool

    @property
    def lags(self) -> npt.NDArray[np.float64]:
        return np.array([c.lag for c in self.candidates], dtype=np.float64)

    @property
    def coefficients(self) -> npt.NDArray[np.float64]:
        return np.array([c.coefficient for c in self.candidates], dtype=np.float64)

    def reordered(self, first: int) -> PairwiseMeasurement:
        """Return a copy with candidate ``first`` moved to the front."""
        if not 0 <= first < len(self.candidates):
            raise IndexError(f"candidate index out of range: {first}")
        rest = [c for k, c in enumerate(self.candidates) if k != first]
        return PairwiseMeasurement(
            pair=self.pair,
            candidates=(self.candidates[first], *rest),
            positive_only=self.positive_only,
        )


class PairwiseMeasurementSet(Mapping[PairKey, PairwiseMeasurement]):
    """Read-only mapping of ``(i, j)`` (``i < j``) to pair measurements."""

    def __init__(
        self, measurements: Mapping[PairKey, PairwiseMeasurement], *, nrecords: int
    ) -> None:
        if nrecords < 0:
            raise ValueError("nrecords must be non-negative.")
        for i, j in measurements:
            if not 0 <= i < j < nrecords:
                raise ValueError(f"invalid pair key ({i}, {j}) for {nrecords} records")
        self._data = dict(sorted(measurements.items()))
        self.nrecords = nrecords

    def __getitem__(self, key: PairKey) -> PairwiseMeasurement:
        i, j = key
        return self._data[(i, j) if i < j else (j, i)]

    def __iter__(self) -> Iterator[PairKey]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"PairwiseMeasurementSet(nrecords={self.nrecords}, pairs={len(self)})"

    def to_dict(self) -> dict[str, object]:
        return {
            "nrecords": self.nrecords,
            "pairs": [
                {
                    "i": i,
                    "j": j,
                    "positive_only": m.positive_only,
                    "lags": [c.lag for c in m.candidates],
                    "coefficients": [c.coefficient for c in m.candidates],
                    "polarities": [c.polarity for c in m.candidates],
                }
                for (i, j), m in self._data.items()
            ],
        }


def correlate(
    records: RecordSet,
    *,
    peak_count: int = 5,
    min_spacing: float = 10.0,
    use_absolute_coefficient: bool = True,
    pairs: Iterable[PairKey] | None = None,
    refine: bool = True,
) -> PairwiseMeasurementSet:
    """Cross-correlate record pairs and keep up to ``peak_count`` peaks each.

    Coefficients are normalized by the record norms so they lie in [-1, 1].
    The lag of pair ``(i, j)`` is the time record ``j`` trails record ``i``
    (begin-time offsets included). Selected peaks are at least
    ``min_spacing`` apart; ordering is by magnitude, then by smaller |lag|.
    """
    validate_correlation_settings(peak_count, min_spacing)
    if len(records) < 2:
        raise InvalidConfig("at least two records are required to correlate.")
    delta = _common_delta(records)
    keys = _pair_keys(len(records), pairs)

    norms = [float(np.sqrt(np.sum(np.square(r.data)))) for r in records]
    measurements: dict[PairKey, PairwiseMeasurement] = {}
    for i, j in keys:
        measurements[(i, j)] = _measure_pair(
            records[i],
            records[j],
            norm=norms[i] * norms[j],
            delta=delta,
            pair=(i, j),
            peak_count=int(peak_count),
            min_spacing=float(min_spacing),
            use_absolute_coefficient=use_absolute_coefficient,
            refine=refine,
        )

    logger.info(
        "Correlated %d pairs of %d records (npeaks=%d, spacing=%g, absxc=%s)",
        len(measurements),
        len(records),
        peak_count,
        min_spacing,
        use_absolute_coefficient,
    )
    return PairwiseMeasurementSet(measurements, nrecords=len(records))


def validate_correlation_settings(peak_count: object, min_spacing: object) -> None:
    if (
        isinstance(peak_count, bool)
        or not isinstance(peak_count, (int, np.integer))
        or peak_count < 1
    ):
        raise InvalidConfig(f"peak_count must be an integer >= 1, got {peak_count!r}")
    if (
        isinstance(min_spacing, bool)
        or not isinstance(min_spacing, (int, float, np.integer, np.floating))
        or not np.isfinite(min_spacing)
        or min_spacing < 0
    ):
        raise InvalidConfig(
            f"min_spacing must be a non-negative real, got {min_spacing!r}"
        )


def _common_delta(records: RecordSet) -> float:
    delta = records[0].delta
    for rec in records:
        if not np.isclose(rec.delta, delta, rtol=1e-6, atol=0.0):
            raise InvalidConfig(
                "records must share a common sample interval "
                f"({rec.name or '?'}: {rec.delta} != {delta})"
            )
    return float(delta)


def _pair_keys(nrecords: int, pairs: Iterable[PairKey] | None) -> list[PairKey]:
    if pairs is None:
        return list(combinations(range(nrecords), 2))
    keys: set[PairKey] = set()
    for i, j in pairs:
        i, j = int(i), int(j)
        if i == j or not (0 <= i < nrecords and 0 <= j < nrecords):
            raise InvalidConfig(f"invalid record pair ({i}, {j})")
        keys.add((min(i, j), max(i, j)))
    return sorted(keys)


def _measure_pair(
    first: Record,
    second: Record,
    *,
    norm: float,
    delta: float,
    pair: PairKey,
    peak_count: int,
    min_spacing: float,
    use_absolute_coefficient: bool,
    refine: bool,
) -> PairwiseMeasurement:
    correlation = signal.correlate(second.data, first.data, mode="full", method="fft")
    lags = signal.correlation_lags(second.npts, first.npts, mode="full")
    if norm > 0:
        correlation = correlation / norm
    else:
        correlation = np.zeros_like(correlation)
    target = np.abs(correlation) if use_absolute_coefficient else correlation

    peaks, _ = signal.find_peaks(target)
    if not use_absolute_coefficient:
        peaks = peaks[correlation[peaks] > COEFFICIENT_EPS]
    if peaks.size == 0:
        peaks = np.array([int(np.argmax(target))])

    offsets = _parabolic_offsets(target, peaks) if refine else np.zeros(peaks.size)
    lag_times = (lags[peaks] + offsets) * delta + (second.begin - first.begin)

    # magnitude first (equal up to round-off), then smaller |lag|
    magnitude = np.round(target[peaks], 9)
    order = np.lexsort((np.abs(lag_times), -magnitude))
    kept: list[int] = []
    for idx in order:
        if len(kept) == peak_count:
            break
        if all(abs(lag_times[idx] - lag_times[k]) >= min_spacing for k in kept):
            kept.append(int(idx))

    candidates = tuple(
        Candidate(
            lag=float(lag_times[k]),
            coefficient=float(correlation[peaks[k]]),
            polarity=-1 if correlation[peaks[k]] < 0 else 1,
        )
        for k in kept
    )
    return PairwiseMeasurement(
        pair=pair,
        candidates=candidates,
        positive_only=not use_absolute_coefficient,
    )


def _parabolic_offsets(
    values: npt.NDArray[np.float64], peaks: npt.NDArray[np.intp]
) -> npt.NDArray[np.float64]:
    offsets = np.zeros(peaks.size, dtype=np.float64)
    inner = (peaks > 0) & (peaks < values.size - 1)
    if not np.any(inner):
        return offsets
    idx = peaks[inner]
    y0 = values[idx - 1]
    y1 = values[idx]
    y2 = values[idx + 1]
    denom = 2 * (y0 - 2 * y1 + y2)
    safe = np.where(denom != 0, denom, 1.0)
    refined = np.where(denom != 0, (y0 - y2) / safe, 0.0)
    offsets[inner] = np.clip(refined, -0.5, 0.5)
    return offsets
