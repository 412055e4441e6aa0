from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, replace

import numpy as np
import numpy.typing as npt

NDArray = npt.NDArray[np.float64]


@dataclass(frozen=True, eq=False)
class Record:
    """One time series with the metadata the alignment needs."""

    data: NDArray
    delta: float
    begin: float = 0.0
    name: str = ""
    time_correction: float = 0.0
    distance: float | None = None

    @property
    def npts(self) -> int:
        return int(self.data.shape[0])

    @property
    def end(self) -> float:
        return self.begin + (self.npts - 1) * self.delta

    def times(self) -> NDArray:
        return self.begin + np.arange(self.npts, dtype=np.float64) * self.delta


class RecordSet(Sequence[Record]):
    """Ordered, immutable collection of records.

    Transforms go through :meth:`map`, which keeps record count, names and
    ordering intact.
    """

    def __init__(self, records: Iterable[Record]) -> None:
        self._records = tuple(
            replace(r, data=np.asarray(r.data, dtype=np.float64)) for r in records
        )

    def __getitem__(self, index):  # type: ignore[override]
        if isinstance(index, slice):
            return RecordSet(self._records[index])
        return self._records[index]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def __repr__(self) -> str:
        names = ", ".join(r.name or "?" for r in self._records)
        return f"RecordSet([{names}])"

    @property
    def names(self) -> list[str]:
        return [r.name for r in self._records]

    def map(self, func: Callable[[Record], Record]) -> RecordSet:
        """Apply ``func`` to every record, refusing identity changes."""
        out = [func(r) for r in self._records]
        for before, after in zip(self._records, out, strict=True):
            if after.name != before.name:
                raise ValueError(
                    f"stage renamed record {before.name!r} -> {after.name!r}"
                )
        return RecordSet(out)


def check_records(records: RecordSet) -> None:
    """Header/structure sanity checks on a record set."""
    if len(records) == 0:
        raise ValueError("record set is empty.")
    for idx, rec in enumerate(records):
        label = rec.name or f"#{idx}"
        if rec.data.ndim != 1:
            raise ValueError(f"{label}: data must be 1-D.")
        if rec.npts == 0:
            raise ValueError(f"{label}: no samples.")
        if not np.all(np.isfinite(rec.data)):
            raise ValueError(f"{label}: data contains NaN/inf.")
        if not rec.delta > 0:
            raise ValueError(f"{label}: delta must be positive.")


def apply_solution(
    records: RecordSet,
    *,
    arrivals: Sequence[float] | NDArray,
    polarities: Sequence[float] | NDArray,
) -> RecordSet:
    """Shift each record by ``-arrival`` and multiply by its polarity."""
    arr = np.asarray(arrivals, dtype=np.float64)
    pol = np.asarray(polarities, dtype=np.float64)
    if arr.shape != (len(records),) or pol.shape != (len(records),):
        raise ValueError("arrivals/polarities must have one entry per record.")

    shifted = []
    for rec, shift, sign in zip(records, arr, pol, strict=True):
        shifted.append(
            replace(
                rec,
                data=rec.data * sign,
                begin=rec.begin - float(shift),
                time_correction=rec.time_correction - float(shift),
            )
        )
    return RecordSet(shifted)
