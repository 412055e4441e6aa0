from __future__ import annotations

import heapq
import logging
import warnings
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Literal

import numpy as np
import numpy.typing as npt
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from record_alignment.alignment.correlation import (
    COEFFICIENT_EPS,
    PairKey,
    PairwiseMeasurementSet,
)
from record_alignment.errors import (
    InconsistentPolarity,
    InvalidConfig,
    UnderdeterminedSystem,
)

logger = logging.getLogger(__name__)

NDArray = npt.NDArray[np.float64]
Weighting = Literal["coefficient", "uniform"]

DEFAULT_MIN_COEFFICIENT = 0.3

_OPTION_ALIASES = {
    "mincoefficient": "min_coefficient",
    "snr": "snr",
    "maxiterations": "max_iterations",
    "weighting": "weighting",
}


@dataclass(frozen=True)
class SolverOptions:
    """Options of the network solve.

    ``min_coefficient`` drops candidates whose |coefficient| is smaller; the
    default keeps chance-level correlations between unrelated records from
    joining them into one cluster.
    ``snr`` gives per-record weights; a pair is weighted by the product of
    its records' values on top of the coefficient weighting.
    """

    min_coefficient: float = DEFAULT_MIN_COEFFICIENT
    snr: tuple[float, ...] | None = None
    max_iterations: int = 20
    weighting: Weighting = "coefficient"

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_coefficient <= 1.0:
            raise InvalidConfig("minCoefficient must be within [0, 1].")
        if self.max_iterations < 1:
            raise InvalidConfig("maxIterations must be an integer >= 1.")
        if self.weighting not in ("coefficient", "uniform"):
            raise InvalidConfig("weighting must be 'coefficient' or 'uniform'.")
        if self.snr is not None and any(
            not np.isfinite(v) or v <= 0 for v in self.snr
        ):
            raise InvalidConfig("snr values must be positive and finite.")

    @classmethod
    def from_mapping(cls, options: Mapping[str, object] | None) -> SolverOptions:
        """Build options from camelCase or snake_case keys."""
        if not options:
            return cls()
        kwargs: dict[str, object] = {}
        for key, value in options.items():
            if not isinstance(key, str):
                raise InvalidConfig(f"solver option names must be strings: {key!r}")
            name = _OPTION_ALIASES.get(key.replace("_", "").lower())
            if name is None:
                raise InvalidConfig(f"unknown solver option: {key}")
            kwargs[name] = _coerce(name, value)
        return cls(**kwargs)  # type: ignore[arg-type]

    def as_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["snr"] = list(self.snr) if self.snr is not None else None
        return payload


def _coerce(name: str, value: object) -> object:
    try:
        if name == "min_coefficient":
            if isinstance(value, bool):
                raise TypeError
            return float(value)  # type: ignore[arg-type]
        if name == "max_iterations":
            if isinstance(value, bool) or int(value) != value:  # type: ignore[call-overload]
                raise TypeError
            return int(value)  # type: ignore[call-overload]
        if name == "snr":
            if value is None:
                return None
            return tuple(float(v) for v in np.ravel(np.asarray(value, dtype=np.float64)))
    except (TypeError, ValueError) as exc:
        raise InvalidConfig(f"invalid value for {name}: {value!r}") from exc
    return value


@dataclass(frozen=True, eq=False)
class Solution:
    arrivals: NDArray
    errors: NDArray
    polarities: npt.NDArray[np.int64]
    mean: float
    std: float
    cluster_count: int
    clusters: npt.NDArray[np.int64]
    selected: Mapping[PairKey, int]
    measurements: PairwiseMeasurementSet
    polarity_conflicts: int
    iterations: int
    warnings: tuple[str, ...] = ()

    @property
    def polarity_consistent(self) -> bool:
        return self.polarity_conflicts == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "arrivals": self.arrivals.tolist(),
            "errors": [None if np.isnan(e) else float(e) for e in self.errors],
            "polarities": self.polarities.tolist(),
            "mean": self.mean,
            "std": self.std,
            "cluster_count": self.cluster_count,
            "clusters": self.clusters.tolist(),
            "polarity_conflicts": self.polarity_conflicts,
            "iterations": self.iterations,
            "warnings": list(self.warnings),
        }


def solve(
    measurements: PairwiseMeasurementSet,
    options: SolverOptions | Mapping[str, object] | None = None,
) -> Solution:
    """Reconcile pairwise lag candidates into one set of arrival corrections.

    Each pair contributes the candidate most consistent with the rest of
    the network: starting from the strongest peak per pair, polarity is
    resolved over the whole network, the weighted difference system is
    solved by least squares (zero mean per cluster), and every pair then
    re-picks the sign-compatible candidate closest to the fitted
    difference. This repeats until the selection settles.

    Raises :class:`UnderdeterminedSystem` when no pair connects two records.
    """
    if isinstance(options, SolverOptions):
        opts = options
    else:
        opts = SolverOptions.from_mapping(options)
    nrecords = measurements.nrecords
    if opts.snr is not None and len(opts.snr) != nrecords:
        raise InvalidConfig(
            f"snr must have one value per record ({len(opts.snr)} != {nrecords})"
        )

    usable: dict[PairKey, list[int]] = {}
    for key, meas in measurements.items():
        keep = [
            k
            for k, cand in enumerate(meas.candidates)
            if abs(cand.coefficient) > COEFFICIENT_EPS
            and abs(cand.coefficient) >= opts.min_coefficient
        ]
        if keep:
            usable[key] = keep
    if not usable:
        raise UnderdeterminedSystem(
            "fewer than two records are connected by a usable measurement."
        )

    edges = sorted(usable)
    labels = _cluster_labels(nrecords, edges)
    cluster_count = int(labels.max()) + 1 if nrecords else 0
    record_weight = (
        np.asarray(opts.snr, dtype=np.float64)
        if opts.snr is not None
        else np.ones(nrecords, dtype=np.float64)
    )

    selected = {key: usable[key][0] for key in edges}
    iterations = 0
    while True:
        iterations += 1
        lags, signs, weights = _edge_arrays(
            measurements, edges, selected, opts.weighting, record_weight
        )
        polarities, conflicts = _resolve_polarity(nrecords, labels, edges, signs, weights)
        arrivals = _least_squares(nrecords, labels, edges, lags, weights)
        if iterations >= opts.max_iterations:
            break
        reselected = _reselect(measurements, usable, arrivals, polarities)
        if reselected == selected:
            break
        selected = reselected

    errors = _record_errors(nrecords, edges, lags, weights, arrivals)
    notes: list[str] = []
    if conflicts:
        msg = f"{conflicts} pair(s) disagree with the resolved record polarities."
        warnings.warn(msg, InconsistentPolarity, stacklevel=2)
        logger.warning(msg)
        notes.append(f"InconsistentPolarity: {msg}")
    if cluster_count > 1:
        msg = f"records split into {cluster_count} disconnected clusters."
        logger.warning(msg)
        notes.append(msg)

    reordered = PairwiseMeasurementSet(
        {
            key: meas.reordered(selected[key]) if key in selected else meas
            for key, meas in measurements.items()
        },
        nrecords=nrecords,
    )
    logger.info(
        "Solved %d records from %d pairs in %d iteration(s): std=%.4g, clusters=%d",
        nrecords,
        len(edges),
        iterations,
        float(np.std(arrivals)),
        cluster_count,
    )
    return Solution(
        arrivals=arrivals,
        errors=errors,
        polarities=polarities,
        mean=float(np.mean(arrivals)),
        std=float(np.std(arrivals)),
        cluster_count=cluster_count,
        clusters=labels,
        selected=dict(selected),
        measurements=reordered,
        polarity_conflicts=conflicts,
        iterations=iterations,
        warnings=tuple(notes),
    )


def _cluster_labels(nrecords: int, edges: Sequence[PairKey]) -> npt.NDArray[np.int64]:
    rows = np.array([i for i, _ in edges], dtype=np.int64)
    cols = np.array([j for _, j in edges], dtype=np.int64)
    graph = coo_matrix(
        (np.ones(len(edges)), (rows, cols)), shape=(nrecords, nrecords)
    )
    _, raw = connected_components(graph, directed=False)
    # relabel in order of first appearance so record 0 is always cluster 0
    mapping: dict[int, int] = {}
    labels = np.empty(nrecords, dtype=np.int64)
    for idx, label in enumerate(raw):
        labels[idx] = mapping.setdefault(int(label), len(mapping))
    return labels


def _edge_arrays(
    measurements: PairwiseMeasurementSet,
    edges: Sequence[PairKey],
    selected: Mapping[PairKey, int],
    weighting: Weighting,
    record_weight: NDArray,
) -> tuple[NDArray, npt.NDArray[np.int64], NDArray]:
    lags = np.empty(len(edges), dtype=np.float64)
    signs = np.empty(len(edges), dtype=np.int64)
    weights = np.empty(len(edges), dtype=np.float64)
    for e, key in enumerate(edges):
        cand = measurements[key].candidates[selected[key]]
        lags[e] = cand.lag
        signs[e] = cand.polarity
        base = cand.coefficient**2 if weighting == "coefficient" else 1.0
        weights[e] = base * record_weight[key[0]] * record_weight[key[1]]
    return lags, signs, weights


def _resolve_polarity(
    nrecords: int,
    labels: npt.NDArray[np.int64],
    edges: Sequence[PairKey],
    signs: npt.NDArray[np.int64],
    weights: NDArray,
) -> tuple[npt.NDArray[np.int64], int]:
    adjacency: list[list[tuple[int, int]]] = [[] for _ in range(nrecords)]
    for e, (i, j) in enumerate(edges):
        adjacency[i].append((e, j))
        adjacency[j].append((e, i))

    # strongest-edge spanning tree per cluster
    polarities = np.zeros(nrecords, dtype=np.int64)
    for root in range(nrecords):
        if polarities[root] != 0:
            continue
        polarities[root] = 1
        heap = [(-weights[e], e, root, other) for e, other in adjacency[root]]
        heapq.heapify(heap)
        while heap:
            _, e, src, dst = heapq.heappop(heap)
            if polarities[dst] != 0:
                continue
            polarities[dst] = polarities[src] * signs[e]
            for e2, other in adjacency[dst]:
                if polarities[other] == 0:
                    heapq.heappush(heap, (-weights[e2], e2, dst, other))

    # weighted majority refinement; every flip lowers the conflict weight
    for _ in range(nrecords):
        changed = False
        for k in range(nrecords):
            vote = sum(weights[e] * signs[e] * polarities[o] for e, o in adjacency[k])
            if vote * polarities[k] < 0:
                polarities[k] = -polarities[k]
                changed = True
        if not changed:
            break

    # first record of each cluster is the sign reference
    for cluster in range(int(labels.max()) + 1 if nrecords else 0):
        members = np.flatnonzero(labels == cluster)
        if polarities[members[0]] < 0:
            polarities[members] *= -1

    conflicts = sum(
        1
        for e, (i, j) in enumerate(edges)
        if polarities[i] * polarities[j] != signs[e]
    )
    return polarities, int(conflicts)


def _least_squares(
    nrecords: int,
    labels: npt.NDArray[np.int64],
    edges: Sequence[PairKey],
    lags: NDArray,
    weights: NDArray,
) -> NDArray:
    arrivals = np.zeros(nrecords, dtype=np.float64)
    edge_cluster = np.array([labels[i] for i, _ in edges], dtype=np.int64)
    for cluster in range(int(labels.max()) + 1):
        members = np.flatnonzero(labels == cluster)
        if members.size < 2:
            continue
        column = {int(m): c for c, m in enumerate(members)}
        rows = np.flatnonzero(edge_cluster == cluster)
        design = np.zeros((rows.size, members.size), dtype=np.float64)
        for r, e in enumerate(rows):
            i, j = edges[e]
            design[r, column[i]] = -1.0
            design[r, column[j]] = 1.0
        sqrt_w = np.sqrt(weights[rows])
        solution, *_ = np.linalg.lstsq(
            design * sqrt_w[:, None], lags[rows] * sqrt_w, rcond=None
        )
        # a uniform shift is unobservable: pin the cluster mean to zero
        arrivals[members] = solution - np.mean(solution)
    return arrivals


def _reselect(
    measurements: PairwiseMeasurementSet,
    usable: Mapping[PairKey, list[int]],
    arrivals: NDArray,
    polarities: npt.NDArray[np.int64],
) -> dict[PairKey, int]:
    selected: dict[PairKey, int] = {}
    for key, indices in usable.items():
        i, j = key
        candidates = measurements[key].candidates
        predicted = arrivals[j] - arrivals[i]
        wanted = polarities[i] * polarities[j]
        agreeing = [k for k in indices if candidates[k].polarity == wanted] or indices
        selected[key] = min(
            agreeing,
            key=lambda k: (
                abs(candidates[k].lag - predicted),
                -abs(candidates[k].coefficient),
                k,
            ),
        )
    return dict(sorted(selected.items()))


def _record_errors(
    nrecords: int,
    edges: Sequence[PairKey],
    lags: NDArray,
    weights: NDArray,
    arrivals: NDArray,
) -> NDArray:
    weighted_sq = np.zeros(nrecords, dtype=np.float64)
    weight_sum = np.zeros(nrecords, dtype=np.float64)
    for e, (i, j) in enumerate(edges):
        residual = lags[e] - (arrivals[j] - arrivals[i])
        for k in (i, j):
            weighted_sq[k] += weights[e] * residual**2
            weight_sum[k] += weights[e]
    errors = np.full(nrecords, np.nan, dtype=np.float64)
    connected = weight_sum > 0
    errors[connected] = np.sqrt(weighted_sq[connected] / weight_sum[connected])
    return errors
