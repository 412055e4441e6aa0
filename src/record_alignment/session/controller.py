"""Interactive alignment session.

The session is a small state machine::

    CONFIGURING -> PREPROCESSING -> CONFIGURING_CORRELATION -> CORRELATING
        -> SOLVING -> REVIEWING -> ACCEPTED | PREPROCESSING (redo) | ABORTED

All user interaction goes through a :class:`Prompter`, so a scripted
prompter drives the whole session in tests. Validation toggles in the
session's :class:`CheckState` are disabled for the run and restored on
every exit path by a :class:`StateGuard`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Literal

from record_alignment.alignment.correlation import PairwiseMeasurementSet, correlate
from record_alignment.alignment.solver import Solution, SolverOptions, solve
from record_alignment.errors import UnderdeterminedSystem, UserAborted
from record_alignment.preprocess.stages import DEFAULT_STAGES, Stage, StageConfig
from record_alignment.records import RecordSet, apply_solution, check_records
from record_alignment.session.guard import CheckState, StateGuard
from record_alignment.session.options import SessionConfig, parse_options
from record_alignment.session.prompts import ClickPrompter, Prompter, ask_number
from record_alignment.visualization import Viewer, format_solution_table

logger = logging.getLogger(__name__)

PEAK_COUNT_PRESETS = (1, 3, 5, 7, 9)


class SessionState(Enum):
    CONFIGURING = "configuring"
    PREPROCESSING = "preprocessing"
    CONFIGURING_CORRELATION = "configuring_correlation"
    CORRELATING = "correlating"
    SOLVING = "solving"
    REVIEWING = "reviewing"
    ACCEPTED = "accepted"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({SessionState.ACCEPTED, SessionState.ABORTED})


@dataclass(frozen=True)
class AuditTrail:
    """Options used by each step of the accepted cycle."""

    cycle: int
    stages: tuple[StageConfig, ...]
    correlation: Mapping[str, object]
    solver: Mapping[str, object]

    def stage(self, name: str) -> StageConfig:
        for config in self.stages:
            if config.stage == name:
                return config
        raise KeyError(name)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"cycle": self.cycle}
        for config in self.stages:
            payload[config.stage] = config.as_dict()
        payload["correlate"] = dict(self.correlation)
        payload["solve"] = dict(self.solver)
        return payload


@dataclass(frozen=True, eq=False)
class SessionResult:
    status: Literal["accepted", "aborted"]
    cycles: int
    solution: Solution | None = None
    audit: AuditTrail | None = None
    measurements: PairwiseMeasurementSet | None = None
    records: RecordSet | None = None
    aborted_in: SessionState | None = None

    @property
    def accepted(self) -> bool:
        return self.status == "accepted"

    def raise_for_abort(self) -> None:
        if self.status == "aborted":
            where = self.aborted_in.value if self.aborted_in else "session"
            raise UserAborted(f"User aborted the alignment ({where}).")


@dataclass
class _Cycle:
    """Mutable scratch state of one preprocessing-to-review pass."""

    number: int
    stage_configs: list[StageConfig] = field(default_factory=list)
    records: RecordSet | None = None
    measurements: PairwiseMeasurementSet | None = None
    solution: Solution | None = None
    solve_error: UnderdeterminedSystem | None = None


class SessionController:
    """Run the align/review loop until the user accepts or aborts."""

    def __init__(
        self,
        records: RecordSet,
        options: Sequence[object] | Mapping[str, object] | None = None,
        *,
        prompter: Prompter,
        viewer: Viewer | None = None,
        checks: CheckState | None = None,
        stages: Sequence[Stage] = DEFAULT_STAGES,
        correlator: Callable[..., PairwiseMeasurementSet] = correlate,
        solver: Callable[..., Solution] = solve,
    ) -> None:
        self.records = records if isinstance(records, RecordSet) else RecordSet(records)
        self.options = options
        self.prompter = prompter
        self.viewer = viewer
        self.checks = checks if checks is not None else CheckState()
        self.stages = tuple(stages)
        self.correlator = correlator
        self.solver = solver

        self.state = SessionState.CONFIGURING
        self.config = SessionConfig()
        self._priors: list[StageConfig | None] = [None] * len(self.stages)
        self._cycle = _Cycle(number=0)
        self._result: SessionResult | None = None
        self._handlers: dict[SessionState, Callable[[], SessionState]] = {
            SessionState.CONFIGURING: self._configure,
            SessionState.PREPROCESSING: self._preprocess,
            SessionState.CONFIGURING_CORRELATION: self._configure_correlation,
            SessionState.CORRELATING: self._correlate,
            SessionState.SOLVING: self._solve,
            SessionState.REVIEWING: self._review,
        }

    def run(self) -> SessionResult:
        if self.checks.header_checks:
            check_records(self.records)

        guard = StateGuard(self.checks)
        with guard:
            try:
                while self.state not in TERMINAL_STATES:
                    logger.debug("Session state: %s", self.state.value)
                    self.state = self._handlers[self.state]()
            finally:
                self._close_views()

        assert self._result is not None
        logger.info(
            "Session finished: %s after %d cycle(s)",
            self._result.status,
            self._result.cycles,
        )
        return self._result

    def _configure(self) -> SessionState:
        self.config = parse_options(self.options)
        # solver options are checked by the solver itself
        return SessionState.PREPROCESSING

    def _preprocess(self) -> SessionState:
        self._cycle = _Cycle(number=self._cycle.number + 1)
        records = self.records
        for idx, stage in enumerate(self.stages):
            records, config = stage(
                records, self._priors[idx], prompter=self.prompter, checks=self.checks
            )
            if len(records) != len(self.records):
                raise ValueError(
                    f"stage {config.stage!r} changed the number of records."
                )
            self._priors[idx] = config
            self._cycle.stage_configs.append(config)
            logger.info("Cycle %d %s: %s", self._cycle.number, config.stage, config)
        self._cycle.records = records
        return SessionState.CONFIGURING_CORRELATION

    def _configure_correlation(self) -> SessionState:
        while True:
            cfg = self.config
            matched = "NO" if cfg.use_absolute_coefficient else "YES"
            choice = self.prompter.choose(
                "CHANGE CORRELATE SETTINGS?",
                [
                    f"NUMBER OF PEAKS ({cfg.peak_count})",
                    f"PEAK SPACING ({cfg.min_spacing:g}s)",
                    f"ALL POLARITIES ARE MATCHED ({matched})",
                    "NO, GO AHEAD AND CORRELATE DATA",
                    "NO - ABORT",
                ],
            )
            if choice == 0:
                self._edit_peak_count()
            elif choice == 1:
                spacing = ask_number(
                    self.prompter,
                    "Minimum spacing between peaks (time units)?",
                    cfg.min_spacing,
                    minimum=0.0,
                )
                self.config = replace(cfg, min_spacing=float(spacing))
            elif choice == 2:
                sub = self.prompter.choose(
                    "DO THE POLARITIES ALL MATCH?", [f"CURRENT ({matched})", "YES", "NO"]
                )
                if sub == 1:
                    self.config = replace(cfg, use_absolute_coefficient=False)
                elif sub == 2:
                    self.config = replace(cfg, use_absolute_coefficient=True)
            elif choice == 3:
                return SessionState.CORRELATING
            elif choice == 4:
                return self._abort(SessionState.CONFIGURING_CORRELATION)

    def _edit_peak_count(self) -> None:
        current = self.config.peak_count
        sub = self.prompter.choose(
            "NUMBER OF PEAKS TO PICK",
            [f"CURRENT ({current})", *map(str, PEAK_COUNT_PRESETS), "CUSTOM"],
        )
        if sub is None or sub == 0:
            return
        if sub <= len(PEAK_COUNT_PRESETS):
            value = PEAK_COUNT_PRESETS[sub - 1]
        else:
            value = int(
                ask_number(
                    self.prompter,
                    "Number of peaks to pick?",
                    current,
                    integer=True,
                    minimum=1,
                )
            )
        self.config = replace(self.config, peak_count=value)

    def _correlate(self) -> SessionState:
        assert self._cycle.records is not None
        self._cycle.measurements = self.correlator(
            self._cycle.records,
            peak_count=self.config.peak_count,
            min_spacing=self.config.min_spacing,
            use_absolute_coefficient=self.config.use_absolute_coefficient,
        )
        return SessionState.SOLVING

    def _solve(self) -> SessionState:
        assert self._cycle.measurements is not None
        try:
            self._cycle.solution = self.solver(
                self._cycle.measurements, self.config.solver_options
            )
        except UnderdeterminedSystem as exc:
            logger.warning("Solve failed: %s", exc)
            self._cycle.solve_error = exc
        return SessionState.REVIEWING

    def _review(self) -> SessionState:
        cycle = self._cycle
        assert cycle.records is not None
        aligned: RecordSet | None = None
        if cycle.solution is not None:
            aligned = apply_solution(
                cycle.records,
                arrivals=cycle.solution.arrivals,
                polarities=cycle.solution.polarities,
            )
            self.prompter.show(format_solution_table(aligned, cycle.solution))
            if self.viewer is not None:
                self.viewer.show(aligned, cycle.solution)
            labels = ["YES", "NO - TRY AGAIN", "NO - ABORT"]
        else:
            self.prompter.show(f"Solve failed: {cycle.solve_error}")
            labels = ["NO - TRY AGAIN", "NO - ABORT"]

        title = "KEEP THIS ALIGNMENT?"
        if aligned is None:
            title = "SOLVE FAILED. TRY AGAIN?"
        while True:
            choice = self.prompter.choose(title, labels)
            if choice is None or not 0 <= choice < len(labels):
                continue
            action = labels[choice]
            if action == "YES":
                self._result = SessionResult(
                    status="accepted",
                    cycles=cycle.number,
                    solution=cycle.solution,
                    audit=self._audit(),
                    measurements=cycle.solution.measurements,  # type: ignore[union-attr]
                    records=aligned,
                )
                return SessionState.ACCEPTED
            if action == "NO - TRY AGAIN":
                logger.info("Redo requested after cycle %d", cycle.number)
                self._close_views()
                return SessionState.PREPROCESSING
            return self._abort(SessionState.REVIEWING)

    def _abort(self, where: SessionState) -> SessionState:
        logger.warning("User aborted the session in %s", where.value)
        self._result = SessionResult(
            status="aborted", cycles=self._cycle.number, aborted_in=where
        )
        return SessionState.ABORTED

    def _audit(self) -> AuditTrail:
        solver_payload = SolverOptions.from_mapping(self.config.solver_options).as_dict()
        return AuditTrail(
            cycle=self._cycle.number,
            stages=tuple(self._cycle.stage_configs),
            correlation=MappingProxyType(self.config.correlation_settings()),
            solver=MappingProxyType(solver_payload),
        )

    def _close_views(self) -> None:
        if self.viewer is not None:
            self.viewer.close_all()


def user_align(
    records: RecordSet,
    *options: object,
    prompter: Prompter | None = None,
    viewer: Viewer | None = None,
    checks: CheckState | None = None,
    stages: Sequence[Stage] = DEFAULT_STAGES,
) -> SessionResult:
    """Run an interactive alignment session and return the accepted result.

    ``options`` is a flat ``key, value, ...`` sequence or a single mapping.
    Raises :class:`UserAborted` if the user aborts.
    """
    if len(options) == 1 and isinstance(options[0], Mapping):
        parsed: Sequence[object] | Mapping[str, object] = options[0]
    else:
        parsed = options
    controller = SessionController(
        records,
        parsed,
        prompter=prompter if prompter is not None else ClickPrompter(),
        viewer=viewer,
        checks=checks,
        stages=stages,
    )
    result = controller.run()
    result.raise_for_abort()
    return result
