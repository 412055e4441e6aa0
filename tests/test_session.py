from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from numpy.testing import assert_allclose

from record_alignment.alignment import PairwiseMeasurementSet, Solution, solve
from record_alignment.errors import InvalidOption, UserAborted
from record_alignment.preprocess import StageConfig
from record_alignment.records import RecordSet
from record_alignment.session import CheckState
from record_alignment.session.controller import (
    SessionController,
    SessionState,
    user_align,
)
from record_alignment.testing import (
    ABORT_CORRELATION,
    ABORT_REVIEW,
    ACCEPT,
    CORRELATE,
    KEEP_ALL_STAGES,
    REDO,
    ScriptedPrompter,
    shifted_records,
)
from record_alignment.visualization import RecordSectionViewer

ONE_CYCLE = (*KEEP_ALL_STAGES, CORRELATE)


class _SolverSpy:
    def __init__(self) -> None:
        self.solutions: list[Solution] = []

    def __call__(self, measurements, options=None) -> Solution:  # type: ignore[no-untyped-def]
        solution = solve(measurements, options)
        self.solutions.append(solution)
        return solution


class _FailingStage:
    def __call__(self, records, prior, *, prompter, checks):  # type: ignore[no-untyped-def]
        raise RuntimeError("stage exploded")


class _RecordingStage:
    def __init__(self) -> None:
        self.calls = 0
        self.seen_checks: list[dict[str, bool]] = []

    def __call__(self, records, prior, *, prompter, checks):  # type: ignore[no-untyped-def]
        self.calls += 1
        self.seen_checks.append(checks.snapshot())
        return records, StageConfig(stage="noop")


def test_accept_first_cycle_returns_solution_and_audit() -> None:
    records = shifted_records([0.0, 2.0, 5.0])
    checks = CheckState()
    prompter = ScriptedPrompter([*ONE_CYCLE, ACCEPT])

    result = user_align(records, "peakCount", 1, prompter=prompter, checks=checks)

    assert result.accepted
    assert result.cycles == 1
    assert prompter.remaining == 0
    solution = result.solution
    assert solution is not None
    assert_allclose(solution.arrivals[1] - solution.arrivals[0], 2.0, atol=1e-6)
    assert_allclose(solution.arrivals[2] - solution.arrivals[1], 3.0, atol=1e-6)
    assert solution.cluster_count == 1

    audit = result.audit
    assert audit is not None
    assert [c.stage for c in audit.stages] == ["moveout", "window", "taper", "raise"]
    assert audit.correlation["peak_count"] == 1
    assert audit.solver["max_iterations"] == 20
    assert set(audit.to_dict()) >= {
        "moveout", "window", "taper", "raise", "correlate", "solve"
    }

    assert result.measurements is solution.measurements
    assert result.records is not None
    assert_allclose(result.records[2].begin, -solution.arrivals[2])
    assert checks == CheckState()


def test_checks_are_disabled_only_while_running() -> None:
    checks = CheckState(structure_checks=True, header_checks=False)
    before = checks.snapshot()
    stage = _RecordingStage()
    prompter = ScriptedPrompter([CORRELATE, ACCEPT])

    SessionController(
        shifted_records([0.0, 1.0]), prompter=prompter, checks=checks, stages=[stage]
    ).run()

    assert stage.seen_checks == [{"structure_checks": False, "header_checks": False}]
    assert checks.snapshot() == before


def test_redo_reproduces_identical_solution() -> None:
    records = shifted_records([0.0, 0.6, 1.7, 2.1], noise=0.05, seed=5)
    checks = CheckState()
    spy = _SolverSpy()
    prompter = ScriptedPrompter([*ONE_CYCLE, REDO, *ONE_CYCLE, ACCEPT])

    result = SessionController(
        records,
        {"minSpacing": 0.5},
        prompter=prompter,
        checks=checks,
        solver=spy,
    ).run()

    assert result.accepted
    assert result.cycles == 2
    assert result.audit is not None and result.audit.cycle == 2
    first, second = spy.solutions
    assert np.array_equal(first.arrivals, second.arrivals)
    assert np.array_equal(first.polarities, second.polarities)
    assert np.array_equal(first.errors, second.errors, equal_nan=True)
    assert result.solution is second
    assert checks == CheckState()


def test_redo_offers_previous_stage_choice_as_current() -> None:
    records = shifted_records([0.0, 1.0])
    # cycle 1: taper "NONE"; cycle 2: keep whatever is current
    prompter = ScriptedPrompter(
        [0, 0, 1, 0, CORRELATE, REDO, *KEEP_ALL_STAGES, CORRELATE, ACCEPT]
    )
    result = user_align(records, prompter=prompter)

    assert result.audit is not None
    assert result.audit.stage("taper").as_dict() == {"stage": "taper", "width": 0.0}
    taper_menus = [
        opts for _, title, opts in prompter.transcript if title == "TAPER RECORDS?"
    ]
    assert taper_menus[1][0] == "CURRENT (0%)"


def test_abort_at_review_restores_checks() -> None:
    checks = CheckState()
    prompter = ScriptedPrompter([*ONE_CYCLE, ABORT_REVIEW])

    result = SessionController(
        shifted_records([0.0, 1.0]), prompter=prompter, checks=checks
    ).run()

    assert result.status == "aborted"
    assert result.aborted_in is SessionState.REVIEWING
    assert result.solution is None
    assert checks == CheckState()
    with pytest.raises(UserAborted):
        result.raise_for_abort()


def test_user_align_raises_on_abort_at_correlation_menu() -> None:
    checks = CheckState()
    prompter = ScriptedPrompter([*KEEP_ALL_STAGES, ABORT_CORRELATION])

    with pytest.raises(UserAborted, match="configuring_correlation"):
        user_align(shifted_records([0.0, 1.0]), prompter=prompter, checks=checks)

    assert "KEEP THIS ALIGNMENT?" not in prompter.titles()
    assert checks == CheckState()


def test_invalid_option_raises_before_any_stage() -> None:
    checks = CheckState()
    stage = _RecordingStage()
    prompter = ScriptedPrompter([])

    with pytest.raises(InvalidOption):
        SessionController(
            shifted_records([0.0, 1.0]),
            ("peakCount", 0),
            prompter=prompter,
            checks=checks,
            stages=[stage],
        ).run()

    assert stage.calls == 0
    assert prompter.transcript == []
    assert checks == CheckState()


def test_stage_failure_propagates_after_restoring_checks() -> None:
    checks = CheckState()
    controller = SessionController(
        shifted_records([0.0, 1.0]),
        prompter=ScriptedPrompter([]),
        checks=checks,
        stages=[_FailingStage()],
    )
    with pytest.raises(RuntimeError, match="stage exploded"):
        controller.run()
    assert checks == CheckState()


def test_correlation_menu_edits_and_invalid_custom_values() -> None:
    records = shifted_records([0.0, 1.0, 2.5])
    prompter = ScriptedPrompter(
        [
            *KEEP_ALL_STAGES,
            0, 6, "abc",  # custom peak count, not a number -> unchanged
            0, 6, "2.5",  # not an integer -> unchanged
            0, 2,  # preset "3"
            1, "-2",  # negative spacing -> unchanged
            1, "0.5",
            2, 1,  # polarities all match -> positive peaks only
            CORRELATE,
            ACCEPT,
        ]
    )
    result = user_align(records, prompter=prompter)

    assert result.audit is not None
    assert dict(result.audit.correlation) == {
        "peak_count": 3,
        "min_spacing": 0.5,
        "use_absolute_coefficient": False,
    }
    assert result.measurements is not None
    assert all(m.positive_only for m in result.measurements.values())
    menus = [
        opts
        for _, title, opts in prompter.transcript
        if title == "CHANGE CORRELATE SETTINGS?"
    ]
    assert menus[1][0] == "NUMBER OF PEAKS (5)"
    assert menus[-1][:3] == (
        "NUMBER OF PEAKS (3)",
        "PEAK SPACING (0.5s)",
        "ALL POLARITIES ARE MATCHED (YES)",
    )


def test_failed_solve_only_offers_redo_or_abort() -> None:
    def empty_correlator(records: RecordSet, **_: object) -> PairwiseMeasurementSet:
        return PairwiseMeasurementSet({}, nrecords=len(records))

    checks = CheckState()
    prompter = ScriptedPrompter([*ONE_CYCLE, 1])
    result = SessionController(
        shifted_records([0.0, 1.0]),
        prompter=prompter,
        checks=checks,
        correlator=empty_correlator,
    ).run()

    kind, title, options = prompter.transcript[-1]
    assert options == ("NO - TRY AGAIN", "NO - ABORT")
    assert result.status == "aborted"
    assert any("Solve failed" in m for m in prompter.messages)
    assert checks == CheckState()


def test_dismissed_review_menu_is_asked_again() -> None:
    prompter = ScriptedPrompter([*ONE_CYCLE, None, ACCEPT])
    result = user_align(shifted_records([0.0, 1.0]), prompter=prompter)
    assert result.accepted
    assert prompter.titles().count("KEEP THIS ALIGNMENT?") == 2


def test_inverted_record_is_flipped_in_output() -> None:
    records = shifted_records([0.0, 1.0, 2.0], polarities=[1, -1, 1])
    prompter = ScriptedPrompter([*ONE_CYCLE, ACCEPT])
    result = user_align(records, {"peakCount": 1}, prompter=prompter)

    assert result.solution is not None
    assert result.solution.polarities.tolist() == [1, -1, 1]
    assert result.records is not None
    for rec in result.records:
        assert np.max(rec.data) > abs(np.min(rec.data))


def test_viewer_plots_are_closed_on_redo_and_exit(tmp_path: Path) -> None:
    viewer = RecordSectionViewer(tmp_path / "plots")
    prompter = ScriptedPrompter([*ONE_CYCLE, REDO, *ONE_CYCLE, ACCEPT])

    user_align(shifted_records([0.0, 1.0]), prompter=prompter, viewer=viewer)

    assert [p.name for p in viewer.saved] == ["alignment_01.png", "alignment_02.png"]
    assert all(p.exists() for p in viewer.saved)
    assert viewer.figures == []
