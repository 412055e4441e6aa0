"""Preprocessing stages applied before correlation."""

from record_alignment.preprocess.stages import (
    DEFAULT_STAGES,
    MoveoutConfig,
    RaiseConfig,
    Stage,
    StageConfig,
    TaperConfig,
    WindowConfig,
    apply_moveout,
    apply_raise,
    apply_taper,
    apply_window,
    moveout_stage,
    raise_stage,
    taper_stage,
    window_stage,
)

__all__ = [
    "DEFAULT_STAGES",
    "MoveoutConfig",
    "RaiseConfig",
    "Stage",
    "StageConfig",
    "TaperConfig",
    "WindowConfig",
    "apply_moveout",
    "apply_raise",
    "apply_taper",
    "apply_window",
    "moveout_stage",
    "raise_stage",
    "taper_stage",
    "window_stage",
]
