from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import click
import yaml

from record_alignment.io import load_record_set, with_distances
from record_alignment.records import RecordSet


def alignment_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by the ``align`` and ``solve`` commands."""
    decorators = [
        click.argument(
            "files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False)
        ),
        click.option(
            "--peak-count",
            type=int,
            help="ペア毎に拾う相関ピーク数 (>=1, 既定 5)",
        ),
        click.option(
            "--min-spacing",
            type=float,
            help="ピーク間の最小間隔 (秒, 既定 10)",
        ),
        click.option(
            "--abs-xc/--no-abs-xc",
            default=None,
            help="負の相関ピークも候補にする（極性反転を許す）",
        ),
        click.option(
            "--min-coefficient",
            type=float,
            help="ネットワーク解で使う最小相関係数 (0-1, 既定 0.3)",
        ),
        click.option(
            "--distances",
            help="moveout 用の距離（カンマ区切り、ファイル順）",
        ),
        click.option(
            "--options-file",
            type=click.Path(exists=True, dir_okay=False),
            help="オプションを記述した YAML（CLI 指定が優先）",
        ),
        click.option(
            "--output-json",
            type=click.Path(dir_okay=False),
            default="alignment.json",
            show_default=True,
            help="結果(JSON)の出力パス",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def load_records(files: Sequence[str], distances: str | None) -> RecordSet:
    records = load_record_set(files)
    if distances:
        try:
            values = [float(v) for v in distances.split(",")]
        except ValueError as exc:
            raise click.BadParameter(
                "distances はカンマ区切りの数値で指定してください。",
                param_hint="--distances",
            ) from exc
        try:
            records = with_distances(records, values)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--distances") from exc
    return records


def merge_options(
    *,
    options_file: str | None,
    peak_count: int | None,
    min_spacing: float | None,
    abs_xc: bool | None,
    min_coefficient: float | None,
) -> dict[str, object]:
    """Merge YAML options with explicit CLI flags (flags win)."""
    merged: dict[str, object] = {}
    if options_file:
        loaded = yaml.safe_load(Path(options_file).read_text()) or {}
        if not isinstance(loaded, dict):
            raise click.BadParameter(
                "options file must contain a mapping.", param_hint="--options-file"
            )
        merged.update({str(k): v for k, v in loaded.items()})
    overrides = {
        "peakCount": peak_count,
        "minSpacing": min_spacing,
        "useAbsoluteCoefficient": abs_xc,
        "minCoefficient": min_coefficient,
    }
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return merged


def write_json(payload: dict[str, object], path: str) -> Path:
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2))
    return out_path
