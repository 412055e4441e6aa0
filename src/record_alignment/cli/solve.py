from __future__ import annotations

import click

from record_alignment.alignment import correlate, solve as solve_network
from record_alignment.cli.options import (
    alignment_options,
    load_records,
    merge_options,
    write_json,
)
from record_alignment.errors import AlignmentError
from record_alignment.records import apply_solution
from record_alignment.session.options import parse_options
from record_alignment.visualization import format_solution_table


@click.command(name="solve")
@alignment_options
def solve(
    files: tuple[str, ...],
    peak_count: int | None,
    min_spacing: float | None,
    abs_xc: bool | None,
    min_coefficient: float | None,
    distances: str | None,
    options_file: str | None,
    output_json: str,
) -> None:
    """前処理なしで相関とネットワーク解を一括実行する（非対話）。"""
    records = load_records(files, distances)
    options = merge_options(
        options_file=options_file,
        peak_count=peak_count,
        min_spacing=min_spacing,
        abs_xc=abs_xc,
        min_coefficient=min_coefficient,
    )
    try:
        config = parse_options(options)
        measurements = correlate(
            records,
            peak_count=config.peak_count,
            min_spacing=config.min_spacing,
            use_absolute_coefficient=config.use_absolute_coefficient,
        )
        solution = solve_network(measurements, config.solver_options)
    except AlignmentError as exc:
        raise click.ClickException(str(exc)) from exc

    aligned = apply_solution(
        records, arrivals=solution.arrivals, polarities=solution.polarities
    )
    click.echo(format_solution_table(aligned, solution))

    payload = {
        "records": records.names,
        "solution": solution.to_dict(),
        "correlate": config.correlation_settings(),
        "measurements": solution.measurements.to_dict(),
    }
    out_path = write_json(payload, output_json)
    click.echo(f"JSONを書き出しました: {out_path}")
