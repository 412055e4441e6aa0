from __future__ import annotations

from pathlib import Path

import click

from record_alignment.cli.options import (
    alignment_options,
    load_records,
    merge_options,
    write_json,
)
from record_alignment.errors import AlignmentError, UserAborted
from record_alignment.io import save_record_set
from record_alignment.session.controller import user_align
from record_alignment.session.prompts import ClickPrompter
from record_alignment.visualization import RecordSectionViewer


@click.command(name="align")
@alignment_options
@click.option(
    "--plot-dir",
    type=click.Path(file_okay=False),
    help="レビュー用レコードセクション(PNG)の出力ディレクトリ",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    help="アライメント後のレコード(WAV)出力ディレクトリ（未指定なら出力しない）",
)
def align(
    files: tuple[str, ...],
    peak_count: int | None,
    min_spacing: float | None,
    abs_xc: bool | None,
    min_coefficient: float | None,
    distances: str | None,
    options_file: str | None,
    output_json: str,
    plot_dir: str | None,
    output_dir: str | None,
) -> None:
    """対話メニューで前処理・相関設定を選び、レコードをアライメントする。"""
    records = load_records(files, distances)
    options = merge_options(
        options_file=options_file,
        peak_count=peak_count,
        min_spacing=min_spacing,
        abs_xc=abs_xc,
        min_coefficient=min_coefficient,
    )
    viewer = RecordSectionViewer(Path(plot_dir) if plot_dir else None)

    try:
        result = user_align(
            records, options, prompter=ClickPrompter(), viewer=viewer
        )
    except UserAborted as exc:
        raise click.ClickException(str(exc)) from exc
    except (AlignmentError, ValueError) as exc:
        raise click.ClickException(f"Alignment failed: {exc}") from exc

    assert result.solution is not None and result.audit is not None
    payload = {
        "records": records.names,
        "solution": result.solution.to_dict(),
        "audit": result.audit.to_dict(),
        "measurements": result.measurements.to_dict()
        if result.measurements is not None
        else None,
    }
    out_path = write_json(payload, output_json)
    click.echo(f"JSONを書き出しました: {out_path}")

    if output_dir and result.records is not None:
        written = save_record_set(result.records, output_dir)
        click.echo(f"Aligned WAVを書き出しました: {len(written)} files -> {output_dir}")
    for path in viewer.saved:
        click.echo(f"Plot: {path}")
