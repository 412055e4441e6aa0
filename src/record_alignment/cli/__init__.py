"""CLI entry point for record-alignment."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from record_alignment import __version__
from record_alignment.cli.align import align
from record_alignment.cli.solve import solve

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.version_option(__version__)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="ログレベル",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    help="ログファイルの出力パス（未指定ならコンソールのみ）",
)
def main(log_level: str, log_file: str | None) -> None:
    """Record Alignment - 相互相関とネットワーク解による波形アライメント."""
    _setup_logging(log_level, log_file)


def _setup_logging(log_level: str, log_file: str | None) -> None:
    level = getattr(logging, log_level.upper(), logging.WARNING)
    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


main.add_command(align)
main.add_command(solve)


if __name__ == "__main__":
    main()
