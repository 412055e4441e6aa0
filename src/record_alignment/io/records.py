from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path

import numpy as np
import soundfile as sf

from record_alignment.records import Record, RecordSet

logger = logging.getLogger(__name__)


def load_record_set(
    paths: Iterable[str | Path], *, channel: int = 0
) -> RecordSet:
    """Read one record per WAV file (``delta = 1 / samplerate``)."""
    records = []
    for path in map(Path, paths):
        data, sample_rate = sf.read(path, always_2d=True)
        if not 0 <= channel < data.shape[1]:
            raise ValueError(
                f"{path.name}: channel {channel} not in [0, {data.shape[1] - 1}]"
            )
        if data.shape[1] > 1:
            logger.debug("%s: %d channels, using channel %d", path, data.shape[1], channel)
        records.append(
            Record(
                data=np.asarray(data[:, channel], dtype=np.float64),
                delta=1.0 / float(sample_rate),
                name=path.stem,
            )
        )
    if not records:
        raise ValueError("no record files given.")
    logger.info("Loaded %d records", len(records))
    return RecordSet(records)


def save_record_set(records: RecordSet, directory: str | Path) -> list[Path]:
    """Write each record as a float WAV named after the record.

    Begin times are not representable in WAV; records are written from
    their first sample.
    """
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for idx, rec in enumerate(records):
        sample_rate = int(round(1.0 / rec.delta))
        path = out_dir / f"{rec.name or f'record_{idx:03d}'}.wav"
        sf.write(path, rec.data, samplerate=sample_rate, subtype="FLOAT")
        written.append(path)
    return written


def with_distances(records: RecordSet, distances: Iterable[float]) -> RecordSet:
    values = [float(d) for d in distances]
    if len(values) != len(records):
        raise ValueError("one distance per record is required.")
    return RecordSet(replace(r, distance=d) for r, d in zip(records, values, strict=True))
