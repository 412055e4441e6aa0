"""Record file I/O."""

from .records import load_record_set, save_record_set, with_distances

__all__ = [
    "load_record_set",
    "save_record_set",
    "with_distances",
]
