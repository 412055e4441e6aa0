"""Interactive multi-record alignment by pairwise correlation and network solve."""

__version__ = "0.1.0"
