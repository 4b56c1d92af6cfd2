"""NOOS planner: style classification into Core / Bestseller / Fashion buckets."""

__version__ = "1.0.0"
