"""Consolidate drifting customs/freight declaration exports into one table."""

__version__ = "0.3.0"
