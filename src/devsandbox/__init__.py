"""Isolated per-instance development sandboxes."""

__version__ = "0.1.0"
