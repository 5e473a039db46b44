"""Incremental rolling-period return synchronization for Avanza funds."""

__version__ = "1.0.0"
