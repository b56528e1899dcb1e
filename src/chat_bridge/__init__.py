"""Unified chat backend bridge: one set of handlers across chat platforms."""

__version__ = "0.1.0"
