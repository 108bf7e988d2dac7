"""Radar: content connectors that pull and normalize items from external providers."""

__version__ = "0.1.0"
