"""Statistical relationship and network analysis for market entities."""

__version__ = "0.1.0"
