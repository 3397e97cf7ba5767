"""Minimal-radius population queries over administrative regions."""

__version__ = "0.1.0"
