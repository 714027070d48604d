"""Gameshelf - Self-hosted game library manager."""

__version__ = "0.1.0"
