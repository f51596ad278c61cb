"""Synthetic e-commerce event ingest service."""

__version__ = "0.1.0"
