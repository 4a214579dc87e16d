"""User interaction helpers."""

from .progress import IngestProgress

__all__ = ["IngestProgress"]
