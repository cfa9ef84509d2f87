# utils/__init__.py
"""General utility functions for the Ontoloom pipeline."""

from __future__ import annotations

import hashlib
import re
import time

from .logging import setup_logging


def normalize_observation(text: str) -> str:
    """Lower-case and collapse whitespace so trivially different inputs match."""
    return re.sub(r"\s+", " ", text.strip().lower())


def observation_fingerprint(text: str) -> str:
    """Cache key for an observation: md5 of its normalized text."""
    return hashlib.md5(normalize_observation(text).encode("utf-8")).hexdigest()


def sanitize_observation(text: str) -> str:
    """Trim input text and drop angle brackets."""
    return re.sub(r"[<>]", "", text.strip())


def elapsed_ms(start: float) -> float:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return round((time.monotonic() - start) * 1000, 3)


__all__ = [
    "elapsed_ms",
    "normalize_observation",
    "observation_fingerprint",
    "sanitize_observation",
    "setup_logging",
]
