"""Persistent stores used across docverify runs."""

from .content_cache import (
    CacheEntry,
    CacheManifest,
    ContentCache,
    fragment_fingerprint,
    normalise_code,
)

__all__ = [
    "CacheEntry",
    "CacheManifest",
    "ContentCache",
    "fragment_fingerprint",
    "normalise_code",
]
