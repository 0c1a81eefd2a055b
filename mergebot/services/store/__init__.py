"""Fingerprint store of pipeline entries (SQLite) and its record schemas."""

from mergebot.services.store.fingerprint_store import FingerprintStore, StoreError, key_for, make_key
from mergebot.services.store.schemas import MergeRequest, MergeRequestDependency

__all__ = [
    "FingerprintStore",
    "MergeRequest",
    "MergeRequestDependency",
    "StoreError",
    "key_for",
    "make_key",
]
