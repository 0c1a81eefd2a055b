"""Schemas for fingerprint store records."""

from mergebot.services.store.schemas.merge_request import MergeRequest, MergeRequestDependency

__all__ = ["MergeRequest", "MergeRequestDependency"]
