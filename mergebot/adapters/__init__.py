"""Hosting service and CI adapters."""

from mergebot.adapters.base import CIProbeAdapter, GitPlatformAdapter, GitPlatformError

__all__ = ["CIProbeAdapter", "GitPlatformAdapter", "GitPlatformError"]
