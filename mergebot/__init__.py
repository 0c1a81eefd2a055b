"""Mergebot: merges pull requests and their companion PRs on command."""
