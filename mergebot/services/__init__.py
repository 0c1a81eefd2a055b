"""Merge pipeline services: store, statuses, companions, cascade, commands."""
