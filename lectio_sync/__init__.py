"""Offline-first liturgical text sync and scheduling engine."""

__version__ = "1.0.0"
