"""Outbound messaging campaigns with reply tracking and analytics."""

__version__ = "1.0.0"
