"""Sidequest ticket hierarchy and implementation-orchestration engine."""

__version__ = "1.0.0"
