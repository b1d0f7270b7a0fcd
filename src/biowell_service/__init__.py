"""Biowell service layer: telemetry synthesis, caching and chat orchestration."""

__version__ = "0.3.0"
