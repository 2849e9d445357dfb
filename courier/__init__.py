"""Courier - resilient async request orchestration."""

__version__ = "0.1.0"
