"""Cron-friendly website and endpoint health monitor."""

__version__ = "1.0.0"
