"""Scheduled and event-driven automations for a markdown vault."""

__version__ = "0.1.0"
