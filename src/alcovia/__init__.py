"""Alcovia intervention engine: check-in gate, mentor escalation and push updates."""

__version__ = "0.1.0"
