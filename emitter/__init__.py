"""Replicated broker state: CRDT sets, cluster events, configuration and helpers."""

__version__ = "0.1.0"

__all__ = ["config", "crdt", "durable", "errors", "events", "state", "timer", "version"]