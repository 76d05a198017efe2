"""Shard node state machine, request batching and bucket metadata helpers."""

__version__ = "0.1.0"