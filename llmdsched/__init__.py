"""Filters, scorers, profile handlers and a plugin registry for routing LLM inference requests across model-server pods."""

__version__ = "0.1.0"