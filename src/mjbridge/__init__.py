"""Midjourney Bridge - HTTP facade over an asynchronous generation session."""

__version__ = "0.1.0"
