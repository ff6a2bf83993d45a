"""Dialing concurrency and broadcast queue engine."""

__version__ = "0.1.0"
