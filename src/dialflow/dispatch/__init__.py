"""
Dispatch loop, sweeper, retries and status callbacks.
"""

__all__: list[str] = []
