"""
Broadcast configuration and lifecycle.
"""

__all__: list[str] = []
