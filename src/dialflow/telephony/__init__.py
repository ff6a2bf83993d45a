"""
Call initiation providers.
"""

__all__: list[str] = []
