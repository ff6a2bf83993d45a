"""
Work-item queue: storage, admission and phone normalization.
"""

__all__: list[str] = []
