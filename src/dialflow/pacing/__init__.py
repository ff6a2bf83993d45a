"""
Concurrency estimation and predictive pacing.
"""

__all__: list[str] = []
