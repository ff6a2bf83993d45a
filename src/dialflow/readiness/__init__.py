"""
Readiness preflight, caller-ID inventory and system alerts.
"""

__all__: list[str] = []
