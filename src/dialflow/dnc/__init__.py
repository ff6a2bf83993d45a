"""
Tenant do-not-call registry.
"""

__all__: list[str] = []
