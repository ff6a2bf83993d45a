"""
CRM leads that can be enqueued into broadcasts.
"""

__all__: list[str] = []
