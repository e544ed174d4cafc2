"""
Utility services for micropad processing.

Utilities:
- DebugContext: Visual logging and step tracking
"""

from services.utils.debug import DebugContext

__all__ = [
    'DebugContext'
]
