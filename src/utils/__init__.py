"""
Utility modules for the document store
"""

from .helpers import (
    generate_id,
    id_timestamp,
    deep_merge,
    expand_dotted
)

__all__ = [
    'generate_id',
    'id_timestamp',
    'deep_merge',
    'expand_dotted',
]
