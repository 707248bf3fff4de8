"""
Shared Models
=============

Pydantic models shared across RegWatch services.

Models:
- Pagination parameters and paginated envelope
- Health response
"""

from shared.models.common import (
    HealthResponse,
    PaginatedResponse,
    Pagination,
)

__all__ = [
    "Pagination",
    "PaginatedResponse",
    "HealthResponse",
]
