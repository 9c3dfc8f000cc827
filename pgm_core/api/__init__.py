"""
API module for pgm.
"""

from .models import ApplyRequest, ApplyResponse, HealthResponse
from .api import app

__all__ = [
    "ApplyRequest",
    "ApplyResponse",
    "HealthResponse",
    "app"
]
