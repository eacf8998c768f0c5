# API endpoints
from . import terminal

__all__ = ["terminal"]
