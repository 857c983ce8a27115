"""State management module for tracking applied resources."""

from .models import StateFile, StateRecord
from .store import StateStore

__all__ = [
    "StateFile",
    "StateRecord",
    "StateStore",
]
