"""
Local persistence for sessions and their delta logs.
"""

from codemie_sync.storage.deltas import DeltaStore
from codemie_sync.storage.sessions import SessionStore

__all__ = ["DeltaStore", "SessionStore"]
