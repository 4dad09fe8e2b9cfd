"""
Storage layer for the frontier and the keyword index.
"""

from .database import DatabaseManager, StorageError, NotFoundError

__all__ = ['DatabaseManager', 'StorageError', 'NotFoundError']
