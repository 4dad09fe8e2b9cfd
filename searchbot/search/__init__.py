"""
Query answering and the HTTP endpoint.
"""

from .engine import SearchEngine, SearchMode, ValidationError, IndexNotReadyError
from .server import create_app, start_server

__all__ = [
    'SearchEngine', 'SearchMode', 'ValidationError', 'IndexNotReadyError',
    'create_app', 'start_server',
]
