"""Client for the tracker backend REST API.

Public API:
- RemoteAPI: Async CRUD client with shared retry and error classification
"""

from src.api.client import RemoteAPI

__all__ = ["RemoteAPI"]
