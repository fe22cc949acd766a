"""Python client for the broker dashboard API"""

from broker_dashboard.client.session import APIError, SessionClient, SessionExpiredError
from broker_dashboard.client.storage import FileTokenStore, MemoryTokenStore, SessionStorage, StorageScope

__all__ = [
    "APIError",
    "FileTokenStore",
    "MemoryTokenStore",
    "SessionClient",
    "SessionExpiredError",
    "SessionStorage",
    "StorageScope",
]
