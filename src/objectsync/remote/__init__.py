"""Remote API layer -- pluggable client pattern for the push engine.

Provides abstract RemoteClient interface with the Salesforce REST
implementation, plus the response and exception types the executor sees.
"""

from src.objectsync.remote.client import RemoteClient, RemoteResponse
from src.objectsync.remote.exceptions import RemoteAPIError, RemoteNotAuthorizedError
from src.objectsync.remote.salesforce import SalesforceClient

__all__ = [
    "RemoteAPIError",
    "RemoteClient",
    "RemoteNotAuthorizedError",
    "RemoteResponse",
    "SalesforceClient",
]
