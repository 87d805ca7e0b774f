"""Remote API client abstract base class -- the operations the push engine needs.

Every remote backend (Salesforce REST today) implements this ABC. The push
executor never talks HTTP directly; it only sees RemoteResponse objects and
RemoteAPIError exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

HTTP_CREATED = 201
HTTP_NO_CONTENT = 204
HTTP_MULTIPLE_CHOICES = 300


class RemoteResponse(BaseModel):
    """Decoded result of one remote API call.

    Attributes:
        code: HTTP status code.
        data: Decoded JSON body (empty for 204 responses).
        error: Error summary when the remote signalled a non-fatal problem
            (e.g. an upsert matching multiple records).
    """

    code: int
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.code < 300


class RemoteClient(ABC):
    """Abstract interface for remote record operations.

    Methods:
        is_authorized: Whether the session holds usable credentials.
        create: Create a record, response data carries its ``id``.
        update: Update a record by remote id.
        upsert: Create-or-update by an external key field. 201 created,
            204 matched and updated, 300 multiple matches.
        delete: Delete a record by remote id (204 on success).
        read: Fetch a record by remote id.
        read_by_external_id: Fetch a record by external key field/value.
    """

    @abstractmethod
    def is_authorized(self) -> bool:
        """Return True if the session can make API calls."""
        ...

    @abstractmethod
    async def create(self, object_type: str, fields: dict[str, Any]) -> RemoteResponse:
        """Create a record."""
        ...

    @abstractmethod
    async def update(
        self, object_type: str, remote_id: str, fields: dict[str, Any]
    ) -> RemoteResponse:
        """Update a record by remote id."""
        ...

    @abstractmethod
    async def upsert(
        self,
        object_type: str,
        key_field: str,
        key_value: str,
        fields: dict[str, Any],
    ) -> RemoteResponse:
        """Upsert by external key. ``key_value`` arrives already URL-encoded."""
        ...

    @abstractmethod
    async def delete(self, object_type: str, remote_id: str) -> RemoteResponse:
        """Delete a record by remote id."""
        ...

    @abstractmethod
    async def read(
        self, object_type: str, remote_id: str, options: dict[str, Any] | None = None
    ) -> RemoteResponse:
        """Fetch a record by remote id."""
        ...

    @abstractmethod
    async def read_by_external_id(
        self,
        object_type: str,
        key_field: str,
        key_value: str,
        options: dict[str, Any] | None = None,
    ) -> RemoteResponse:
        """Fetch a record by external key. ``key_value`` arrives already URL-encoded."""
        ...
