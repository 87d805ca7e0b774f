"""Exceptions raised by the push engine's local collaborators.

None of these escape the orchestrator or executor: they are caught at the
seam and converted into error SyncResults of kind ``configuration``.
"""

from __future__ import annotations


class ConfigurationError(Exception):
    """A record or object type cannot be pushed because configuration is incomplete.

    Attributes:
        object_type: Local object type involved.
        detail: Human-readable description of what is missing.
    """

    def __init__(self, object_type: str, detail: str) -> None:
        self.object_type = object_type
        self.detail = detail
        super().__init__(f"{object_type}: {detail}")


class FieldmapNotFoundError(ConfigurationError):
    """A queued job referenced a fieldmap id that no longer exists."""

    def __init__(self, fieldmap_id: int, object_type: str = "") -> None:
        self.fieldmap_id = fieldmap_id
        super().__init__(object_type, f"fieldmap {fieldmap_id} not found")


class LocalRecordNotFoundError(ConfigurationError):
    """A queued job referenced a local record that could not be loaded."""

    def __init__(self, object_type: str, local_id: int) -> None:
        self.local_id = local_id
        super().__init__(object_type, f"local record {local_id} not found")
