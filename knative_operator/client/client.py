"""Interface to the cluster used by the reconcilers."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any

from knative_operator.manifest import NamedResource


class ClientEvent(str, Enum):
    """Enum for client events."""

    APPLIED = "applied"
    PATCHED = "patched"
    DELETED = "deleted"


class Client(ABC):
    """Abstract base class for reading and writing cluster objects.

    All methods operate on raw kubernetes objects. Implementations raise
    `ObjectNotFoundError` for missing objects and `ClusterException` for any
    other failure.
    """

    @abstractmethod
    async def get(self, resource_id: NamedResource) -> dict[str, Any]:
        """Return the live object with the identity."""

    @abstractmethod
    async def list(
        self,
        api_version: str,
        kind: str,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List live objects of a kind, optionally scoped to a namespace.

        When a label selector is given only objects carrying all of the
        labels are returned.
        """

    @abstractmethod
    async def apply(self, resource: dict[str, Any]) -> dict[str, Any]:
        """Create or update the object and return the live copy."""

    @abstractmethod
    async def patch(
        self, resource_id: NamedResource, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a JSON merge patch to the object and return the live copy.

        A `metadata.resourceVersion` in the patch must match the live object.
        """

    @abstractmethod
    async def delete(self, resource_id: NamedResource) -> None:
        """Delete the object with the identity."""

    @abstractmethod
    def add_listener(
        self,
        event: ClientEvent,
        callback: Callable[[NamedResource, dict[str, Any] | None], None],
    ) -> Callable[[], None]:
        """Register a callback for a specific event (applied, patched, deleted).

        Returns a callable that can be called to remove the listener.
        """
