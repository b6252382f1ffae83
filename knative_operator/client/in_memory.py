"""Module for an in memory cluster client."""

import builtins
from collections import defaultdict
from collections.abc import Callable
import copy
import itertools
import logging
from typing import Any, DefaultDict
import uuid

from knative_operator.exceptions import (
    ConflictError,
    InputException,
    ObjectNotFoundError,
)
from knative_operator.manifest import NamedResource

from .client import Client, ClientEvent

_LOGGER = logging.getLogger(__name__)


def merge_patch(target: Any, patch: Any) -> Any:
    """Return the result of applying a JSON merge patch (RFC 7386) to target."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def _matches_labels(obj: dict[str, Any], selector: dict[str, str] | None) -> bool:
    if not selector:
        return True
    labels = (obj.get("metadata") or {}).get("labels") or {}
    return all(labels.get(key) == value for key, value in selector.items())


class InMemoryClient(Client):
    """In-memory implementation of the Client interface.

    Stores raw objects keyed by NamedResource and assigns a uid and
    resourceVersion on every write. The `status` of an existing object is
    preserved across applies, the same way the API server ignores status in
    writes to the main resource.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryClient."""
        self._objects: dict[NamedResource, dict[str, Any]] = {}
        self._versions = itertools.count(1)
        self._listeners: DefaultDict[ClientEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )

    def _stamp(self, obj: dict[str, Any], existing: dict[str, Any] | None) -> None:
        metadata = obj.setdefault("metadata", {})
        if existing is not None:
            metadata["uid"] = existing["metadata"]["uid"]
        else:
            metadata.setdefault("uid", str(uuid.uuid4()))
        metadata["resourceVersion"] = str(next(self._versions))

    async def get(self, resource_id: NamedResource) -> dict[str, Any]:
        """Return the live object with the identity."""
        if (obj := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"{resource_id} not found")
        return copy.deepcopy(obj)

    async def list(
        self,
        api_version: str,
        kind: str,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List live objects of a kind, optionally scoped to a namespace."""
        return [
            copy.deepcopy(obj)
            for resource_id, obj in self._objects.items()
            if resource_id.api_version == api_version
            and resource_id.kind == kind
            and (namespace is None or resource_id.namespace == namespace)
            and _matches_labels(obj, label_selector)
        ]

    async def apply(self, resource: dict[str, Any]) -> dict[str, Any]:
        """Create or update the object and return the live copy."""
        resource_id = NamedResource.from_doc(resource)
        if not resource_id.kind or not resource_id.name:
            raise InputException(f"Invalid object missing kind or name: {resource}")
        obj = copy.deepcopy(resource)
        existing = self._objects.get(resource_id)
        if existing is not None and "status" in existing:
            obj["status"] = copy.deepcopy(existing["status"])
        self._stamp(obj, existing)
        _LOGGER.debug(
            "%s object %s", "Updating" if existing else "Creating", resource_id
        )
        self._objects[resource_id] = obj
        self._fire_event(ClientEvent.APPLIED, resource_id, obj)
        return copy.deepcopy(obj)

    async def patch(
        self, resource_id: NamedResource, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a JSON merge patch to the object and return the live copy."""
        if (existing := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"{resource_id} not found")
        expected = (patch.get("metadata") or {}).get("resourceVersion")
        current = existing["metadata"].get("resourceVersion")
        if expected is not None and expected != current:
            raise ConflictError(
                f"Operation cannot be fulfilled on {resource_id}: the object has "
                f"been modified (resourceVersion {expected} != {current})"
            )
        obj = merge_patch(existing, patch)
        self._stamp(obj, existing)
        _LOGGER.debug("Patched object %s", resource_id)
        self._objects[resource_id] = obj
        self._fire_event(ClientEvent.PATCHED, resource_id, obj)
        return copy.deepcopy(obj)

    async def delete(self, resource_id: NamedResource) -> None:
        """Delete the object with the identity."""
        if resource_id not in self._objects:
            raise ObjectNotFoundError(f"{resource_id} not found")
        _LOGGER.debug("Deleting object %s", resource_id)
        del self._objects[resource_id]
        self._fire_event(ClientEvent.DELETED, resource_id, None)

    def set_status(self, resource_id: NamedResource, status: dict[str, Any]) -> None:
        """Replace the status of a live object, as a controller in the cluster would."""
        if (existing := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"{resource_id} not found")
        existing["status"] = copy.deepcopy(status)

    def list_objects(
        self, kind: str | None = None
    ) -> builtins.list[dict[str, Any]]:
        """List all live objects, optionally filtered by kind."""
        return [
            copy.deepcopy(obj)
            for resource_id, obj in self._objects.items()
            if kind is None or resource_id.kind == kind
        ]

    def add_listener(
        self,
        event: ClientEvent,
        callback: Callable[[NamedResource, dict[str, Any] | None], None],
    ) -> Callable[[], None]:
        """Register a callback for a specific event (applied, patched, deleted)."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(
        self,
        event: ClientEvent,
        resource_id: NamedResource,
        obj: dict[str, Any] | None,
    ) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(resource_id, copy.deepcopy(obj))
            except Exception:
                _LOGGER.exception("Client listener callback failed for event %s", event)
