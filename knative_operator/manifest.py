"""Representation of the resources that make up one version of a component.

A `Manifest` is an ordered collection of raw kubernetes objects, deduplicated
by the identity of each object. Manifests are treated as immutable values:
every operation that changes the contents returns a new manifest built from
copies, so a manifest shared through a cache can be handed out safely.

```python
from knative_operator.manifest import Manifest, by_kind, none

manifest = Manifest(parse_docs(content))
deployments = manifest.filter(by_kind("Deployment"))
await manifest.filter(none(by_kind("Deployment"))).delete(client)
```
"""

from collections.abc import Callable, Iterable, Iterator
import copy
from dataclasses import dataclass
import logging
from typing import Any, TYPE_CHECKING

import yaml

from .exceptions import (
    ApplyException,
    ClusterException,
    InputException,
    ObjectNotFoundError,
    TransformException,
)

if TYPE_CHECKING:
    from .client import Client
    from .transform import Transformer

__all__ = [
    "NamedResource",
    "Manifest",
    "Predicate",
    "parse_docs",
    "nested_get",
    "nested_set",
    "nested_map",
    "nested_maps",
    "by_kind",
    "by_name",
    "in_",
    "none",
    "any_",
    "all_",
    "no_crds",
    "is_rbac",
]

_LOGGER = logging.getLogger(__name__)

CRD_KIND = "CustomResourceDefinition"
DEPLOYMENT_KIND = "Deployment"
CLUSTER_ROLE_KIND = "ClusterRole"
RBAC_KINDS = frozenset({"Role", "ClusterRole", "RoleBinding", "ClusterRoleBinding"})

# Kinds that are never bound to a namespace.
CLUSTER_SCOPED_KINDS = frozenset(
    {
        "APIService",
        "ClusterRole",
        "ClusterRoleBinding",
        CRD_KIND,
        "MutatingWebhookConfiguration",
        "Namespace",
        "PersistentVolume",
        "PodSecurityPolicy",
        "PriorityClass",
        "StorageClass",
        "ValidatingWebhookConfiguration",
    }
)

Predicate = Callable[[dict[str, Any]], bool]


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    api_version: str
    kind: str
    namespace: str | None
    name: str

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "NamedResource":
        """Return the identity of a raw kubernetes object."""
        metadata = doc.get("metadata") or {}
        return cls(
            api_version=doc.get("apiVersion", ""),
            kind=doc.get("kind", ""),
            namespace=metadata.get("namespace") or None,
            name=metadata.get("name", ""),
        )

    @property
    def group(self) -> str:
        """The API group, empty for the core group."""
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


def _check_doc(doc: Any) -> dict[str, Any]:
    """Assert the document looks like a kubernetes object."""
    if not isinstance(doc, dict):
        raise InputException(f"Invalid object is not a mapping: {doc}")
    if not doc.get("kind"):
        raise InputException(f"Invalid object missing kind: {doc}")
    if not doc.get("apiVersion"):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not (metadata := doc.get("metadata")) or not isinstance(metadata, dict):
        raise InputException(f"Invalid object missing metadata: {doc}")
    if not metadata.get("name"):
        raise InputException(f"Invalid object missing metadata.name: {doc}")
    return doc


def parse_docs(content: str) -> list[dict[str, Any]]:
    """Parse a multi-document YAML string into kubernetes objects.

    Empty documents are skipped, and a `List` kind is flattened into its items.
    """
    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse manifest content: {err}") from err
    results: list[dict[str, Any]] = []
    for doc in docs:
        if doc is None:
            continue
        if isinstance(doc, dict) and doc.get("kind") == "List":
            results.extend(_check_doc(item) for item in doc.get("items") or ())
            continue
        results.append(_check_doc(doc))
    return results


def nested_get(obj: dict[str, Any], *path: str) -> Any:
    """Return the value at the field path, or None if any field is absent."""
    value: Any = obj
    for i, key in enumerate(path):
        if value is None:
            return None
        if not isinstance(value, dict):
            raise TransformException(
                f"{'.'.join(path[: i + 1])} accessor error: {value!r} is of the "
                f"type {type(value).__name__}, expected a map"
            )
        value = value.get(key)
    return value


def nested_set(obj: dict[str, Any], value: Any, *path: str) -> None:
    """Set the value at the field path, creating intermediate maps."""
    current = obj
    for i, key in enumerate(path[:-1]):
        child = current.get(key)
        if child is None:
            child = {}
            current[key] = child
        elif not isinstance(child, dict):
            raise TransformException(
                f"value cannot be set because {'.'.join(path[: i + 1])} is of the "
                f"type {type(child).__name__}, expected a map"
            )
        current = child
    current[path[-1]] = value


def nested_map(obj: dict[str, Any], *path: str) -> dict[str, Any] | None:
    """Return the map at the field path, or None if it is absent."""
    value = nested_get(obj, *path)
    if value is not None and not isinstance(value, dict):
        raise TransformException(
            f"{'.'.join(path)} is of the type {type(value).__name__}, expected a map"
        )
    return value


def nested_maps(obj: dict[str, Any], *path: str) -> list[dict[str, Any]]:
    """Return the list of maps at the field path, or an empty list if absent."""
    value = nested_get(obj, *path)
    if value is None:
        return []
    field_path = ".".join(path)
    if not isinstance(value, list):
        raise TransformException(
            f"{field_path} is of the type {type(value).__name__}, expected a list"
        )
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise TransformException(
                f"{field_path}[{i}] is of the type {type(item).__name__}, "
                "expected a map"
            )
    return value


class Manifest:
    """An ordered, deduplicated set of kubernetes resources."""

    def __init__(self, resources: Iterable[dict[str, Any]] = ()) -> None:
        """Initialize Manifest, merging resources with the same identity."""
        self._resources: dict[NamedResource, dict[str, Any]] = {}
        for resource in resources:
            self._resources[NamedResource.from_doc(resource)] = copy.deepcopy(
                resource
            )

    @property
    def resources(self) -> list[dict[str, Any]]:
        """Return copies of the resources in the manifest."""
        return [copy.deepcopy(resource) for resource in self._resources.values()]

    @property
    def keys(self) -> list[NamedResource]:
        """Return the identities of the resources in order."""
        return list(self._resources)

    def get(self, resource_id: NamedResource) -> dict[str, Any] | None:
        """Return a copy of the resource with the identity, if present."""
        if (resource := self._resources.get(resource_id)) is None:
            return None
        return copy.deepcopy(resource)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, dict):
            item = NamedResource.from_doc(item)
        return item in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self.resources)

    def __bool__(self) -> bool:
        return bool(self._resources)

    def __repr__(self) -> str:
        return f"Manifest({[str(key) for key in self._resources]})"

    def append(self, *others: "Manifest") -> "Manifest":
        """Return a new manifest with the resources of the others appended.

        Resources in later manifests replace earlier ones with the same
        identity. Appending nothing returns an independent clone.
        """
        resources = list(self._resources.values())
        for other in others:
            resources.extend(other._resources.values())
        return Manifest(resources)

    def filter(self, *predicates: Predicate) -> "Manifest":
        """Return a new manifest with resources matching all predicates."""
        return Manifest(
            resource
            for resource in self._resources.values()
            if all(predicate(resource) for predicate in predicates)
        )

    def transform(self, *transformers: "Transformer") -> "Manifest":
        """Return a new manifest with the transformers applied to each resource."""
        from .transform import transform

        return transform(self, *transformers)

    async def apply(self, client: "Client") -> None:
        """Apply each resource to the cluster, stopping at the first failure."""
        for resource_id, resource in self._resources.items():
            _LOGGER.debug("Applying %s", resource_id)
            try:
                await client.apply(copy.deepcopy(resource))
            except ApplyException:
                raise
            except ClusterException as err:
                raise ApplyException(resource_id, str(err)) from err

    async def delete(self, client: "Client") -> None:
        """Delete each resource from the cluster.

        Resources that no longer exist are skipped.
        """
        for resource_id in self._resources:
            _LOGGER.debug("Deleting %s", resource_id)
            try:
                await client.delete(resource_id)
            except ObjectNotFoundError:
                _LOGGER.debug("Resource %s already deleted", resource_id)
            except ClusterException as err:
                raise ClusterException(
                    f"Failed to delete {resource_id}: {err}"
                ) from err

    def dump(self) -> str:
        """Return the manifest as a multi-document YAML string."""
        return yaml.dump_all(
            list(self._resources.values()), sort_keys=False, explicit_start=True
        )


def by_kind(kind: str) -> Predicate:
    """Match resources of the kind."""
    return lambda resource: resource.get("kind") == kind


def by_name(name: str) -> Predicate:
    """Match resources with the name."""
    return lambda resource: (resource.get("metadata") or {}).get("name") == name


def in_(manifest: Manifest) -> Predicate:
    """Match resources whose identity is present in the manifest."""
    return lambda resource: NamedResource.from_doc(resource) in manifest


def none(*predicates: Predicate) -> Predicate:
    """Match resources that match none of the predicates."""
    return lambda resource: not any(p(resource) for p in predicates)


def any_(*predicates: Predicate) -> Predicate:
    """Match resources that match at least one of the predicates."""
    return lambda resource: any(p(resource) for p in predicates)


def all_(*predicates: Predicate) -> Predicate:
    """Match resources that match every predicate."""
    return lambda resource: all(p(resource) for p in predicates)


def no_crds(resource: dict[str, Any]) -> bool:
    """Match anything that is not a CustomResourceDefinition."""
    return resource.get("kind") != CRD_KIND


def is_rbac(resource: dict[str, Any]) -> bool:
    """Match roles and role bindings, namespaced or not."""
    return resource.get("kind") in RBAC_KINDS


def is_cluster_scoped(kind: str) -> bool:
    """Return True if the kind is not bound to a namespace."""
    return kind in CLUSTER_SCOPED_KINDS
