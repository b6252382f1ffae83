"""Transformers shared by every component kind."""

from dataclasses import dataclass
import logging
from typing import Any

from knative_operator.manifest import (
    is_cluster_scoped,
    nested_get,
    nested_map,
    nested_maps,
    nested_set,
)

_LOGGER = logging.getLogger(__name__)

BINDING_KINDS = ("RoleBinding", "ClusterRoleBinding")
WEBHOOK_KINDS = ("MutatingWebhookConfiguration", "ValidatingWebhookConfiguration")


@dataclass(frozen=True)
class NamespaceTransform:
    """Move namespaced resources into the instance namespace.

    Cluster-scoped resources keep no namespace, but references they hold to
    namespaced objects (binding subjects, webhook services) are updated.
    """

    namespace: str

    def __call__(self, resource: dict[str, Any]) -> dict[str, Any]:
        kind = resource.get("kind", "")
        if not is_cluster_scoped(kind):
            nested_set(resource, self.namespace, "metadata", "namespace")
        if kind in BINDING_KINDS:
            for subject in nested_maps(resource, "subjects"):
                if subject.get("kind") == "ServiceAccount":
                    subject["namespace"] = self.namespace
        elif kind in WEBHOOK_KINDS:
            for webhook in nested_maps(resource, "webhooks"):
                if nested_get(webhook, "clientConfig", "service") is not None:
                    nested_set(
                        webhook, self.namespace, "clientConfig", "service", "namespace"
                    )
        elif kind == "APIService":
            if nested_get(resource, "spec", "service") is not None:
                nested_set(resource, self.namespace, "spec", "service", "namespace")
        return resource


@dataclass(frozen=True)
class OwnerTransform:
    """Add the instance as the controlling owner of namespaced resources."""

    owner: dict[str, Any]

    def __call__(self, resource: dict[str, Any]) -> dict[str, Any]:
        if is_cluster_scoped(resource.get("kind", "")):
            return resource
        refs = [
            ref
            for ref in nested_maps(resource, "metadata", "ownerReferences")
            if not (
                ref.get("uid") == self.owner.get("uid")
                and ref.get("name") == self.owner.get("name")
            )
        ]
        refs.append(dict(self.owner))
        nested_set(resource, refs, "metadata", "ownerReferences")
        return resource


@dataclass(frozen=True)
class ConfigMapTransform:
    """Merge configured data into ConfigMaps.

    Keys of the config match a ConfigMap either by its full name or by the
    name without the `config-` prefix, e.g. `network` updates `config-network`.
    """

    config: dict[str, dict[str, str]]

    def __call__(self, resource: dict[str, Any]) -> dict[str, Any]:
        if resource.get("kind") != "ConfigMap" or not self.config:
            return resource
        name = nested_get(resource, "metadata", "name") or ""
        short_name = name.removeprefix("config-")
        values = self.config.get(name) or self.config.get(short_name)
        if not values:
            return resource
        data = nested_map(resource, "data") or {}
        _LOGGER.debug("Updating ConfigMap %s with %s", name, values)
        data.update(values)
        nested_set(resource, data, "data")
        return resource
