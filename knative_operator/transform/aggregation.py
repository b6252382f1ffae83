"""Transformer preserving the live state of aggregated ClusterRoles."""

from dataclasses import dataclass, field
import logging
from typing import Any

from knative_operator.exceptions import TransformException
from knative_operator.manifest import CLUSTER_ROLE_KIND, NamedResource, nested_get

_LOGGER = logging.getLogger(__name__)


def has_aggregation_rule(resource: dict[str, Any]) -> bool:
    """Return True for a ClusterRole that aggregates other roles."""
    return (
        resource.get("kind") == CLUSTER_ROLE_KIND
        and resource.get("aggregationRule") is not None
    )


@dataclass(frozen=True)
class AggregationRuleTransform:
    """Merge the observed state of aggregated ClusterRoles into the manifest.

    The rules of an aggregated ClusterRole are filled in by the cluster, and
    selectors may be added out of band. Applying the manifest as-is would
    wipe both, so the observed rules are kept and the observed selectors are
    merged with the manifest's.
    """

    observed: dict[NamedResource, dict[str, Any]] = field(default_factory=dict)

    def __call__(self, resource: dict[str, Any]) -> dict[str, Any]:
        if not has_aggregation_rule(resource):
            return resource
        resource_id = NamedResource.from_doc(resource)
        if (current := self.observed.get(resource_id)) is None:
            return resource

        selectors = nested_get(resource, "aggregationRule", "clusterRoleSelectors") or []
        observed = nested_get(current, "aggregationRule", "clusterRoleSelectors") or []
        if not isinstance(selectors, list) or not isinstance(observed, list):
            raise TransformException("aggregationRule.clusterRoleSelectors must be a list")
        merged = list(selectors)
        for selector in observed:
            if selector not in merged:
                merged.append(selector)
        resource["aggregationRule"]["clusterRoleSelectors"] = merged

        if (rules := current.get("rules")) is not None:
            resource["rules"] = rules
        _LOGGER.debug("Preserved aggregated state of %s", resource_id)
        return resource
