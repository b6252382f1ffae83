"""Transformer scaling the control plane for high availability."""

from dataclasses import dataclass
import logging
from typing import Any

from knative_operator.exceptions import TransformException
from knative_operator.manifest import nested_get, nested_map, nested_set

_LOGGER = logging.getLogger(__name__)

LEADER_ELECTION_CONFIG = "config-leader-election"
ENABLED_COMPONENTS_KEY = "enabledComponents"
HPA_KIND = "HorizontalPodAutoscaler"
SCALED_KINDS = ("Deployment", "StatefulSet")
ACTIVATOR = "activator"

SERVING_HA_DEPLOYMENTS = frozenset(
    {
        "controller",
        "autoscaler-hpa",
        "networking-certmanager",
        "networking-ns-cert",
        "networking-istio",
    }
)
SERVING_HA_COMPONENTS = "controller,hpaautoscaler,certcontroller,istiocontroller,nscontroller"

EVENTING_HA_DEPLOYMENTS = frozenset(
    {
        "eventing-controller",
        "imc-controller",
        "imc-dispatcher",
        "mt-broker-controller",
        "sugar-controller",
    }
)
EVENTING_HA_COMPONENTS = (
    "eventing-controller,imc-controller,imc-dispatcher,mt-broker-controller,"
    "sugar-controller"
)


@dataclass(frozen=True)
class HighAvailabilityTransform:
    """Run the control plane with the configured number of replicas.

    Allow-listed deployments get exactly `replicas`; the activator autoscaler
    floor is raised to `replicas` but never lowered. Leader election is
    enabled for the listed components. Without a replica count nothing is
    changed.
    """

    replicas: int | None
    deployments: frozenset[str] = SERVING_HA_DEPLOYMENTS
    components: str = SERVING_HA_COMPONENTS

    def __call__(self, resource: dict[str, Any]) -> dict[str, Any]:
        if self.replicas is None:
            return resource
        kind = resource.get("kind")
        name = nested_get(resource, "metadata", "name")
        if kind == "ConfigMap" and name == LEADER_ELECTION_CONFIG:
            data = nested_map(resource, "data") or {}
            data[ENABLED_COMPONENTS_KEY] = self.components
            nested_set(resource, data, "data")
        elif kind in SCALED_KINDS and name in self.deployments:
            _LOGGER.debug("Setting %s/%s replicas to %d", kind, name, self.replicas)
            nested_set(resource, self.replicas, "spec", "replicas")
        elif kind == HPA_KIND and name == ACTIVATOR:
            current = nested_get(resource, "spec", "minReplicas")
            if current is not None and not isinstance(current, int):
                raise TransformException(
                    f"spec.minReplicas is of the type {type(current).__name__}, "
                    "expected an int"
                )
            if current is None or current < self.replicas:
                nested_set(resource, self.replicas, "spec", "minReplicas")
        return resource
