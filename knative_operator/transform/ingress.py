"""Transformer overriding the selectors of the well-known istio gateways."""

from dataclasses import dataclass
import logging
from typing import Any

from knative_operator.component import IstioGatewayOverride, ServingSpec
from knative_operator.manifest import nested_get, nested_set

_LOGGER = logging.getLogger(__name__)

GATEWAY_KIND = "Gateway"
ISTIO_NETWORKING_DOMAIN = "networking.istio.io"
INGRESS_GATEWAY = "knative-ingress-gateway"
LOCAL_GATEWAY = "cluster-local-gateway"


@dataclass(frozen=True)
class GatewayTransform:
    """Replace the selector of the ingress and cluster local gateways.

    The configured selector replaces the existing one wholesale. Gateways
    with other names, or without a configured selector, are untouched.
    """

    ingress_selector: dict[str, str] | None = None
    local_selector: dict[str, str] | None = None

    @classmethod
    def from_spec(cls, spec: ServingSpec) -> "GatewayTransform":
        """Build the transform from a spec, honoring the deprecated fields."""

        def selector(override: IstioGatewayOverride | None) -> dict[str, str] | None:
            return override.selector if override is not None else None

        return cls(
            ingress_selector=selector(spec.ingress_gateway_override()),
            local_selector=selector(spec.local_gateway_override()),
        )

    def __call__(self, resource: dict[str, Any]) -> dict[str, Any]:
        if resource.get("kind") != GATEWAY_KIND or not resource.get(
            "apiVersion", ""
        ).startswith(ISTIO_NETWORKING_DOMAIN):
            return resource
        name = nested_get(resource, "metadata", "name")
        if name == INGRESS_GATEWAY:
            selector = self.ingress_selector
        elif name == LOCAL_GATEWAY:
            selector = self.local_selector
        else:
            return resource
        if selector:
            _LOGGER.debug("Updating gateway %s selector to %s", name, selector)
            nested_set(resource, dict(selector), "spec", "selector")
        return resource
