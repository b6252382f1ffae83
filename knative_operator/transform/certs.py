"""Transformer trusting custom CA certificates in the controller."""

from dataclasses import dataclass
import logging
from typing import Any

from knative_operator.component import CustomCerts
from knative_operator.exceptions import TransformException
from knative_operator.manifest import nested_get, nested_maps, nested_set

_LOGGER = logging.getLogger(__name__)

CONTROLLER_DEPLOYMENT = "controller"
CUSTOM_CERTS_ENV_NAME = "SSL_CERT_DIR"
CUSTOM_CERTS_MOUNT_PATH = "/knative-custom-certs"
CUSTOM_CERTS_NAME_PREFIX = "custom-certs-"
CONFIG_MAP_TYPE = "ConfigMap"
SECRET_TYPE = "Secret"


def _volume_source(certs: CustomCerts) -> dict[str, Any]:
    if certs.type == CONFIG_MAP_TYPE:
        return {"configMap": {"name": certs.name}}
    if certs.type == SECRET_TYPE:
        return {"secret": {"secretName": certs.name}}
    raise TransformException(f"Unknown CustomCerts type: {certs.type}")


def _replace_named(items: list[dict[str, Any]], item: dict[str, Any]) -> list[dict[str, Any]]:
    """Return items with any entry of the same name replaced by item."""
    return [i for i in items if i.get("name") != item["name"]] + [item]


@dataclass(frozen=True)
class CustomCertsTransform:
    """Mount a ConfigMap or Secret of CA certificates into the controller."""

    certs: CustomCerts | None

    def __call__(self, resource: dict[str, Any]) -> dict[str, Any]:
        if self.certs is None or self.certs.empty:
            return resource
        if (
            resource.get("kind") != "Deployment"
            or nested_get(resource, "metadata", "name") != CONTROLLER_DEPLOYMENT
        ):
            return resource
        source = _volume_source(self.certs)
        if not self.certs.name:
            raise TransformException(
                f"CustomCerts name for {self.certs.type} is required"
            )
        name = CUSTOM_CERTS_NAME_PREFIX + self.certs.name

        volumes = nested_maps(resource, "spec", "template", "spec", "volumes")
        nested_set(
            resource,
            _replace_named(volumes, {"name": name, **source}),
            "spec",
            "template",
            "spec",
            "volumes",
        )
        containers = nested_maps(resource, "spec", "template", "spec", "containers")
        if not containers:
            raise TransformException(
                "spec.template.spec.containers must be a non-empty list"
            )
        container = containers[0]
        container["volumeMounts"] = _replace_named(
            nested_maps(container, "volumeMounts"),
            {"name": name, "mountPath": CUSTOM_CERTS_MOUNT_PATH},
        )
        container["env"] = _replace_named(
            nested_maps(container, "env"),
            {"name": CUSTOM_CERTS_ENV_NAME, "value": CUSTOM_CERTS_MOUNT_PATH},
        )
        _LOGGER.debug("Mounted custom certs %s into %s", name, CONTROLLER_DEPLOYMENT)
        return resource
