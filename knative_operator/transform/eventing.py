"""Transformers specific to eventing."""

from dataclasses import dataclass
import logging
from typing import Any

import yaml

from knative_operator.exceptions import TransformException
from knative_operator.manifest import nested_get, nested_set

_LOGGER = logging.getLogger(__name__)

BROKER_DEFAULTS_CONFIG = "config-br-defaults"
BROKER_DEFAULTS_KEY = "default-br-config"


@dataclass(frozen=True)
class DefaultBrokerTransform:
    """Set the cluster default broker class in the broker defaults ConfigMap."""

    broker_class: str | None

    def __call__(self, resource: dict[str, Any]) -> dict[str, Any]:
        if not self.broker_class:
            return resource
        if (
            resource.get("kind") != "ConfigMap"
            or nested_get(resource, "metadata", "name") != BROKER_DEFAULTS_CONFIG
        ):
            return resource
        raw = nested_get(resource, "data", BROKER_DEFAULTS_KEY) or ""
        if not isinstance(raw, str):
            raise TransformException(f"{BROKER_DEFAULTS_KEY} is not a string")
        try:
            config = yaml.safe_load(raw) or {}
        except yaml.YAMLError as err:
            raise TransformException(f"Unable to parse {BROKER_DEFAULTS_KEY}: {err}") from err
        if not isinstance(config, dict):
            raise TransformException(f"{BROKER_DEFAULTS_KEY} is not a map")
        nested_set(config, self.broker_class, "clusterDefault", "brokerClass")
        nested_set(
            resource,
            yaml.dump(config, sort_keys=False),
            "data",
            BROKER_DEFAULTS_KEY,
        )
        _LOGGER.debug("Set default broker class to %s", self.broker_class)
        return resource
