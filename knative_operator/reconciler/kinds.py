"""Per-kind settings of the component reconcilers."""

from collections.abc import Callable
from dataclasses import dataclass

from knative_operator.component import (
    EVENTING_KIND,
    OPERATOR_DOMAIN,
    SERVING_KIND,
    EventingSpec,
    KComponent,
    KnativeEventing,
    KnativeServing,
    ServingSpec,
)
from knative_operator.config import OperatorConfig
from knative_operator.exceptions import InputException
from knative_operator.transform import Transformer
from knative_operator.transform.certs import CustomCertsTransform
from knative_operator.transform.eventing import DefaultBrokerTransform
from knative_operator.transform.ha import (
    EVENTING_HA_COMPONENTS,
    EVENTING_HA_DEPLOYMENTS,
    SERVING_HA_COMPONENTS,
    SERVING_HA_DEPLOYMENTS,
    HighAvailabilityTransform,
)
from knative_operator.transform.ingress import GatewayTransform

__all__ = [
    "ComponentKind",
    "SERVING",
    "EVENTING",
    "KINDS",
]


def _replicas(component: KComponent) -> int | None:
    if (ha := component.spec.high_availability) is None:
        return None
    return ha.replicas


def _serving_transformers(component: KComponent) -> list[Transformer]:
    if not isinstance(spec := component.spec, ServingSpec):
        raise InputException(f"{component.kind} has no serving spec")
    return [
        GatewayTransform.from_spec(spec),
        CustomCertsTransform(spec.custom_certs()),
        HighAvailabilityTransform(
            _replicas(component), SERVING_HA_DEPLOYMENTS, SERVING_HA_COMPONENTS
        ),
    ]


def _eventing_transformers(component: KComponent) -> list[Transformer]:
    if not isinstance(spec := component.spec, EventingSpec):
        raise InputException(f"{component.kind} has no eventing spec")
    return [
        DefaultBrokerTransform(spec.default_broker_class),
        HighAvailabilityTransform(
            _replicas(component), EVENTING_HA_DEPLOYMENTS, EVENTING_HA_COMPONENTS
        ),
    ]


@dataclass(frozen=True)
class ComponentKind:
    """What differs between reconciling serving and eventing."""

    kind: str
    """The custom resource kind, e.g. KnativeServing."""

    component_cls: type[KComponent]

    path: str
    """The directory under the manifest root holding the versions."""

    finalizer: str
    """The finalizer guarding deletion of an instance."""

    old_finalizer: str
    """A finalizer from older operator releases, removed on reconcile."""

    transformers: Callable[[KComponent], list[Transformer]]
    """Returns the transformers specific to the kind."""

    default_version: Callable[[OperatorConfig], str | None]
    """Returns the configured version used when an instance names none."""


SERVING = ComponentKind(
    kind=SERVING_KIND,
    component_cls=KnativeServing,
    path="knative-serving",
    finalizer=f"knativeservings.{OPERATOR_DOMAIN}",
    old_finalizer="delete-knative-serving-manifest",
    transformers=_serving_transformers,
    default_version=lambda config: config.serving_version,
)

EVENTING = ComponentKind(
    kind=EVENTING_KIND,
    component_cls=KnativeEventing,
    path="knative-eventing",
    finalizer=f"knativeeventings.{OPERATOR_DOMAIN}",
    old_finalizer="delete-knative-eventing-manifest",
    transformers=_eventing_transformers,
    default_version=lambda config: config.eventing_version,
)

KINDS: dict[str, ComponentKind] = {
    SERVING_KIND: SERVING,
    EVENTING_KIND: EVENTING,
}
