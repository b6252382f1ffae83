"""Representation of the custom resources describing a component install.

Each managed component (serving, eventing) is described by one custom
resource. The spec is the desired configuration and is read only to the
reconciler; the status is written exclusively by the reconciler.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .exceptions import InputException
from .status import ComponentStatus

__all__ = [
    "HighAvailability",
    "IstioGatewayOverride",
    "CustomCerts",
    "CommonSpec",
    "ServingSpec",
    "EventingSpec",
    "KComponent",
    "KnativeServing",
    "KnativeEventing",
    "parse_component",
]

OPERATOR_DOMAIN = "operator.knative.dev"
API_VERSION = f"{OPERATOR_DOMAIN}/v1alpha1"
SERVING_KIND = "KnativeServing"
EVENTING_KIND = "KnativeEventing"


@dataclass
class BaseSpec(DataClassDictMixin):
    """Base class for all spec objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class HighAvailability(BaseSpec):
    """High availability settings for the control plane."""

    replicas: int = 1
    """The number of replicas for HA enabled components."""


@dataclass
class IstioGatewayOverride(BaseSpec):
    """Overrides for one of the well-known istio gateways."""

    selector: dict[str, str] | None = None
    """Replaces the selector of the gateway."""


@dataclass
class IstioIngressConfiguration(BaseSpec):
    """Istio specific ingress settings."""

    enabled: bool = True

    knative_ingress_gateway: IstioGatewayOverride | None = field(
        metadata=field_options(alias="knativeIngressGateway"), default=None
    )
    """Overrides for the knative-ingress-gateway."""

    cluster_local_gateway: IstioGatewayOverride | None = field(
        metadata=field_options(alias="clusterLocalGateway"), default=None
    )
    """Overrides for the cluster-local-gateway."""


@dataclass
class IngressConfigs(BaseSpec):
    """Ingress settings per networking layer."""

    istio: IstioIngressConfiguration | None = None


@dataclass
class CustomCerts(BaseSpec):
    """A ConfigMap or Secret holding CA certificates trusted by the controller."""

    type: str = ""
    """One of ConfigMap or Secret."""

    name: str = ""
    """The name of the ConfigMap or Secret."""

    @property
    def empty(self) -> bool:
        return not self.type and not self.name


@dataclass
class CommonSpec(BaseSpec):
    """Configuration shared by all components."""

    version: str | None = None
    """The version of the component to install."""

    high_availability: HighAvailability | None = field(
        metadata=field_options(alias="highAvailability"), default=None
    )
    """Replica settings for the control plane."""

    config: dict[str, dict[str, str]] | None = None
    """ConfigMap data overrides keyed by ConfigMap name."""


@dataclass
class ServingSpec(CommonSpec):
    """Desired state of a KnativeServing."""

    ingress: IngressConfigs | None = None

    deprecated_knative_ingress_gateway: IstioGatewayOverride | None = field(
        metadata=field_options(alias="knative-ingress-gateway"), default=None
    )
    """Deprecated location of the knative-ingress-gateway override."""

    deprecated_cluster_local_gateway: IstioGatewayOverride | None = field(
        metadata=field_options(alias="cluster-local-gateway"), default=None
    )
    """Deprecated location of the cluster-local-gateway override."""

    controller_custom_certs: CustomCerts | None = field(
        metadata=field_options(alias="controllerCustomCerts"), default=None
    )

    deprecated_controller_custom_certs: CustomCerts | None = field(
        metadata=field_options(alias="controller-custom-certs"), default=None
    )

    def _istio(self) -> IstioIngressConfiguration | None:
        if self.ingress is None:
            return None
        return self.ingress.istio

    def ingress_gateway_override(self) -> IstioGatewayOverride | None:
        """Return the knative-ingress-gateway override, honoring the deprecated field."""
        if (istio := self._istio()) and istio.knative_ingress_gateway is not None:
            return istio.knative_ingress_gateway
        return self.deprecated_knative_ingress_gateway

    def local_gateway_override(self) -> IstioGatewayOverride | None:
        """Return the cluster-local-gateway override, honoring the deprecated field."""
        if (istio := self._istio()) and istio.cluster_local_gateway is not None:
            return istio.cluster_local_gateway
        return self.deprecated_cluster_local_gateway

    def custom_certs(self) -> CustomCerts | None:
        if self.controller_custom_certs is not None:
            return self.controller_custom_certs
        return self.deprecated_controller_custom_certs


@dataclass
class EventingSpec(CommonSpec):
    """Desired state of a KnativeEventing."""

    default_broker_class: str | None = field(
        metadata=field_options(alias="defaultBrokerClass"), default=None
    )
    """The broker class used when a Broker does not name one."""


@dataclass
class KComponent:
    """A managed component instance.

    Subclasses bind the kind and the spec type.
    """

    kind: ClassVar[str]
    spec_cls: ClassVar[type[CommonSpec]] = CommonSpec

    name: str
    """The name of the custom resource."""

    namespace: str
    """The namespace the component is installed into."""

    spec: CommonSpec = field(default_factory=CommonSpec)
    status: ComponentStatus = field(default_factory=ComponentStatus)

    uid: str | None = None
    generation: int | None = None
    resource_version: str | None = None
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: str | None = None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "KComponent":
        """Parse a component from a kubernetes resource object."""
        if not (api_version := doc.get("apiVersion")):
            raise InputException(f"Invalid {cls.__name__} missing apiVersion: {doc}")
        if not api_version.startswith(OPERATOR_DOMAIN):
            raise InputException(
                f"Invalid {cls.__name__} expected '{OPERATOR_DOMAIN}': {doc}"
            )
        if doc.get("kind") != cls.kind:
            raise InputException(f"Invalid {cls.__name__} expected kind {cls.kind}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls.__name__} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls.__name__} missing metadata.name: {doc}")
        if not (namespace := metadata.get("namespace")):
            raise InputException(
                f"Invalid {cls.__name__} missing metadata.namespace: {doc}"
            )
        try:
            spec = cls.spec_cls.from_dict(doc.get("spec") or {})
            status = ComponentStatus.from_dict(doc.get("status") or {})
        except (MissingField, InvalidFieldValue) as err:
            raise InputException(f"Invalid {cls.__name__} {name}: {err}") from err
        return cls(
            name=name,
            namespace=namespace,
            spec=spec,
            status=status,
            uid=metadata.get("uid"),
            generation=metadata.get("generation"),
            resource_version=metadata.get("resourceVersion"),
            finalizers=list(metadata.get("finalizers") or ()),
            deletion_timestamp=metadata.get("deletionTimestamp"),
        )

    @property
    def api_version(self) -> str:
        return API_VERSION

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.namespace}/{self.name}"

    @property
    def being_deleted(self) -> bool:
        return bool(self.deletion_timestamp)

    def get_spec(self) -> CommonSpec:
        return self.spec

    def get_status(self) -> ComponentStatus:
        return self.status

    def owner_reference(self) -> dict[str, Any]:
        """Return an owner reference pointing at this instance."""
        ref: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "controller": True,
            "blockOwnerDeletion": True,
        }
        if self.uid:
            ref["uid"] = self.uid
        return ref

    def status_doc(self) -> dict[str, Any]:
        """Return the status as it is written back to the cluster."""
        return self.status.to_dict()


@dataclass
class KnativeServing(KComponent):
    """Desired and observed state of a Knative Serving install."""

    kind: ClassVar[str] = SERVING_KIND
    spec_cls: ClassVar[type[CommonSpec]] = ServingSpec

    spec: ServingSpec = field(default_factory=ServingSpec)


@dataclass
class KnativeEventing(KComponent):
    """Desired and observed state of a Knative Eventing install."""

    kind: ClassVar[str] = EVENTING_KIND
    spec_cls: ClassVar[type[CommonSpec]] = EventingSpec

    spec: EventingSpec = field(default_factory=EventingSpec)


def parse_component(doc: dict[str, Any]) -> KComponent:
    """Parse a raw custom resource into the matching component type."""
    kind = doc.get("kind")
    if kind == SERVING_KIND:
        return KnativeServing.parse_doc(doc)
    if kind == EVENTING_KIND:
        return KnativeEventing.parse_doc(doc)
    raise InputException(f"Unsupported component kind {kind}: {doc}")
