"""Test fixtures for the reconcilers."""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest

from knative_operator.client import InMemoryClient
from knative_operator.component import API_VERSION, KComponent, parse_component
from knative_operator.config import OperatorConfig
from knative_operator.manifest import NamedResource
from knative_operator.reconciler import EVENTING, SERVING, ComponentReconciler
from knative_operator.releases import ManifestStore

KODATA = Path(__file__).parent.parent / "testdata" / "kodata"

CreateComponent = Callable[..., Awaitable[KComponent]]


@pytest.fixture
def config() -> OperatorConfig:
    """Create an operator config reading the test releases."""
    return OperatorConfig(manifest_root=KODATA)


@pytest.fixture
def serving_reconciler(
    client: InMemoryClient, store: ManifestStore, config: OperatorConfig
) -> ComponentReconciler:
    """Create a reconciler for KnativeServing."""
    return ComponentReconciler(client, store, SERVING, config=config)


@pytest.fixture
def eventing_reconciler(
    client: InMemoryClient, store: ManifestStore, config: OperatorConfig
) -> ComponentReconciler:
    """Create a reconciler for KnativeEventing."""
    return ComponentReconciler(client, store, EVENTING, config=config)


@pytest.fixture
def create_component(client: InMemoryClient) -> CreateComponent:
    """Create a component instance in the cluster and return its parsed form."""

    async def create(
        kind: str = "KnativeServing",
        name: str = "knative-serving",
        namespace: str = "knative-serving",
        spec: dict[str, Any] | None = None,
        status: dict[str, Any] | None = None,
        **metadata: Any,
    ) -> KComponent:
        doc: dict[str, Any] = {
            "apiVersion": API_VERSION,
            "kind": kind,
            "metadata": {
                "name": name,
                "namespace": namespace,
                "generation": 1,
                **metadata,
            },
            "spec": spec or {},
        }
        live = await client.apply(doc)
        if status is not None:
            client.set_status(NamedResource.from_doc(live), status)
            live["status"] = status
        return parse_component(live)

    return create


@pytest.fixture
def ready_deployments(client: InMemoryClient) -> Callable[[], None]:
    """Return a function marking every deployment in the cluster available."""

    def mark_ready() -> None:
        for deployment in client.list_objects("Deployment"):
            replicas = (deployment.get("spec") or {}).get("replicas", 1)
            client.set_status(
                NamedResource.from_doc(deployment), {"availableReplicas": replicas}
            )

    return mark_ready
