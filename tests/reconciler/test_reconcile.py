"""Tests for reconciling component instances."""

import asyncio
from collections.abc import Awaitable, Callable
import logging
from pathlib import Path
from typing import Any

import pytest
import yaml

from knative_operator.client import ClientEvent, InMemoryClient
from knative_operator.component import KComponent
from knative_operator.config import OperatorConfig
from knative_operator.exceptions import (
    ApplyException,
    ClusterException,
    ManifestNotFoundError,
    StageException,
    TransformException,
)
from knative_operator.manifest import RBAC_KINDS, NamedResource
from knative_operator.platform import Extension
from knative_operator.reconciler import SERVING, ComponentReconciler, Stage
from knative_operator.releases import ManifestCache, ManifestStore
from knative_operator.status import ConditionStatus, ConditionType
from knative_operator.transform import Transformer

CreateComponent = Callable[..., Awaitable[KComponent]]

NAMESPACE = "knative-serving"
CRD_ID = NamedResource(
    "apiextensions.k8s.io/v1",
    "CustomResourceDefinition",
    None,
    "services.serving.knative.dev",
)
ADMIN_ID = NamedResource(
    "rbac.authorization.k8s.io/v1", "ClusterRole", None, "knative-serving-admin"
)
CONTROLLER_ID = NamedResource("apps/v1", "Deployment", NAMESPACE, "controller")
ACTIVATOR_ID = NamedResource("apps/v1", "Deployment", NAMESPACE, "activator")
HPA_ID = NamedResource("autoscaling/v2", "HorizontalPodAutoscaler", NAMESPACE, "activator")
OBSOLETE_ID = NamedResource("v1", "ConfigMap", NAMESPACE, "config-obsolete")
LEADER_ELECTION_ID = NamedResource("v1", "ConfigMap", NAMESPACE, "config-leader-election")
INGRESS_GATEWAY_ID = NamedResource(
    "networking.istio.io/v1alpha3", "Gateway", NAMESPACE, "knative-ingress-gateway"
)


def condition(component: KComponent, condition_type: ConditionType) -> Any:
    result = component.status.get_condition(condition_type)
    assert result
    return result


async def test_fresh_install(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test the first pass installs the latest version."""
    serving = await create_component()
    await serving_reconciler.reconcile(serving)

    status = serving.status
    assert status.observed_generation == 1
    assert condition(serving, ConditionType.INSTALL_SUCCEEDED).is_true
    assert condition(serving, ConditionType.DEPENDENCIES_INSTALLED).is_true
    deployments = condition(serving, ConditionType.DEPLOYMENTS_AVAILABLE)
    assert deployments.is_false
    assert deployments.reason == "NotReady"
    assert not status.is_ready()
    # The version only moves once the instance is ready
    assert status.version is None

    assert await client.get(CRD_ID)
    controller = await client.get(CONTROLLER_ID)
    assert controller["metadata"]["ownerReferences"] == [serving.owner_reference()]
    assert "ownerReferences" not in (await client.get(ADMIN_ID))["metadata"]


async def test_ready_advances_version(
    serving_reconciler: ComponentReconciler,
    create_component: CreateComponent,
    ready_deployments: Callable[[], None],
) -> None:
    """Test the version is recorded once the deployments are available."""
    serving = await create_component()
    await serving_reconciler.reconcile(serving)
    ready_deployments()
    await serving_reconciler.reconcile(serving)

    assert serving.status.is_ready()
    assert condition(serving, ConditionType.READY).status == ConditionStatus.TRUE
    assert serving.status.version == "0.16.0"


async def test_reconcile_idempotent(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
    ready_deployments: Callable[[], None],
) -> None:
    """Test a second pass over a converged install changes nothing."""
    serving = await create_component()
    await serving_reconciler.reconcile(serving)
    ready_deployments()
    await serving_reconciler.reconcile(serving)

    def strip(objs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for obj in objs:
            del obj["metadata"]["resourceVersion"]
        return objs

    before = strip(client.list_objects())
    status_before = serving.status.to_dict()
    await serving_reconciler.reconcile(serving)
    assert strip(client.list_objects()) == before
    assert serving.status.to_dict() == status_before


async def test_install_rbac_first(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test roles and bindings are applied before anything else."""
    serving = await create_component()
    applied: list[NamedResource] = []
    client.add_listener(ClientEvent.APPLIED, lambda rid, obj: applied.append(rid))

    await serving_reconciler.reconcile(serving)

    rbac = [i for i, rid in enumerate(applied) if rid.kind in RBAC_KINDS]
    other = [i for i, rid in enumerate(applied) if rid.kind not in RBAC_KINDS]
    assert rbac
    assert max(rbac) < min(other)


async def test_version_from_config(
    client: InMemoryClient,
    store: ManifestStore,
    config: OperatorConfig,
    create_component: CreateComponent,
) -> None:
    """Test the configured version is used when the instance names none."""
    config.serving_version = "0.15.0"
    reconciler = ComponentReconciler(client, store, SERVING, config=config)
    serving = await create_component()
    await reconciler.reconcile(serving)
    assert await client.get(OBSOLETE_ID)


async def test_version_from_status(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test the installed version is kept when the spec names none."""
    serving = await create_component(status={"version": "0.15.0"})
    assert await serving_reconciler.target_version(serving) == "0.15.0"
    await serving_reconciler.reconcile(serving)
    assert await client.get(OBSOLETE_ID)


async def test_unknown_version(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test a version that can't be resolved fails the install."""
    serving = await create_component(spec={"version": "0.99.0"})
    with pytest.raises(StageException) as exc_info:
        await serving_reconciler.reconcile(serving)

    assert exc_info.value.stage == Stage.RESOLVE
    assert isinstance(exc_info.value.cause, ManifestNotFoundError)
    install = condition(serving, ConditionType.INSTALL_SUCCEEDED)
    assert install.is_false
    assert "0.99.0" in install.message
    assert not serving.status.is_ready()
    assert client.list_objects("Deployment") == []


async def test_transform_error(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test a transformer failure fails the install before anything is applied."""
    serving = await create_component(
        spec={"controllerCustomCerts": {"type": "Volume", "name": "certs"}}
    )
    with pytest.raises(StageException) as exc_info:
        await serving_reconciler.reconcile(serving)

    assert exc_info.value.stage == Stage.TRANSFORM
    assert isinstance(exc_info.value.cause, TransformException)
    install = condition(serving, ConditionType.INSTALL_SUCCEEDED)
    assert install.is_false
    assert "Unknown CustomCerts type" in install.message
    assert client.list_objects("Deployment") == []


class FailingClient(InMemoryClient):
    """Client failing to apply a deployment."""

    async def apply(self, resource: dict[str, Any]) -> dict[str, Any]:
        if resource["kind"] == "Deployment":
            raise ClusterException("admission webhook denied the request")
        return await super().apply(resource)


async def test_apply_failure(store: ManifestStore, config: OperatorConfig) -> None:
    """Test an apply failure marks the install failed."""
    client = FailingClient()
    reconciler = ComponentReconciler(client, store, SERVING, config=config)
    live = await client.apply(
        {
            "apiVersion": "operator.knative.dev/v1alpha1",
            "kind": "KnativeServing",
            "metadata": {"name": "ks", "namespace": NAMESPACE},
        }
    )
    serving = reconciler.kind.component_cls.parse_doc(live)

    with pytest.raises(StageException) as exc_info:
        await reconciler.reconcile(serving)

    assert exc_info.value.stage == Stage.INSTALL
    assert isinstance(exc_info.value.cause, ApplyException)
    install = condition(serving, ConditionType.INSTALL_SUCCEEDED)
    assert install.is_false
    assert "Deployment/knative-serving/activator" in install.message
    assert "admission webhook denied" in install.message
    assert serving.status.version is None


async def test_upgrade_prunes_obsolete(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
    ready_deployments: Callable[[], None],
) -> None:
    """Test resources dropped by the new version are deleted."""
    serving = await create_component(spec={"version": "0.15.0"})
    await serving_reconciler.reconcile(serving)
    ready_deployments()
    await serving_reconciler.reconcile(serving)
    assert serving.status.version == "0.15.0"
    assert await client.get(OBSOLETE_ID)

    serving.spec.version = "0.16.0"
    await serving_reconciler.reconcile(serving)

    assert serving.status.version == "0.16.0"
    assert not [
        obj
        for obj in client.list_objects("ConfigMap")
        if obj["metadata"]["name"] == "config-obsolete"
    ]
    assert await client.get(HPA_ID)
    assert await client.get(INGRESS_GATEWAY_ID)
    assert await client.get(CRD_ID)


async def test_prune_previous_unresolvable(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test a previous version that can't be resolved does not fail the pass."""
    stray = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "config-stray", "namespace": NAMESPACE},
    }
    await client.apply(stray)
    serving = await create_component(
        spec={"version": "0.16.0"}, status={"version": "0.14.0"}
    )
    with caplog.at_level(logging.ERROR):
        await serving_reconciler.reconcile(serving)

    assert "Unable to fetch previous manifest" in caplog.text
    assert await client.get(NamedResource.from_doc(stray))
    assert condition(serving, ConditionType.INSTALL_SUCCEEDED).is_true


async def test_deployments_not_available(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
    ready_deployments: Callable[[], None],
) -> None:
    """Test a deployment below its desired replicas holds back readiness."""
    serving = await create_component(spec={"highAvailability": {"replicas": 2}})
    await serving_reconciler.reconcile(serving)
    ready_deployments()
    client.set_status(CONTROLLER_ID, {"availableReplicas": 1})

    await serving_reconciler.reconcile(serving)
    deployments = condition(serving, ConditionType.DEPLOYMENTS_AVAILABLE)
    assert deployments.is_false
    assert deployments.message == "Waiting on deployments"
    assert serving.status.version is None

    client.set_status(CONTROLLER_ID, {"availableReplicas": 2})
    await serving_reconciler.reconcile(serving)
    assert serving.status.is_ready()


async def test_instance_customization(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test the spec of the instance shapes the installed resources."""
    serving = await create_component(
        namespace="serving-system",
        spec={
            "highAvailability": {"replicas": 3},
            "config": {"autoscaler": {"container-concurrency-target-default": "50"}},
            "knative-ingress-gateway": {"selector": {"custom": "ingressgateway"}},
            "controllerCustomCerts": {"type": "Secret", "name": "my-certs"},
        },
    )
    await serving_reconciler.reconcile(serving)

    def get(rid: NamedResource) -> Any:
        return client.get(
            NamedResource(rid.api_version, rid.kind, "serving-system", rid.name)
        )

    controller = await get(CONTROLLER_ID)
    assert controller["spec"]["replicas"] == 3
    pod = controller["spec"]["template"]["spec"]
    assert pod["volumes"] == [
        {"name": "custom-certs-my-certs", "secret": {"secretName": "my-certs"}}
    ]
    assert (await get(ACTIVATOR_ID))["spec"]["replicas"] == 1
    assert (await get(HPA_ID))["spec"]["minReplicas"] == 3
    leader_election = await get(LEADER_ELECTION_ID)
    assert "controller" in leader_election["data"]["enabledComponents"]
    autoscaler = await get(
        NamedResource("v1", "ConfigMap", NAMESPACE, "config-autoscaler")
    )
    assert autoscaler["data"] == {"container-concurrency-target-default": "50"}
    gateway = await get(INGRESS_GATEWAY_ID)
    assert gateway["spec"]["selector"] == {"custom": "ingressgateway"}

    binding = await client.get(
        NamedResource(
            "rbac.authorization.k8s.io/v1",
            "ClusterRoleBinding",
            None,
            "knative-serving-controller-admin",
        )
    )
    assert binding["subjects"][0]["namespace"] == "serving-system"


async def test_aggregated_rules_preserved(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test the live rules of an aggregated ClusterRole are kept."""
    live_rules = [{"apiGroups": ["serving.knative.dev"], "resources": ["*"], "verbs": ["*"]}]
    extra_selector = {"matchLabels": {"example.com/aggregate": "true"}}
    await client.apply(
        {
            "apiVersion": ADMIN_ID.api_version,
            "kind": "ClusterRole",
            "metadata": {"name": ADMIN_ID.name},
            "aggregationRule": {"clusterRoleSelectors": [extra_selector]},
            "rules": live_rules,
        }
    )
    serving = await create_component()
    await serving_reconciler.reconcile(serving)

    admin = await client.get(ADMIN_ID)
    assert admin["rules"] == live_rules
    assert admin["aggregationRule"]["clusterRoleSelectors"] == [
        {"matchLabels": {"serving.knative.dev/controller": "true"}},
        extra_selector,
    ]


async def test_finalizer_migration(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test the finalizer of older releases is removed exactly once."""
    serving = await create_component(
        finalizers=[
            "knativeservings.operator.knative.dev",
            "delete-knative-serving-manifest",
            "example.com/other",
        ]
    )
    patches: list[dict[str, Any] | None] = []
    client.add_listener(ClientEvent.PATCHED, lambda rid, obj: patches.append(obj))

    await serving_reconciler.reconcile(serving)
    await serving_reconciler.reconcile(serving)

    expected = ["example.com/other", "knativeservings.operator.knative.dev"]
    assert len(patches) == 1
    live = await client.get(
        NamedResource(
            "operator.knative.dev/v1alpha1", "KnativeServing", NAMESPACE, "knative-serving"
        )
    )
    assert live["metadata"]["finalizers"] == expected
    assert serving.finalizers == expected
    assert serving.resource_version == live["metadata"]["resourceVersion"]


async def test_finalizer_migration_conflict(
    serving_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
) -> None:
    """Test a stale instance fails the migration stage."""
    serving = await create_component(finalizers=["delete-knative-serving-manifest"])
    serving.resource_version = "0"
    with pytest.raises(StageException) as exc_info:
        await serving_reconciler.reconcile(serving)
    assert exc_info.value.stage == Stage.FINALIZER_MIGRATION
    assert serving.finalizers == ["delete-knative-serving-manifest"]


class SlowClient(InMemoryClient):
    """Client that never finishes applying a deployment."""

    async def apply(self, resource: dict[str, Any]) -> dict[str, Any]:
        if resource["kind"] == "Deployment":
            await asyncio.sleep(10)
        return await super().apply(resource)


async def test_timeout(store: ManifestStore, config: OperatorConfig) -> None:
    """Test a pass that runs out of time leaves the version alone."""
    client = SlowClient()
    reconciler = ComponentReconciler(client, store, SERVING, config=config)
    live = await client.apply(
        {
            "apiVersion": "operator.knative.dev/v1alpha1",
            "kind": "KnativeServing",
            "metadata": {"name": "ks", "namespace": NAMESPACE},
        }
    )
    serving = reconciler.kind.component_cls.parse_doc(live)

    with pytest.raises(TimeoutError):
        await reconciler.reconcile(serving, timeout=0.05)
    assert serving.status.version is None
    assert not serving.status.is_ready()


class LabelExtension(Extension):
    """Platform adding a label and waiting on a dependency."""

    def __init__(self) -> None:
        self.reconciled: list[str] = []

    def transformers(self, component: KComponent) -> list[Transformer]:
        def label(resource: dict[str, Any]) -> dict[str, Any]:
            labels = resource["metadata"].setdefault("labels", {})
            labels["platform.example.com/managed"] = "true"
            return resource

        return [label]

    async def reconcile(self, component: KComponent) -> None:
        self.reconciled.append(component.name)
        component.status.mark_dependency_installing("service mesh")

    async def finalize(self, component: KComponent) -> None:
        pass


async def test_extension(
    client: InMemoryClient,
    store: ManifestStore,
    config: OperatorConfig,
    create_component: CreateComponent,
    ready_deployments: Callable[[], None],
) -> None:
    """Test the platform hooks run as part of the pass."""
    extension = LabelExtension()
    reconciler = ComponentReconciler(
        client, store, SERVING, extension=extension, config=config
    )
    serving = await create_component()
    await reconciler.reconcile(serving)
    ready_deployments()
    await reconciler.reconcile(serving)

    assert extension.reconciled == ["knative-serving", "knative-serving"]
    controller = await client.get(CONTROLLER_ID)
    assert controller["metadata"]["labels"] == {"platform.example.com/managed": "true"}
    dependencies = condition(serving, ConditionType.DEPENDENCIES_INSTALLED)
    assert dependencies.reason == "Installing"
    assert not serving.status.is_ready()
    assert serving.status.version is None


async def test_eventing(
    eventing_reconciler: ComponentReconciler,
    client: InMemoryClient,
    create_component: CreateComponent,
    ready_deployments: Callable[[], None],
) -> None:
    """Test reconciling a KnativeEventing."""
    eventing = await create_component(
        kind="KnativeEventing",
        name="knative-eventing",
        namespace="knative-eventing",
        spec={"defaultBrokerClass": "Kafka", "highAvailability": {"replicas": 2}},
    )
    await eventing_reconciler.reconcile(eventing)
    ready_deployments()
    await eventing_reconciler.reconcile(eventing)
    assert eventing.status.is_ready()
    assert eventing.status.version == "0.16.0"

    defaults = await client.get(
        NamedResource("v1", "ConfigMap", "knative-eventing", "config-br-defaults")
    )
    config = yaml.safe_load(defaults["data"]["default-br-config"])
    assert config["clusterDefault"]["brokerClass"] == "Kafka"
    assert config["clusterDefault"]["name"] == "config-br-default-channel"

    controller = await client.get(
        NamedResource("apps/v1", "Deployment", "knative-eventing", "eventing-controller")
    )
    assert controller["spec"]["replicas"] == 2
    webhook = await client.get(
        NamedResource("apps/v1", "Deployment", "knative-eventing", "eventing-webhook")
    )
    assert webhook["spec"]["replicas"] == 1


MALFORMED_BINDING = """\
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRoleBinding
metadata:
  name: knative-serving-controller-admin
subjects:
- controller
"""

MALFORMED_OWNERS = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: webhook
  namespace: knative-serving
  ownerReferences:
  - knative-serving
"""

MALFORMED_LEADER_ELECTION = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: config-leader-election
  namespace: knative-serving
data:
- enabledComponents
"""


@pytest.mark.parametrize(
    ("content", "resource"),
    [
        (MALFORMED_BINDING, "ClusterRoleBinding/knative-serving-controller-admin"),
        (MALFORMED_OWNERS, "Deployment/knative-serving/webhook"),
        (MALFORMED_LEADER_ELECTION, "ConfigMap/knative-serving/config-leader-election"),
    ],
)
async def test_malformed_manifest(
    tmp_path: Path,
    client: InMemoryClient,
    create_component: CreateComponent,
    content: str,
    resource: str,
) -> None:
    """Test a malformed resource fails the transform stage and names the resource."""
    release = tmp_path / "knative-serving" / "1.0.0"
    release.mkdir(parents=True)
    (release / "serving.yaml").write_text(content)
    reconciler = ComponentReconciler(
        client, ManifestStore(tmp_path, ManifestCache()), SERVING
    )
    serving = await create_component(
        spec={"version": "1.0.0", "highAvailability": {"replicas": 2}}
    )

    with pytest.raises(StageException) as exc_info:
        await reconciler.reconcile(serving)

    assert exc_info.value.stage == Stage.TRANSFORM
    assert isinstance(exc_info.value.cause, TransformException)
    install = condition(serving, ConditionType.INSTALL_SUCCEEDED)
    assert install.is_false
    assert resource in install.message
    assert client.list_objects("Deployment") == []
