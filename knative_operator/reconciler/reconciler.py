"""Reconciler driving a component instance toward its desired version.

A reconcile pass runs the stages of `STAGES` in order against a single
instance. The first failing stage ends the pass with a `StageException`
naming it; the caller is expected to persist the status of the instance
either way and schedule another pass on failure.

```python
reconciler = ComponentReconciler(client, store, SERVING)
await reconciler.reconcile(serving)
write_status(serving.status_doc())
```
"""

import asyncio
import logging
from typing import Any

from knative_operator.client import Client
from knative_operator.component import API_VERSION, KComponent
from knative_operator.config import OperatorConfig
from knative_operator.context import trace_context
from knative_operator.exceptions import (
    InputException,
    OperatorException,
    ResolutionException,
    StageException,
)
from knative_operator.manifest import Manifest, NamedResource
from knative_operator.platform import Extension, NoExtension
from knative_operator.releases import ManifestStore
from knative_operator.transform import Transformer, transform
from knative_operator.transform.aggregation import AggregationRuleTransform
from knative_operator.transform.common import (
    ConfigMapTransform,
    NamespaceTransform,
    OwnerTransform,
)

from .common import (
    all_being_deleted,
    check_deployments,
    finalizer_removal_patch,
    install,
    obsolete_resources,
    observed_cluster_roles,
    uninstall,
)
from .kinds import ComponentKind
from .stages import STAGES, ReconcileState, Stage

__all__ = [
    "ComponentReconciler",
]

_LOGGER = logging.getLogger(__name__)


class ComponentReconciler:
    """Reconciles instances of one component kind."""

    def __init__(
        self,
        client: Client,
        store: ManifestStore,
        kind: ComponentKind,
        extension: Extension | None = None,
        config: OperatorConfig | None = None,
    ) -> None:
        """Initialize ComponentReconciler."""
        self._client = client
        self._store = store
        self._kind = kind
        self._extension = extension or NoExtension()
        self._config = config or OperatorConfig()
        self._stages = {
            Stage.RESOLVE: self._resolve,
            Stage.TRANSFORM: self._transform_stage,
            Stage.FINALIZER_MIGRATION: self._migrate_finalizer,
            Stage.INSTALL: self._install,
            Stage.CHECK_DEPLOYMENTS: self._check_deployments,
            Stage.PRUNE: self._prune,
            Stage.ADVANCE_VERSION: self._advance_version,
        }

    @property
    def kind(self) -> ComponentKind:
        return self._kind

    async def target_version(self, component: KComponent) -> str:
        """Return the version the instance should run.

        In order of preference: the version in the spec, the version already
        installed, the configured version for the kind, the newest version
        on disk.
        """
        if component.spec.version:
            return component.spec.version
        if component.status.version:
            return component.status.version
        if version := self._kind.default_version(self._config):
            return version
        return await self._store.latest_version(self._kind.path)

    async def reconcile(
        self, component: KComponent, timeout: float | None = None
    ) -> None:
        """Run one reconcile pass for the instance, updating its status.

        Raises:
            StageException: A stage failed; the pass stopped there.
            TimeoutError: The pass did not finish within the deadline.
        """
        status = component.status
        status.initialize_conditions()
        status.observed_generation = component.generation
        if timeout is None:
            timeout = self._config.reconcile_timeout
        _LOGGER.info("Reconciling %s %s", self._kind.kind, component.namespaced_name)
        async with asyncio.timeout(timeout):
            with trace_context(f"{self._kind.kind} {component.namespaced_name}"):
                await self._extension.reconcile(component)
                state = ReconcileState(component)
                for stage in STAGES:
                    with trace_context(stage):
                        try:
                            await self._stages[stage](state)
                        except OperatorException as err:
                            _LOGGER.info(
                                "Reconcile of %s failed in stage %s: %s",
                                component.namespaced_name,
                                stage,
                                err,
                            )
                            raise StageException(stage, err) from err
        _LOGGER.info(
            "Reconciled %s %s (ready=%s)",
            self._kind.kind,
            component.namespaced_name,
            status.is_ready(),
        )

    async def finalize(
        self, component: KComponent, timeout: float | None = None
    ) -> None:
        """Remove the cluster-scoped resources of a deleted instance.

        Nothing happens unless the instance holds the finalizer and every
        instance of the kind is being deleted, since the cluster-scoped
        resources are shared between them.
        """
        if not {self._kind.finalizer, self._kind.old_finalizer} & set(
            component.finalizers
        ):
            _LOGGER.debug("%s holds no finalizer", component.namespaced_name)
            return
        if timeout is None:
            timeout = self._config.reconcile_timeout
        async with asyncio.timeout(timeout):
            instances = await self._client.list(API_VERSION, self._kind.kind)
            if not all_being_deleted(instances):
                _LOGGER.info(
                    "Keeping shared resources of %s, other instances remain",
                    self._kind.kind,
                )
                return
            version = component.status.version or await self.target_version(
                component
            )
            _LOGGER.info(
                "Removing %s version %s for %s",
                self._kind.kind,
                version,
                component.namespaced_name,
            )
            manifest = await self._store.resolve(self._kind.path, version)
            manifest = await self.transform(manifest, component)
            await uninstall(manifest, self._client)
            await self._extension.finalize(component)

    def transformers(
        self,
        component: KComponent,
        observed: dict[NamedResource, dict[str, Any]] | None = None,
    ) -> list[Transformer]:
        """Return the transformers for the instance, in the order they run."""
        return [
            NamespaceTransform(component.namespace),
            OwnerTransform(component.owner_reference()),
            ConfigMapTransform(component.spec.config or {}),
            *self._kind.transformers(component),
            AggregationRuleTransform(observed or {}),
            *self._extension.transformers(component),
        ]

    async def transform(self, manifest: Manifest, component: KComponent) -> Manifest:
        """Return a copy of the manifest customized for the instance."""
        observed = await observed_cluster_roles(manifest, self._client)
        return transform(manifest, *self.transformers(component, observed))

    async def _resolve(self, state: ReconcileState) -> None:
        status = state.component.status
        try:
            version = await self.target_version(state.component)
            manifest = await self._store.resolve(self._kind.path, version)
        except ResolutionException as err:
            status.mark_install_failed(str(err))
            raise
        state.target_version = version
        state.manifest = manifest.append()

    async def _transform_stage(self, state: ReconcileState) -> None:
        try:
            state.manifest = await self.transform(
                state.require_manifest(), state.component
            )
        except InputException as err:
            state.component.status.mark_install_failed(str(err))
            raise

    async def _migrate_finalizer(self, state: ReconcileState) -> None:
        component = state.component
        patch = finalizer_removal_patch(component, self._kind.old_finalizer)
        if patch is None:
            return
        _LOGGER.info(
            "Removing finalizer %s from %s",
            self._kind.old_finalizer,
            component.namespaced_name,
        )
        resource_id = NamedResource(
            API_VERSION, self._kind.kind, component.namespace, component.name
        )
        live = await self._client.patch(resource_id, patch)
        component.finalizers = list(patch["metadata"]["finalizers"])
        component.resource_version = live["metadata"].get("resourceVersion")

    async def _install(self, state: ReconcileState) -> None:
        await install(state.require_manifest(), self._client, state.component.status)

    async def _check_deployments(self, state: ReconcileState) -> None:
        await check_deployments(
            state.require_manifest(), self._client, state.component.status
        )

    async def _prune(self, state: ReconcileState) -> None:
        component = state.component
        installed = component.status.version
        if not installed or installed == state.target_version:
            return
        try:
            previous = await self._store.resolve(self._kind.path, installed)
        except ResolutionException as err:
            _LOGGER.error(
                "Unable to fetch previous manifest; some obsolete resources may "
                "remain: %s",
                err,
            )
            return
        previous = await self.transform(previous, component)
        obsolete = obsolete_resources(previous, state.require_manifest())
        _LOGGER.info(
            "Deleting %d obsolete resources of %s version %s",
            len(obsolete),
            self._kind.kind,
            installed,
        )
        await obsolete.delete(self._client)

    async def _advance_version(self, state: ReconcileState) -> None:
        status = state.component.status
        if status.is_ready() and state.target_version:
            status.set_version(state.target_version)
