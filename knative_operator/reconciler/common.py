"""Building blocks of the reconcile stages shared by all component kinds."""

import logging
from typing import Any

from knative_operator.client import Client
from knative_operator.component import KComponent
from knative_operator.exceptions import ClusterException, ObjectNotFoundError
from knative_operator.manifest import (
    DEPLOYMENT_KIND,
    Manifest,
    NamedResource,
    by_kind,
    in_,
    is_rbac,
    no_crds,
    none,
)
from knative_operator.status import ComponentStatus
from knative_operator.transform.aggregation import has_aggregation_rule

_LOGGER = logging.getLogger(__name__)


async def install(manifest: Manifest, client: Client, status: ComponentStatus) -> None:
    """Apply the manifest, roles and bindings first.

    InstallSucceeded reflects the outcome; the first failing resource stops
    the install.
    """
    try:
        await manifest.filter(is_rbac).apply(client)
        await manifest.filter(none(is_rbac)).apply(client)
    except ClusterException as err:
        status.mark_install_failed(str(err))
        raise
    status.mark_install_succeeded()


def is_deployment_available(deployment: dict[str, Any]) -> bool:
    """Return True when the deployment has at least its desired replicas available."""
    desired = (deployment.get("spec") or {}).get("replicas")
    if desired is None:
        desired = 1
    available = (deployment.get("status") or {}).get("availableReplicas") or 0
    return available >= desired


async def check_deployments(
    manifest: Manifest, client: Client, status: ComponentStatus
) -> None:
    """Update DeploymentsAvailable from the live deployments of the manifest.

    A deployment that is missing or not yet available is not an error; the
    condition is left False and the next pass checks again.
    """
    for resource_id in manifest.filter(by_kind(DEPLOYMENT_KIND)).keys:
        try:
            deployment = await client.get(resource_id)
        except ObjectNotFoundError:
            _LOGGER.debug("Deployment %s not found", resource_id)
            status.mark_deployments_not_ready()
            return
        if not is_deployment_available(deployment):
            _LOGGER.debug("Deployment %s not available", resource_id)
            status.mark_deployments_not_ready()
            return
    status.mark_deployments_available()


def obsolete_resources(previous: Manifest, target: Manifest) -> Manifest:
    """Return the resources of the previous manifest absent from the target."""
    return previous.filter(none(in_(target)))


def finalizer_removal_patch(
    component: KComponent, finalizer: str
) -> dict[str, Any] | None:
    """Return a merge patch removing the finalizer, or None if it is absent."""
    if finalizer not in component.finalizers:
        return None
    finalizers = sorted(set(component.finalizers) - {finalizer})
    return {
        "metadata": {
            "finalizers": finalizers,
            "resourceVersion": component.resource_version,
        }
    }


def all_being_deleted(instances: list[dict[str, Any]]) -> bool:
    """Return True if every instance carries a deletion timestamp."""
    return all(
        (instance.get("metadata") or {}).get("deletionTimestamp")
        for instance in instances
    )


async def uninstall(manifest: Manifest, client: Client) -> None:
    """Delete the manifest resources, roles and bindings last.

    Roles stay around while everything else is removed so human operators
    can still inspect and clean up. CRDs are never deleted since that would
    delete every custom resource of the type.
    """
    try:
        await manifest.filter(no_crds, none(is_rbac)).delete(client)
    except ClusterException as err:
        raise ClusterException(
            f"failed to remove non-crd/non-rbac resources: {err}"
        ) from err
    try:
        await manifest.filter(is_rbac).delete(client)
    except ClusterException as err:
        raise ClusterException(f"failed to remove rbac: {err}") from err


async def observed_cluster_roles(
    manifest: Manifest, client: Client
) -> dict[NamedResource, dict[str, Any]]:
    """Fetch the live copy of each aggregated ClusterRole in the manifest."""
    observed: dict[NamedResource, dict[str, Any]] = {}
    for resource in manifest.filter(has_aggregation_rule):
        resource_id = NamedResource.from_doc(resource)
        try:
            live = await client.get(resource_id)
        except ObjectNotFoundError:
            continue
        observed[NamedResource.from_doc(live)] = live
    return observed
