"""The ordered stages of a reconcile pass."""

from dataclasses import dataclass
from enum import StrEnum

from knative_operator.component import KComponent
from knative_operator.manifest import Manifest


class Stage(StrEnum):
    """A step of a reconcile pass."""

    RESOLVE = "Resolve"
    TRANSFORM = "Transform"
    FINALIZER_MIGRATION = "FinalizerMigration"
    INSTALL = "Install"
    CHECK_DEPLOYMENTS = "CheckDeployments"
    PRUNE = "Prune"
    ADVANCE_VERSION = "AdvanceVersion"


# Stages run strictly in this order; the first failure ends the pass.
STAGES: tuple[Stage, ...] = (
    Stage.RESOLVE,
    Stage.TRANSFORM,
    Stage.FINALIZER_MIGRATION,
    Stage.INSTALL,
    Stage.CHECK_DEPLOYMENTS,
    Stage.PRUNE,
    Stage.ADVANCE_VERSION,
)


@dataclass
class ReconcileState:
    """State threaded through the stages of one pass.

    Nothing here outlives the pass; a new pass always starts from RESOLVE.
    """

    component: KComponent
    target_version: str | None = None
    manifest: Manifest | None = None

    def require_manifest(self) -> Manifest:
        if self.manifest is None:
            raise RuntimeError("Manifest accessed before the resolve stage")
        return self.manifest
