"""Reconcilers for the managed components."""

from .kinds import EVENTING, KINDS, SERVING, ComponentKind
from .reconciler import ComponentReconciler
from .stages import STAGES, Stage

__all__ = [
    "ComponentKind",
    "ComponentReconciler",
    "EVENTING",
    "KINDS",
    "SERVING",
    "STAGES",
    "Stage",
]
