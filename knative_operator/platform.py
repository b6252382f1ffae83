"""Hooks for platform specific behavior.

A platform (e.g. a vendor distribution) may need extra transformers, or
work to do before a reconcile and after a finalize. The reconcilers take an
`Extension` and call it at those points.
"""

from abc import ABC, abstractmethod
import logging

from .component import KComponent
from .transform import Transformer

__all__ = [
    "Extension",
    "NoExtension",
]

_LOGGER = logging.getLogger(__name__)


class Extension(ABC):
    """Platform specific behavior for the reconcilers."""

    @abstractmethod
    def transformers(self, component: KComponent) -> list[Transformer]:
        """Return extra transformers, run after the built in ones."""

    @abstractmethod
    async def reconcile(self, component: KComponent) -> None:
        """Run before the reconcile stages.

        This is the place to check platform dependencies, reporting them with
        the DependenciesInstalled condition.
        """

    @abstractmethod
    async def finalize(self, component: KComponent) -> None:
        """Run after the cluster-scoped resources are deleted."""


class NoExtension(Extension):
    """The default platform, with no extra behavior."""

    def transformers(self, component: KComponent) -> list[Transformer]:
        return []

    async def reconcile(self, component: KComponent) -> None:
        pass

    async def finalize(self, component: KComponent) -> None:
        pass
