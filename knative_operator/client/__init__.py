"""
The client module provides the interface the reconcilers use to talk to the cluster.

- Objects are raw kubernetes documents keyed by NamedResource.
- Provides get/list/apply/patch/delete plus listeners for observing writes.

This abstract interface allows for various implementations (in-memory, API server, etc.).
"""

from .client import Client, ClientEvent
from .in_memory import InMemoryClient

__all__ = [
    "Client",
    "ClientEvent",
    "InMemoryClient",
]
