"""Test fixtures shared by all tests."""

from pathlib import Path

import pytest

from knative_operator.client import InMemoryClient
from knative_operator.releases import ManifestCache, ManifestStore

TESTDATA = Path(__file__).parent / "testdata"
KODATA = TESTDATA / "kodata"


@pytest.fixture
def cache() -> ManifestCache:
    """Create a manifest cache private to the test."""
    return ManifestCache()


@pytest.fixture
def store(cache: ManifestCache) -> ManifestStore:
    """Create a manifest store reading the test releases."""
    return ManifestStore(KODATA, cache)


@pytest.fixture
def client() -> InMemoryClient:
    """Create an in-memory cluster."""
    return InMemoryClient()
