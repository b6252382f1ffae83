"""Library for resolving component versions to manifests stored on disk.

Manifests are laid out as one directory per component, holding one
directory per version of declarative resource documents:

```
$KO_DATA_PATH/
  knative-serving/
    0.15.0/serving-core.yaml
    0.16.0/serving-core.yaml
  knative-eventing/
    0.16.0/eventing.yaml
```

Published versions never change, so a resolved manifest is cached for the
life of the process:
```python
from knative_operator.releases import ManifestStore

store = ManifestStore(Path("/var/run/ko"))
manifest = await store.resolve("knative-serving", "0.16.0")
```
"""

import logging
from pathlib import Path
import re

import aiofiles
import aiofiles.os
from aiofiles.ospath import isdir

from .exceptions import (
    ManifestEmptyError,
    ManifestNotFoundError,
    ReleaseListException,
)
from .manifest import Manifest, parse_docs

__all__ = [
    "ManifestCache",
    "ManifestStore",
    "get_manifest_cache",
    "version_sort_key",
]

_LOGGER = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")


def version_sort_key(version: str) -> tuple[tuple[int, int, str], ...]:
    """Return a key ordering versions numerically where possible.

    `0.10.0` sorts above `0.9.0`; non numeric parts compare as strings.
    """
    parts = re.split(r"[.\-+]", version.lstrip("v"))
    return tuple((1, int(p), "") if p.isdigit() else (0, 0, p) for p in parts)


class ManifestCache:
    """Process wide cache of resolved manifests.

    Entries are published once per key and never invalidated. Two concurrent
    resolutions of the same key may both compute a value; the last one to
    publish wins, which is harmless since both are identical.
    """

    def __init__(self) -> None:
        """Initialize the cache."""
        self._manifests: dict[tuple[str, str], Manifest] = {}

    def get(self, component: str, version: str) -> Manifest | None:
        return self._manifests.get((component, version))

    def publish(self, component: str, version: str, manifest: Manifest) -> None:
        _LOGGER.debug("Caching manifest %s/%s", component, version)
        self._manifests[(component, version)] = manifest

    def clear(self) -> None:
        self._manifests.clear()

    def __len__(self) -> int:
        return len(self._manifests)


# Create a singleton instance for the application
_manifest_cache = ManifestCache()


def get_manifest_cache() -> ManifestCache:
    """Get the singleton ManifestCache instance."""
    return _manifest_cache


class ManifestStore:
    """Resolves component versions to manifests under a root directory."""

    def __init__(self, root: Path, cache: ManifestCache | None = None) -> None:
        """Initialize ManifestStore.

        Args:
            root: Directory holding one subdirectory per component.
            cache: Cache for resolved manifests, defaults to the process cache.
        """
        self._root = root
        self._cache = cache if cache is not None else get_manifest_cache()

    @property
    def root(self) -> Path:
        return self._root

    def manifest_path(self, component: str, version: str) -> Path:
        """Return the directory holding the manifest for the version."""
        return self._root / component / version

    async def resolve(self, component: str, version: str) -> Manifest:
        """Return the manifest for the component version.

        The returned manifest is shared; use `append()` to get a copy before
        building on it.

        Raises:
            ManifestNotFoundError: No directory exists for the version.
            ManifestEmptyError: The directory holds no resources.
        """
        if (manifest := self._cache.get(component, version)) is not None:
            return manifest
        path = self.manifest_path(component, version)
        if not version or not await isdir(path):
            raise ManifestNotFoundError(
                f"No manifest found for {component} version '{version}' at {path}"
            )
        resources = []
        for filename in sorted(await aiofiles.os.listdir(path)):
            if not filename.endswith(MANIFEST_SUFFIXES):
                continue
            _LOGGER.debug("Reading manifest file %s", path / filename)
            async with aiofiles.open(path / filename) as manifest_file:
                content = await manifest_file.read()
            resources.extend(parse_docs(content))
        if not resources:
            raise ManifestEmptyError(
                f"Manifest for {component} version '{version}' at {path} is empty"
            )
        manifest = Manifest(resources)
        _LOGGER.info(
            "Resolved %s version %s with %d resources",
            component,
            version,
            len(manifest),
        )
        self._cache.publish(component, version, manifest)
        return manifest

    async def list_available_versions(self, component: str) -> list[str]:
        """Return the versions available for the component, newest first.

        Raises:
            ReleaseListException: The directory can't be read or is empty.
        """
        path = self._root / component
        try:
            entries = await aiofiles.os.listdir(path)
        except OSError as err:
            raise ReleaseListException(
                f"Unable to list versions for {component} at {path}: {err}"
            ) from err
        versions = [entry for entry in entries if await isdir(path / entry)]
        if not versions:
            raise ReleaseListException(
                f"Unable to find an available version for {component} at {path}"
            )
        return sorted(versions, key=version_sort_key, reverse=True)

    async def latest_version(self, component: str) -> str:
        """Return the newest version available for the component."""
        versions = await self.list_available_versions(component)
        return versions[0]
