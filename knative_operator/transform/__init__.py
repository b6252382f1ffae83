"""Transformers applied to every resource of a manifest.

A transformer is a callable that takes one raw kubernetes object and returns
it, mutated when the transformer targets it and untouched otherwise. Each
transformer receives its own copy of the resource, so a manifest handed out
by the cache is never modified:

```python
from knative_operator.transform import transform
from knative_operator.transform.common import NamespaceTransform

manifest = transform(manifest, NamespaceTransform("knative-serving"))
```

A transformer raises `TransformException` when the resource is malformed.
The error aborts the whole pipeline and no partial manifest is produced.
"""

from collections.abc import Callable
import logging
from typing import Any

from knative_operator.exceptions import InputException, TransformException
from knative_operator.manifest import Manifest, NamedResource

__all__ = [
    "Transformer",
    "compose",
    "transform",
]

_LOGGER = logging.getLogger(__name__)

Transformer = Callable[[dict[str, Any]], dict[str, Any]]


def compose(*transformers: Transformer) -> Transformer:
    """Return a transformer running each of the transformers in order."""

    def composed(resource: dict[str, Any]) -> dict[str, Any]:
        for transformer in transformers:
            resource = transformer(resource)
        return resource

    return composed


def transform(manifest: Manifest, *transformers: Transformer) -> Manifest:
    """Return a new manifest with the transformers applied to every resource."""
    pipeline = compose(*transformers)
    results = []
    for resource in manifest.resources:
        resource_id = NamedResource.from_doc(resource)
        try:
            results.append(pipeline(resource))
        except TransformException as err:
            if err.resource_id is not None:
                raise
            raise TransformException(str(err), resource_id) from err
        except InputException as err:
            raise TransformException(str(err), resource_id) from err
    _LOGGER.debug("Transformed %d resources", len(results))
    return Manifest(results)
