"""Exceptions related to knative-operator-local."""

from typing import Any

__all__ = [
    "OperatorException",
    "InputException",
    "TransformException",
    "ResolutionException",
    "ManifestNotFoundError",
    "ManifestEmptyError",
    "ReleaseListException",
    "ClusterException",
    "ObjectNotFoundError",
    "ConflictError",
    "ApplyException",
    "StageException",
]


class OperatorException(Exception):
    """Generic base exception used for this library."""


class InputException(OperatorException):
    """Raised when the input documents or values are not formatted as expected."""


class TransformException(InputException):
    """Raised when a transform finds a malformed resource structure."""

    def __init__(self, message: str, resource_id: Any | None = None) -> None:
        if resource_id is not None:
            super().__init__(f"Failed to transform {resource_id}: {message}")
        else:
            super().__init__(message)
        self.resource_id = resource_id


class ResolutionException(OperatorException):
    """Raised when a manifest for a version can't be resolved."""


class ManifestNotFoundError(ResolutionException):
    """Raised when no on-disk manifest exists for a version."""


class ManifestEmptyError(ResolutionException):
    """Raised when the manifest for a version contains no resources."""


class ReleaseListException(ResolutionException):
    """Raised when the available versions for a component can't be listed."""


class ClusterException(OperatorException):
    """Raised when there is a failure talking to the cluster."""


class ObjectNotFoundError(ClusterException):
    """Raised when an object is not found in the cluster."""


class ConflictError(ClusterException):
    """Raised when a write is based on a stale resourceVersion."""


class ApplyException(ClusterException):
    """Raised when a resource from a manifest could not be applied."""

    def __init__(self, resource_id: Any, message: str) -> None:
        super().__init__(f"Failed to apply {resource_id}: {message}")
        self.resource_id = resource_id


class StageException(OperatorException):
    """Raised when a reconcile stage fails, wrapping the underlying error."""

    def __init__(self, stage: str, cause: Exception) -> None:
        super().__init__(f"Stage {stage} failed: {cause}")
        self.stage = stage
        self.cause = cause
