"""Configuration objects for knative-operator-local."""

from dataclasses import dataclass, field
import os
from pathlib import Path

# Environment variable naming the root of the on-disk manifests.
KO_DATA_PATH_ENV = "KO_DATA_PATH"
SERVING_VERSION_ENV = "SERVING_VERSION"
EVENTING_VERSION_ENV = "EVENTING_VERSION"
RECONCILE_TIMEOUT_ENV = "RECONCILE_TIMEOUT"

DEFAULT_KO_DATA_PATH = "/var/run/ko"


def _default_root() -> Path:
    return Path(os.environ.get(KO_DATA_PATH_ENV, DEFAULT_KO_DATA_PATH))


@dataclass
class OperatorConfig:
    """Configuration for the component reconcilers."""

    manifest_root: Path = field(default_factory=_default_root)
    """Directory holding one subdirectory of versioned manifests per component."""

    serving_version: str | None = None
    """Version installed when neither spec nor status name one, else the latest."""

    eventing_version: str | None = None
    """Version installed when neither spec nor status name one, else the latest."""

    reconcile_timeout: float | None = None
    """Deadline in seconds for a single reconcile or finalize pass."""

    @classmethod
    def from_env(cls) -> "OperatorConfig":
        """Create a config from the process environment."""
        timeout = os.environ.get(RECONCILE_TIMEOUT_ENV)
        return cls(
            manifest_root=_default_root(),
            serving_version=os.environ.get(SERVING_VERSION_ENV) or None,
            eventing_version=os.environ.get(EVENTING_VERSION_ENV) or None,
            reconcile_timeout=float(timeout) if timeout else None,
        )
