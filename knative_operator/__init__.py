"""
Library for reconciling Knative Serving and Eventing installs.

The main pieces are:
  - `releases` resolves a component version to its on-disk `manifest`
  - `transform` customizes a manifest for one instance
  - `reconciler` drives an instance toward its desired version, keeping the
    `status` conditions current
  - `client` is the interface to the cluster
"""

__all__ = [
    "client",
    "component",
    "config",
    "exceptions",
    "manifest",
    "platform",
    "reconciler",
    "releases",
    "status",
    "transform",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
