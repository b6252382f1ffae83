"""Flags shared by the knative-operator-local commands."""

from argparse import ArgumentParser
import pathlib

from knative_operator.config import OperatorConfig
from knative_operator.reconciler import KINDS, ComponentKind

# Short names accepted on the command line.
COMPONENTS = {
    "serving": "KnativeServing",
    "eventing": "KnativeEventing",
}


def add_component_flags(args: ArgumentParser) -> None:
    """Add the component argument and the manifest root flag."""
    args.add_argument(
        "component",
        choices=sorted(COMPONENTS),
        help="The component to operate on",
    )
    args.add_argument(
        "--manifest-root",
        type=pathlib.Path,
        default=None,
        help="Directory of versioned manifests, defaults to $KO_DATA_PATH",
    )


def component_kind(component: str) -> ComponentKind:
    """Return the reconciler settings for the component short name."""
    return KINDS[COMPONENTS[component]]


def config(manifest_root: pathlib.Path | None) -> OperatorConfig:
    """Return the operator config from the environment and flags."""
    result = OperatorConfig.from_env()
    if manifest_root is not None:
        result.manifest_root = manifest_root
    return result
