"""knative-operator-local build action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import Any, cast

import aiofiles
import yaml

from knative_operator.client import InMemoryClient
from knative_operator.component import API_VERSION, KComponent
from knative_operator.exceptions import InputException
from knative_operator.reconciler import ComponentKind, ComponentReconciler
from knative_operator.releases import ManifestStore

from . import selector

_LOGGER = logging.getLogger(__name__)


async def read_instance(
    path: pathlib.Path | None, kind: ComponentKind
) -> KComponent:
    """Read the custom resource from a file, or return a default instance."""
    if path is None:
        doc: Any = {
            "apiVersion": API_VERSION,
            "kind": kind.kind,
            "metadata": {"name": kind.path, "namespace": kind.path},
        }
    else:
        async with aiofiles.open(path) as instance_file:
            content = await instance_file.read()
        try:
            doc = yaml.safe_load(content)
        except yaml.YAMLError as err:
            raise InputException(f"Unable to parse {path}: {err}") from err
        if not isinstance(doc, dict):
            raise InputException(f"Expected a {kind.kind} object in {path}")
    return kind.component_cls.parse_doc(doc)


class BuildAction:
    """Render the manifest of a component as it would be installed."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build the manifest for a component instance",
                description="""Resolve the manifest of a component version and
                    run it through the transformers for an instance, printing
                    the resources that would be applied.""",
            ),
        )
        selector.add_component_flags(args)
        args.add_argument(
            "--version",
            type=str,
            default=None,
            help="Version to build, defaults to the version of the instance",
        )
        args.add_argument(
            "--instance",
            type=pathlib.Path,
            default=None,
            help="File with the KnativeServing or KnativeEventing object",
        )
        args.add_argument(
            "--output-file",
            type=str,
            default=None,
            help="Output file for the results of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        component: str,
        manifest_root: pathlib.Path | None,
        version: str | None,
        instance: pathlib.Path | None,
        output_file: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        config = selector.config(manifest_root)
        kind = selector.component_kind(component)
        store = ManifestStore(config.manifest_root)
        reconciler = ComponentReconciler(
            InMemoryClient(), store, kind, config=config
        )
        obj = await read_instance(instance, kind)
        if version is None:
            version = await reconciler.target_version(obj)
        _LOGGER.debug("Building %s version %s", kind.kind, version)
        manifest = await store.resolve(kind.path, version)
        manifest = await reconciler.transform(manifest, obj)
        content = manifest.dump()
        if output_file is None:
            sys.stdout.write(content)
            return
        async with aiofiles.open(output_file, "w") as file:
            await file.write(content)
