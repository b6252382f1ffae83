"""knative-operator-local versions action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from knative_operator.releases import ManifestStore

from . import selector

_LOGGER = logging.getLogger(__name__)


class VersionsAction:
    """List the versions of a component available on disk."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "versions",
                help="List available versions of a component",
                description="Print the versions of a component found under "
                "the manifest root, newest first.",
            ),
        )
        selector.add_component_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        component: str,
        manifest_root: pathlib.Path | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        config = selector.config(manifest_root)
        kind = selector.component_kind(component)
        store = ManifestStore(config.manifest_root)
        for version in await store.list_available_versions(kind.path):
            print(version)
