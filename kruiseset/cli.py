"""Command line for the ``set`` family of operations."""

from __future__ import annotations

import argparse
import sys
from typing import Any, Optional, Sequence

from kruiseset.image import ImageOptions, get_resources_and_images
from kruiseset.manifest import DryRunStrategy, SetError, load_manifests
from kruiseset.resources import ResourcesOptions
from kruiseset.selector import SelectorOptions, get_resources_and_selector
from kruiseset.serviceaccount import ServiceAccountOptions, parse_service_account_args
from kruiseset.subject import SubjectOptions

_DEPRECATED_DRY_RUN = {"true": DryRunStrategy.CLIENT, "false": DryRunStrategy.NONE}

_SET_LONG = (
    "Configure application resources\n\n"
    "These commands help you make changes to existing application resources."
)


def _dry_run(value: str) -> DryRunStrategy:
    if value in _DEPRECATED_DRY_RUN:
        return _DEPRECATED_DRY_RUN[value]
    try:
        return DryRunStrategy(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f'Invalid dry-run value ({value}). Must be "none", "server", or "client".'
        ) from None


def _add_common(parser: argparse.ArgumentParser, *, filenames: bool = True) -> None:
    parser.add_argument("-o", "--output", default="", help="Output format: json, yaml or name.")
    parser.add_argument(
        "--local", action="store_true",
        help="If true, the command will NOT contact the api-server but run locally.",
    )
    parser.add_argument(
        "--dry-run", dest="dry_run", nargs="?", type=_dry_run,
        const=DryRunStrategy.CLIENT, default=DryRunStrategy.NONE,
        help='Must be "none", "server", or "client"; give it as --dry-run=VALUE.',
    )
    if filenames:
        parser.add_argument(
            "-f", "--filename", dest="filenames", action="append", default=[],
            help="Filename, directory, or '-' identifying the resource.",
        )


def _add_selection(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--all", dest="select_all", action="store_true",
        help="Select all resources in the namespace of the specified resource types.",
    )
    parser.add_argument(
        "-l", "--selector", default="",
        help="Selector (label query) to filter on, e.g. -l key1=value1,key2=value2.",
    )


def _load(args: argparse.Namespace, resources: list[str]) -> list[dict[str, Any]]:
    if resources and not args.local:
        raise SetError(
            "resources given by name need a server connection, which is not configured; "
            "use --filename with --local"
        )
    return load_manifests(args.filenames)


def _run_image(args: argparse.Namespace) -> None:
    resources, images = get_resources_and_images(args.args)
    options = ImageOptions(
        resources=resources, container_images=images, filenames=args.filenames,
        selector=args.selector, select_all=args.select_all, local=args.local,
        dry_run=args.dry_run, output=args.output, out=sys.stdout,
    )
    options.validate()
    options.run(_load(args, resources))


def _run_resources(args: argparse.Namespace) -> None:
    options = ResourcesOptions(
        resources=list(args.args), limits=args.limits, requests=args.requests,
        container_selector=args.containers, filenames=args.filenames,
        selector=args.selector, select_all=args.select_all, local=args.local,
        dry_run=args.dry_run, output=args.output, out=sys.stdout,
    )
    options.validate()
    options.run(_load(args, options.resources))


def _run_selector(args: argparse.Namespace) -> None:
    resources, selector = get_resources_and_selector(args.args)
    options = SelectorOptions(
        resources=resources, selector=selector, resource_version=args.resource_version,
        local=args.local, dry_run=args.dry_run, output=args.output, out=sys.stdout,
    )
    options.validate()
    options.run(_load(args, resources))


def _run_serviceaccount(args: argparse.Namespace) -> None:
    resources, name = parse_service_account_args(args.args)
    options = ServiceAccountOptions(
        service_account_name=name, resources=resources, filenames=args.filenames,
        select_all=args.select_all, local=args.local, dry_run=args.dry_run,
        output=args.output, out=sys.stdout,
    )
    if options.local and options.dry_run is DryRunStrategy.SERVER:
        raise SetError(
            "cannot specify --local and --dry-run=server - did you mean --dry-run=client?"
        )
    options.run(_load(args, resources))


def _run_subject(args: argparse.Namespace) -> None:
    options = SubjectOptions(
        users=args.users, groups=args.groups, service_accounts=args.service_accounts,
        resources=list(args.args), filenames=args.filenames, selector=args.selector,
        select_all=args.select_all, local=args.local, dry_run=args.dry_run,
        namespace=args.namespace, output=args.output, out=sys.stdout,
    )
    if options.local and options.resources:
        options.validate([])
    objects = _load(args, options.resources)
    options.validate(objects)
    options.run(objects)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for ``set`` and its subcommands."""
    parser = argparse.ArgumentParser(
        prog="kubectl-kruise set",
        description=_SET_LONG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", metavar="SUBCOMMAND")

    image = commands.add_parser(
        "image", help="Update image of a pod template",
        description="Update existing container image(s) of resources.",
    )
    image.add_argument("args", nargs="*", metavar="ARG",
                       help="TYPE NAME ... CONTAINER_NAME=CONTAINER_IMAGE ...")
    _add_common(image)
    _add_selection(image)
    image.set_defaults(handler=_run_image)

    resources = commands.add_parser(
        "resources", help="Update resource requests/limits on objects with pod templates",
        description="Specify compute resource requirements (cpu, memory) for any resource "
        "that defines a pod template.",
    )
    resources.add_argument("args", nargs="*", metavar="ARG", help="TYPE NAME")
    _add_common(resources)
    _add_selection(resources)
    resources.add_argument(
        "-c", "--containers", default="*",
        help="The names of containers to change; wildcards allowed; all by default.",
    )
    resources.add_argument("--limits", default="", help="For example 'cpu=100m,memory=256Mi'.")
    resources.add_argument("--requests", default="", help="For example 'cpu=100m,memory=256Mi'.")
    resources.set_defaults(handler=_run_resources)

    selector = commands.add_parser(
        "selector", help="Set the selector on a resource",
        description="Set the selector on a resource; currently only Services are supported.",
    )
    selector.add_argument("args", nargs="*", metavar="ARG", help="TYPE NAME ... EXPRESSIONS")
    _add_common(selector)
    selector.add_argument(
        "--resource-version", dest="resource_version", default="",
        help="If non-empty, the update only succeeds for this resource-version.",
    )
    selector.set_defaults(handler=_run_selector)

    subject = commands.add_parser(
        "subject",
        help="Update User, Group or ServiceAccount in a RoleBinding/ClusterRoleBinding",
        description="Update User, Group or ServiceAccount in a RoleBinding/ClusterRoleBinding.",
    )
    subject.add_argument("args", nargs="*", metavar="ARG", help="TYPE NAME")
    _add_common(subject)
    _add_selection(subject)
    subject.add_argument("--user", dest="users", action="append", default=[],
                         help="Usernames to bind to the role")
    subject.add_argument("--group", dest="groups", action="append", default=[],
                         help="Groups to bind to the role")
    subject.add_argument("--serviceaccount", dest="service_accounts", action="append",
                         default=[], help="Service accounts to bind to the role")
    subject.add_argument("-n", "--namespace", default="default",
                         help="Namespace for service accounts given without one.")
    subject.set_defaults(handler=_run_subject)

    serviceaccount = commands.add_parser(
        "serviceaccount", aliases=["sa"], help="Update ServiceAccount of a resource",
        description="Update ServiceAccount of pod template resources.",
    )
    serviceaccount.add_argument("args", nargs="*", metavar="ARG",
                                help="TYPE NAME ... SERVICE_ACCOUNT")
    _add_common(serviceaccount)
    serviceaccount.add_argument(
        "--all", dest="select_all", action="store_true",
        help="Select all resources in the namespace of the specified resource types.",
    )
    serviceaccount.set_defaults(handler=_run_serviceaccount)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the ``set`` command and return its exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help(sys.stderr)
        return 1
    try:
        handler(args)
    except SetError as exc:
        text = str(exc)
        if not text.startswith("error: "):
            text = "error: " + text
        sys.stderr.write(text.rstrip("\n") + "\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())