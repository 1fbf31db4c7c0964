"""The ``set image`` operation: update container images of pod templates."""

from __future__ import annotations

import copy
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TextIO

from kruiseset.manifest import (
    DryRunStrategy,
    SetError,
    merge_patch,
    object_name,
    pod_spec_of,
    print_object,
)

LOCAL_RESOURCE_ERROR = (
    "error: you must specify resources by --filename when --local is set.\n"
    "Example resource specifications include:\n"
    "   '-f rsrc.yaml'\n"
    "   '--filename=rsrc.json'"
)

# Called with (object, merge patch, server dry run); returns the object as stored.
Patcher = Callable[[dict, dict, bool], dict]

_DRY_RUN_SUFFIX = {
    DryRunStrategy.NONE: "",
    DryRunStrategy.CLIENT: " (dry run)",
    DryRunStrategy.SERVER: " (server dry run)",
}


def _resolve_identity(image: str) -> str:
    return image


def _describe(obj: dict[str, Any]) -> str:
    try:
        return object_name(obj)
    except SetError:
        return (obj.get("metadata") or {}).get("name", "")


def set_image(containers: list[dict[str, Any]], container_name: str, image: str) -> bool:
    """Set the image of the named container (or all, for ``*``); report a match."""
    found = False
    for container in containers:
        if container_name == "*" or container.get("name") == container_name:
            container["image"] = image
            found = True
    return found


def _is_pair(arg: str) -> bool:
    return ("=" in arg and not arg.startswith("=")) or (arg.endswith("-") and arg != "-")


def parse_pairs(pair_args: list[str], pair_type: str) -> dict[str, str]:
    """Parse ``name=value`` arguments into a mapping."""
    pairs: dict[str, str] = {}
    invalid: list[str] = []
    for arg in pair_args:
        if "=" in arg and not arg.startswith("="):
            key, value = arg.split("=", 1)
            pairs[key] = value
        else:
            invalid.append(arg)
    if invalid:
        raise SetError(f"invalid {pair_type} format: {', '.join(invalid)}")
    return pairs


def get_resources_and_images(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Split arguments into resources and a container-to-image mapping."""
    pair_type = "image"
    resources: list[str] = []
    pair_args: list[str] = []
    for arg in args:
        if _is_pair(arg):
            pair_args.append(arg)
        elif pair_args:
            raise SetError(f"all resources must be specified before {pair_type} changes: {arg}")
        else:
            resources.append(arg)
    return resources, parse_pairs(pair_args, pair_type)


def has_wildcard_key(container_images: dict[str, str]) -> bool:
    """Tell whether ``*`` is among the container names."""
    return "*" in container_images


@dataclass
class ImageOptions:
    """What to change and how, for updating container images."""

    resources: list[str] = field(default_factory=list)
    container_images: dict[str, str] = field(default_factory=dict)
    filenames: list[str] = field(default_factory=list)
    kustomize: str = ""
    selector: str = ""
    select_all: bool = False
    local: bool = False
    dry_run: DryRunStrategy = DryRunStrategy.NONE
    output: str = ""
    out: TextIO = field(default_factory=lambda: sys.stdout)
    resolve_image: Callable[[str], str] = _resolve_identity
    patcher: Optional[Patcher] = None

    def validate(self) -> None:
        """Raise SetError listing every problem with the options."""
        if self.local and self.resources:
            raise SetError(LOCAL_RESOURCE_ERROR)
        errors: list[str] = []
        if self.select_all and self.selector:
            errors.append("cannot set --all and --selector at the same time")
        if not self.resources and not self.filenames and not self.kustomize:
            errors.append(
                "one or more resources must be specified as <resource> <name> or <resource>/<name>"
            )
        if not self.container_images:
            errors.append("at least one image update is required")
        elif len(self.container_images) > 1 and has_wildcard_key(self.container_images):
            errors.append(
                "all containers are already specified by *, "
                "but saw more than one container_name=container_image pairs"
            )
        if self.local and self.dry_run is DryRunStrategy.SERVER:
            errors.append(
                "cannot specify --local and --dry-run=server - did you mean --dry-run=client?"
            )
        if errors:
            raise SetError(errors)

    def _apply(self, spec: dict[str, Any], errors: list[str]) -> None:
        for name, image in self.container_images.items():
            try:
                resolved = self.resolve_image(image)
            except ValueError as exc:
                errors.append(
                    f'error: unable to resolve image "{image}" for container "{name}": {exc}'
                )
                if name == "*":
                    break
                continue
            init_found = set_image(spec.get("initContainers") or [], name, resolved)
            found = set_image(spec.get("containers") or [], name, resolved)
            if not found and not init_found:
                errors.append(f'error: unable to find container named "{name}"')

    def _print(self, obj: dict[str, Any]) -> None:
        if self.output:
            print_object(obj, self.output, self.out)
        else:
            suffix = _DRY_RUN_SUFFIX[self.dry_run]
            self.out.write(f"{object_name(obj)} image updated{suffix}\n")

    def run(self, objects: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Update the objects in place and return those that changed."""
        errors: list[str] = []
        changed: list[dict[str, Any]] = []
        for obj in objects:
            original = copy.deepcopy(obj)
            try:
                spec = pod_spec_of(obj)
            except SetError as exc:
                errors.append(f"error: {_describe(obj)} {exc}\n")
                continue
            self._apply(spec, errors)
            patch = merge_patch(original, obj)
            if not patch:
                continue

            if self.local or self.dry_run is DryRunStrategy.CLIENT:
                result = obj
            elif self.patcher is None:
                errors.append(
                    "failed to patch image update to pod template: no server connection configured"
                )
                continue
            else:
                try:
                    result = self.patcher(obj, patch, self.dry_run is DryRunStrategy.SERVER)
                except Exception as exc:  # the patcher talks to an outside server
                    errors.append(f"failed to patch image update to pod template: {exc}")
                    continue
            try:
                self._print(result)
            except SetError as exc:
                errors.append(str(exc))
            changed.append(result)
        if errors:
            raise SetError(errors)
        return changed