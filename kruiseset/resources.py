"""The ``set resources`` operation: update requests and limits of containers."""

from __future__ import annotations

import copy
import fnmatch
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TextIO

from kruiseset.image import LOCAL_RESOURCE_ERROR, Patcher
from kruiseset.manifest import (
    DryRunStrategy,
    SetError,
    merge_patch,
    object_name,
    pod_spec_of,
    print_object,
)

_QUANTITY = re.compile(
    r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+|[KMGTPE]i|[numkMGTPE])?$"
)
_QUANTITY_ERROR = (
    "quantities must match the regular expression "
    "'^([+-]?[0-9.]+)([eEinumkKMGTP]*[-+]?[0-9]*)$'"
)

_DRY_RUN_SUFFIX = {
    DryRunStrategy.NONE: "",
    DryRunStrategy.CLIENT: " (dry run)",
    DryRunStrategy.SERVER: " (server dry run)",
}

# Workload kinds whose object is read back and replaced whole, keyed by apiVersion.
_REPLACED_KINDS = {
    ("apps.kruise.io/v1alpha1", "CloneSet"),
    ("apps.kruise.io/v1beta1", "StatefulSet"),
}

# Called with an object; returns the object as the server holds it.
Fetcher = Callable[[dict], dict]


def parse_resource_list(spec: str) -> dict[str, str]:
    """Parse ``cpu=100m,memory=256Mi`` into a resource-to-quantity mapping."""
    if not spec:
        return {}
    result: dict[str, str] = {}
    for statement in spec.split(","):
        parts = statement.split("=")
        if len(parts) != 2:
            raise SetError(
                f"Invalid argument syntax {statement}, expected <resource>=<value>"
            )
        name, quantity = parts
        if not _QUANTITY.match(quantity):
            raise SetError(_QUANTITY_ERROR)
        result[name] = quantity
    return result


def handle_resource_requirements(limits: str, requests: str) -> dict[str, dict[str, str]]:
    """Build resource requirements from limit and request specifications."""
    return {
        "limits": parse_resource_list(limits),
        "requests": parse_resource_list(requests),
    }


def select_containers(
    containers: list[dict[str, Any]], selector: str
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split containers into those whose name matches the glob and the rest."""
    matched: list[dict[str, Any]] = []
    rest: list[dict[str, Any]] = []
    for container in containers:
        if fnmatch.fnmatchcase(container.get("name", ""), selector):
            matched.append(container)
        else:
            rest.append(container)
    return matched, rest


@dataclass
class ResourcesOptions:
    """What to change and how, for updating container resource requirements."""

    resources: list[str] = field(default_factory=list)
    limits: str = ""
    requests: str = ""
    container_selector: str = "*"
    filenames: list[str] = field(default_factory=list)
    selector: str = ""
    select_all: bool = False
    local: bool = False
    dry_run: DryRunStrategy = DryRunStrategy.NONE
    output: str = ""
    out: TextIO = field(default_factory=lambda: sys.stdout)
    patcher: Optional[Patcher] = None
    fetcher: Optional[Fetcher] = None
    replacer: Optional[Fetcher] = None
    requirements: dict[str, dict[str, str]] = field(
        default_factory=lambda: {"limits": {}, "requests": {}}
    )

    def validate(self) -> None:
        """Raise SetError on the first problem and parse the requirements."""
        if self.local and self.resources:
            raise SetError(LOCAL_RESOURCE_ERROR)
        if self.local and self.dry_run is DryRunStrategy.SERVER:
            raise SetError(
                "cannot specify --local and --dry-run=server - did you mean --dry-run=client?"
            )
        if self.select_all and self.selector:
            raise SetError("cannot set --all and --selector at the same time")
        if not self.limits and not self.requests:
            raise SetError(
                "you must specify an update to requests or limits "
                "(in the form of --requests/--limits)"
            )
        self.requirements = handle_resource_requirements(self.limits, self.requests)

    def _update_containers(self, containers: list[dict[str, Any]], errors: list[str]) -> bool:
        selected, _ = select_containers(containers, self.container_selector)
        if not selected:
            errors.append(f"error: unable to find container named {self.container_selector}")
            return False
        for container in selected:
            resources = container.get("resources")
            if not isinstance(resources, dict):
                resources = container["resources"] = {}
            for kind, given in (("limits", self.limits), ("requests", self.requests)):
                if given and not resources.get(kind):
                    resources[kind] = {}
                values = self.requirements.get(kind) or {}
                if values:
                    resources.setdefault(kind, {}).update(values)
        return True

    def _print(self, obj: dict[str, Any]) -> None:
        if self.output:
            print_object(obj, self.output, self.out)
        else:
            suffix = _DRY_RUN_SUFFIX[self.dry_run]
            self.out.write(f"{object_name(obj)} resource requirements updated{suffix}\n")

    def _run_replaced(self, obj: dict[str, Any]) -> list[dict[str, Any]]:
        if self.local:
            current = obj
        elif self.fetcher is None:
            raise SetError("no server connection configured")
        else:
            current = self.fetcher(obj)
        spec = pod_spec_of(current)
        errors: list[str] = []
        if not self._update_containers(spec.get("containers") or [], errors):
            return []
        if not self.local:
            if self.replacer is None:
                raise SetError("no server connection configured")
            self.replacer(current)
        self._print(current)
        return [current]

    def run(self, objects: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Update the objects and return those that changed."""
        if not objects:
            return []
        first = objects[0]
        if (first.get("apiVersion"), first.get("kind")) in _REPLACED_KINDS:
            return self._run_replaced(first)

        errors: list[str] = []
        changed: list[dict[str, Any]] = []
        for obj in objects:
            original = copy.deepcopy(obj)
            try:
                name = object_name(obj)
            except SetError:
                name = (obj.get("metadata") or {}).get("name", "")
            try:
                spec = pod_spec_of(obj)
            except SetError as exc:
                errors.append(f"error: {name} {exc}\n")
                continue
            if not self._update_containers(spec.get("containers") or [], errors):
                continue
            patch = merge_patch(original, obj)
            if not patch:
                continue

            if self.local or self.dry_run is DryRunStrategy.CLIENT:
                result = obj
            elif self.patcher is None:
                errors.append(
                    "failed to patch resources update to pod template "
                    "no server connection configured"
                )
                continue
            else:
                try:
                    result = self.patcher(obj, patch, self.dry_run is DryRunStrategy.SERVER)
                except Exception as exc:  # the patcher talks to an outside server
                    errors.append(f"failed to patch resources update to pod template {exc}")
                    continue
            try:
                self._print(result)
            except SetError as exc:
                errors.append(str(exc))
            changed.append(result)
        if errors:
            raise SetError(errors)
        return changed