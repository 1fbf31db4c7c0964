"""The ``set serviceaccount`` operation: set the ServiceAccount of pod templates."""

from __future__ import annotations

import copy
import sys
from dataclasses import dataclass, field
from typing import Any, Optional, TextIO

from kruiseset.image import Patcher
from kruiseset.manifest import (
    DryRunStrategy,
    SetError,
    merge_patch,
    object_name,
    pod_spec_of,
    print_object,
)

RESOURCE_MISSING_ERROR = (
    "You must provide one or more resources by argument or filename.\n"
    "Example resource specifications include:\n"
    "   '-f rsrc.yaml'\n"
    "   '--filename=rsrc.json'\n"
    "   '<resource> <name>'\n"
    "   '<resource>'"
)

_DRY_RUN_SUFFIX = {
    DryRunStrategy.NONE: "",
    DryRunStrategy.CLIENT: " (dry run)",
    DryRunStrategy.SERVER: " (server dry run)",
}


def parse_service_account_args(args: list[str]) -> tuple[list[str], str]:
    """Split arguments into resources and the ServiceAccount name given last."""
    if not args:
        raise SetError("serviceaccount is required")
    return list(args[:-1]), args[-1]


@dataclass
class ServiceAccountOptions:
    """What to change and how, for setting a ServiceAccount on pod templates."""

    service_account_name: str = ""
    resources: list[str] = field(default_factory=list)
    filenames: list[str] = field(default_factory=list)
    select_all: bool = False
    local: bool = False
    dry_run: DryRunStrategy = DryRunStrategy.NONE
    output: str = ""
    out: TextIO = field(default_factory=lambda: sys.stdout)
    patcher: Optional[Patcher] = None

    def _check(self, objects: list[dict[str, Any]]) -> None:
        if self.local and self.dry_run is DryRunStrategy.SERVER:
            raise SetError(
                "cannot specify --local and --dry-run=server - did you mean --dry-run=client?"
            )
        if not self.service_account_name:
            raise SetError("serviceaccount is required")
        if not objects and not self.resources and not self.filenames:
            raise SetError(RESOURCE_MISSING_ERROR)

    def _print(self, obj: dict[str, Any]) -> None:
        if self.output:
            print_object(obj, self.output, self.out)
        else:
            suffix = _DRY_RUN_SUFFIX[self.dry_run]
            self.out.write(f"{object_name(obj)} serviceaccount updated{suffix}\n")

    def run(self, objects: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Set the ServiceAccount on every object and return the results."""
        self._check(objects)
        errors: list[str] = []
        results: list[dict[str, Any]] = []
        for obj in objects:
            original = copy.deepcopy(obj)
            try:
                spec = pod_spec_of(obj)
            except SetError as exc:
                try:
                    name = object_name(obj)
                except SetError:
                    name = (obj.get("metadata") or {}).get("name", "")
                errors.append(f"error: {name} {exc}\n")
                continue
            spec["serviceAccountName"] = self.service_account_name
            patch = merge_patch(original, obj)

            if self.local or self.dry_run is DryRunStrategy.CLIENT:
                result = obj
            elif self.patcher is None:
                errors.append("failed to patch ServiceAccountName no server connection configured")
                continue
            else:
                try:
                    result = self.patcher(obj, patch, self.dry_run is DryRunStrategy.SERVER)
                except Exception as exc:  # the patcher talks to an outside server
                    errors.append(f"failed to patch ServiceAccountName {exc}")
                    continue
            try:
                self._print(result)
            except SetError as exc:
                errors.append(str(exc))
            results.append(result)
        if errors:
            raise SetError(errors)
        return results