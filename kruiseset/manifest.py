"""Loading, naming, printing and diffing of Kubernetes manifests."""

from __future__ import annotations

import copy
import enum
import json
import sys
from pathlib import Path
from typing import Any, Iterable, TextIO

import yaml

_MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")

# Where the pod spec lives inside each workload kind.
_POD_SPEC_PATHS: dict[str, tuple[str, ...]] = {
    "Pod": ("spec",),
    "PodTemplate": ("template", "spec"),
    "ReplicationController": ("spec", "template", "spec"),
    "Deployment": ("spec", "template", "spec"),
    "DaemonSet": ("spec", "template", "spec"),
    "ReplicaSet": ("spec", "template", "spec"),
    "StatefulSet": ("spec", "template", "spec"),
    "Job": ("spec", "template", "spec"),
    "CloneSet": ("spec", "template", "spec"),
    "BroadcastJob": ("spec", "template", "spec"),
    "CronJob": ("spec", "jobTemplate", "spec", "template", "spec"),
}


class DryRunStrategy(enum.Enum):
    """How far a change is carried out."""

    NONE = "none"
    CLIENT = "client"
    SERVER = "server"


class SetError(Exception):
    """One or more errors raised while changing objects."""

    def __init__(self, errors: Iterable[object] | str | BaseException) -> None:
        if isinstance(errors, (str, BaseException)):
            errors = [errors]
        self.errors = [str(error) for error in errors]
        if len(self.errors) == 1:
            message = self.errors[0]
        else:
            message = "[" + ", ".join(self.errors) + "]"
        super().__init__(message)


def object_name(obj: dict[str, Any]) -> str:
    """Return the ``kind[.group]/name`` form of an object."""
    kind = obj.get("kind") or ""
    api_version = obj.get("apiVersion") or ""
    if not kind or not api_version:
        raise SetError("missing apiVersion or kind")
    group = api_version.rpartition("/")[0]
    resource = kind.lower()
    if group:
        resource = f"{resource}.{group}"
    name = (obj.get("metadata") or {}).get("name", "")
    return f"{resource}/{name}"


def pod_spec_of(obj: dict[str, Any]) -> dict[str, Any]:
    """Return the pod spec of a workload, creating empty levels on the way."""
    kind = obj.get("kind", "")
    path = _POD_SPEC_PATHS.get(kind)
    if path is None:
        raise SetError(f"object of kind {kind!r} does not contain a pod spec")
    node = obj
    for key in path:
        child = node.get(key)
        if child is None:
            child = node[key] = {}
        elif not isinstance(child, dict):
            raise SetError(f"object of kind {kind!r} has a malformed {key!r} field")
        node = child
    return node


def _expand(path: str | Path) -> list[Path]:
    target = Path(path)
    if target.is_dir():
        return sorted(
            child for child in target.iterdir()
            if child.is_file() and child.suffix in _MANIFEST_SUFFIXES
        )
    if not target.exists():
        raise SetError(f'the path "{path}" does not exist')
    return [target]


def _flatten(doc: dict[str, Any]) -> list[dict[str, Any]]:
    kind = doc.get("kind") or ""
    items = doc.get("items")
    if kind.endswith("List") and isinstance(items, list):
        flat: list[dict[str, Any]] = []
        for item in items:
            if not isinstance(item, dict):
                raise SetError(f"list item of kind {kind!r} is not an object")
            flat.extend(_flatten(item))
        return flat
    return [doc]


def _parse(text: str, source: str) -> list[dict[str, Any]]:
    try:
        docs = list(yaml.safe_load_all(text))
    except yaml.YAMLError as exc:
        raise SetError(f"error parsing {source}: {exc}") from exc
    objects: list[dict[str, Any]] = []
    for doc in docs:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise SetError(f"error parsing {source}: document is not an object")
        objects.extend(_flatten(doc))
    return objects


def load_manifests(paths: Iterable[str | Path]) -> list[dict[str, Any]]:
    """Read every object from YAML or JSON files, directories or ``-`` (stdin)."""
    objects: list[dict[str, Any]] = []
    for path in paths:
        if str(path) == "-":
            objects.extend(_parse(sys.stdin.read(), "STDIN"))
            continue
        for file in _expand(path):
            objects.extend(_parse(file.read_text(encoding="utf-8"), str(file)))
    return objects


def print_object(obj: dict[str, Any], output: str | None, stream: TextIO) -> None:
    """Write an object to a stream in the given output format."""
    output = output or ""
    if output in ("", "name"):
        stream.write(f"{object_name(obj)}\n")
    elif output == "yaml":
        stream.write(yaml.safe_dump(obj, default_flow_style=False))
    elif output == "json":
        stream.write(json.dumps(obj, indent=4) + "\n")
    else:
        raise SetError(
            f'unable to match a printer suitable for the output format "{output}", '
            "allowed formats are: json,name,yaml"
        )


def merge_patch(original: dict[str, Any], modified: dict[str, Any]) -> dict[str, Any]:
    """Return the JSON merge patch that turns ``original`` into ``modified``."""
    patch: dict[str, Any] = {}
    for key, value in modified.items():
        if key not in original:
            patch[key] = copy.deepcopy(value)
            continue
        old = original[key]
        if isinstance(old, dict) and isinstance(value, dict):
            nested = merge_patch(old, value)
            if nested:
                patch[key] = nested
        elif old != value:
            patch[key] = copy.deepcopy(value)
    for key in original:
        if key not in modified:
            patch[key] = None
    return patch