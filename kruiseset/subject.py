"""The ``set subject`` operation: add users, groups and ServiceAccounts to bindings."""

from __future__ import annotations

import copy
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TextIO

from kruiseset.image import LOCAL_RESOURCE_ERROR, Patcher
from kruiseset.manifest import (
    DryRunStrategy,
    SetError,
    merge_patch,
    object_name,
    print_object,
)

RBAC_GROUP = "rbac.authorization.k8s.io"
USER_KIND = "User"
GROUP_KIND = "Group"
SERVICE_ACCOUNT_KIND = "ServiceAccount"

_BINDING_KINDS = ("RoleBinding", "ClusterRoleBinding")

_DRY_RUN_SUFFIX = {
    DryRunStrategy.NONE: "",
    DryRunStrategy.CLIENT: " (dry run)",
    DryRunStrategy.SERVER: " (server dry run)",
}


@dataclass(frozen=True)
class Subject:
    """A user, group or ServiceAccount named by a role binding."""

    kind: str
    name: str
    api_group: str = ""
    namespace: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subject":
        return cls(
            kind=data.get("kind") or "",
            name=data.get("name") or "",
            api_group=data.get("apiGroup") or "",
            namespace=data.get("namespace") or "",
        )

    def to_dict(self) -> dict[str, str]:
        data: dict[str, str] = {}
        if self.api_group:
            data["apiGroup"] = self.api_group
        data["kind"] = self.kind
        data["name"] = self.name
        if self.namespace:
            data["namespace"] = self.namespace
        return data


UpdateSubjects = Callable[[list[Subject], list[Subject]], tuple[bool, list[Subject]]]


def add_subjects(
    existing: list[Subject], targets: list[Subject]
) -> tuple[bool, list[Subject]]:
    """Append the targets not already present; report whether anything was added."""
    updated = list(existing)
    transformed = False
    for item in targets:
        if item not in existing:
            updated.append(item)
            transformed = True
    return transformed, updated


def update_subject_for_object(
    obj: dict[str, Any], subjects: list[Subject], fn: UpdateSubjects
) -> bool:
    """Apply ``fn`` to the subjects of a binding in place; return whether it changed."""
    if obj.get("kind") not in _BINDING_KINDS:
        raise SetError("setting subjects is only supported for RoleBinding/ClusterRoleBinding")
    existing = [Subject.from_dict(entry) for entry in obj.get("subjects") or []]
    transformed, result = fn(existing, subjects)
    if result or "subjects" in obj:
        obj["subjects"] = [subject.to_dict() for subject in result]
    return transformed


@dataclass
class SubjectOptions:
    """What to change and how, for adding subjects to role bindings."""

    users: list[str] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)
    service_accounts: list[str] = field(default_factory=list)
    resources: list[str] = field(default_factory=list)
    filenames: list[str] = field(default_factory=list)
    selector: str = ""
    select_all: bool = False
    local: bool = False
    dry_run: DryRunStrategy = DryRunStrategy.NONE
    namespace: str = "default"
    output: str = ""
    out: TextIO = field(default_factory=lambda: sys.stdout)
    patcher: Optional[Patcher] = None

    def validate(self, objects: list[dict[str, Any]]) -> None:
        """Raise SetError on the first problem with the options."""
        if self.local and self.resources:
            raise SetError(LOCAL_RESOURCE_ERROR)
        if self.local and self.dry_run is DryRunStrategy.SERVER:
            raise SetError(
                "cannot specify --local and --dry-run=server - did you mean --dry-run=client?"
            )
        if self.select_all and self.selector:
            raise SetError("cannot set --all and --selector at the same time")
        if not self.users and not self.groups and not self.service_accounts:
            raise SetError("you must specify at least one value of user, group or serviceaccount")
        for account in self.service_accounts:
            tokens = account.split(":")
            if len(tokens) != 2 or not tokens[1]:
                raise SetError("serviceaccount must be <namespace>:<name>")
            if not tokens[0] and any(
                obj.get("kind") == "ClusterRoleBinding" for obj in objects
            ):
                raise SetError(
                    "serviceaccount must be <namespace>:<name>, namespace must be specified"
                )

    def _subjects(self) -> list[Subject]:
        subjects = [
            Subject(kind=USER_KIND, name=user, api_group=RBAC_GROUP)
            for user in sorted(set(self.users))
        ]
        subjects += [
            Subject(kind=GROUP_KIND, name=group, api_group=RBAC_GROUP)
            for group in sorted(set(self.groups))
        ]
        for account in sorted(set(self.service_accounts)):
            namespace, _, name = account.partition(":")
            subjects.append(
                Subject(kind=SERVICE_ACCOUNT_KIND, name=name, namespace=namespace or self.namespace)
            )
        return subjects

    def _print(self, obj: dict[str, Any]) -> None:
        if self.output:
            print_object(obj, self.output, self.out)
        else:
            suffix = _DRY_RUN_SUFFIX[self.dry_run]
            self.out.write(f"{object_name(obj)} subjects updated{suffix}\n")

    def run(self, objects: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Add the subjects to every binding and return those that changed."""
        subjects = self._subjects()
        errors: list[str] = []
        changed: list[dict[str, Any]] = []
        for obj in objects:
            original = copy.deepcopy(obj)
            try:
                name = object_name(obj)
            except SetError:
                name = (obj.get("metadata") or {}).get("name", "")
            try:
                transformed = update_subject_for_object(obj, subjects, add_subjects)
            except SetError as exc:
                errors.append(f"error: {name} {exc}\n")
                continue
            if not transformed:
                continue
            patch = merge_patch(original, obj)
            if not patch:
                continue

            if self.local or self.dry_run is DryRunStrategy.CLIENT:
                result = obj
            elif self.patcher is None:
                errors.append(
                    "failed to patch subjects to rolebinding: no server connection configured"
                )
                continue
            else:
                try:
                    result = self.patcher(obj, patch, self.dry_run is DryRunStrategy.SERVER)
                except Exception as exc:  # the patcher talks to an outside server
                    errors.append(f"failed to patch subjects to rolebinding: {exc}")
                    continue
            try:
                self._print(result)
            except SetError as exc:
                errors.append(str(exc))
            changed.append(result)
        if errors:
            raise SetError(errors)
        return changed