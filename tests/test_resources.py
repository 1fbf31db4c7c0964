import io
import json

import pytest

from kruiseset.image import LOCAL_RESOURCE_ERROR
from kruiseset.manifest import DryRunStrategy, SetError, load_manifests
from kruiseset.resources import (
    ResourcesOptions,
    handle_resource_requirements,
    parse_resource_list,
    select_containers,
)

CONTROLLER = """\
apiVersion: v1
kind: ReplicationController
metadata:
  name: cassandra
spec:
  replicas: 1
  template:
    spec:
      containers:
      - name: cassandra
        image: cassandra
"""

MULTI = """\
apiVersion: v1
kind: ReplicationController
metadata:
  name: first-rc
spec:
  template:
    spec:
      containers:
      - name: nginx
        image: nginx
---
apiVersion: v1
kind: ReplicationController
metadata:
  name: second-rc
spec:
  template:
    spec:
      containers:
      - name: nginx
        image: nginx
"""


def _workload(api_version, kind):
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": "nginx", "namespace": "test"},
        "spec": {"template": {"spec": {"containers": [{"name": "nginx", "image": "nginx"}]}}},
    }


def test_resources_local(tmp_path):
    path = tmp_path / "controller.yaml"
    path.write_text(CONTROLLER)
    out = io.StringIO()
    opts = ResourcesOptions(
        filenames=[str(path)],
        local=True,
        limits="cpu=200m,memory=512Mi",
        requests="cpu=200m,memory=512Mi",
        output="name",
        out=out,
    )
    opts.validate()
    objects = load_manifests(opts.filenames)
    changed = opts.run(objects)
    assert "replicationcontroller/cassandra" in out.getvalue()
    resources = changed[0]["spec"]["template"]["spec"]["containers"][0]["resources"]
    assert resources == {
        "limits": {"cpu": "200m", "memory": "512Mi"},
        "requests": {"cpu": "200m", "memory": "512Mi"},
    }


def test_set_multi_resources_limits_local(tmp_path):
    path = tmp_path / "multi.yaml"
    path.write_text(MULTI)
    out = io.StringIO()
    opts = ResourcesOptions(
        filenames=[str(path)],
        local=True,
        limits="cpu=200m,memory=512Mi",
        requests="cpu=200m,memory=512Mi",
        output="name",
        out=out,
    )
    opts.validate()
    opts.run(load_manifests(opts.filenames))
    assert out.getvalue() == "replicationcontroller/first-rc\nreplicationcontroller/second-rc\n"


@pytest.mark.parametrize(
    "api_version,kind",
    [
        ("extensions/v1beta1", "ReplicaSet"),
        ("apps/v1beta2", "ReplicaSet"),
        ("apps/v1", "ReplicaSet"),
        ("extensions/v1beta1", "DaemonSet"),
        ("apps/v1beta2", "DaemonSet"),
        ("apps/v1", "DaemonSet"),
        ("extensions/v1beta1", "Deployment"),
        ("apps/v1beta1", "Deployment"),
        ("apps/v1beta2", "Deployment"),
        ("apps/v1", "Deployment"),
        ("apps/v1beta1", "StatefulSet"),
        ("apps/v1beta2", "StatefulSet"),
        ("apps/v1", "StatefulSet"),
        ("batch/v1", "Job"),
        ("v1", "ReplicationController"),
    ],
)
def test_set_resources_remote(api_version, kind):
    patches = []

    def patcher(obj, patch, server_dry_run):
        patches.append((json.dumps(patch), server_dry_run))
        return obj

    opts = ResourcesOptions(
        resources=[kind.lower(), "nginx"],
        limits="cpu=200m,memory=512Mi",
        output="yaml",
        out=io.StringIO(),
        patcher=patcher,
    )
    opts.validate()
    changed = opts.run([_workload(api_version, kind)])
    assert len(patches) == 1
    assert "200m" in patches[0][0]
    assert patches[0][1] is False
    assert len(changed) == 1


def test_validate_requires_limits_or_requests():
    with pytest.raises(SetError, match="you must specify an update to requests or limits"):
        ResourcesOptions(resources=["deploy", "x"]).validate()


def test_validate_local_and_server_dry_run():
    opts = ResourcesOptions(local=True, dry_run=DryRunStrategy.SERVER, limits="cpu=1")
    with pytest.raises(SetError, match="cannot specify --local and --dry-run=server"):
        opts.validate()


def test_validate_all_and_selector():
    opts = ResourcesOptions(select_all=True, selector="a=b", limits="cpu=1")
    with pytest.raises(SetError, match="cannot set --all and --selector at the same time"):
        opts.validate()


def test_validate_local_with_resources():
    opts = ResourcesOptions(local=True, resources=["deploy/x"], limits="cpu=1")
    with pytest.raises(SetError) as info:
        opts.validate()
    assert str(info.value) == LOCAL_RESOURCE_ERROR


def test_validate_parses_requirements():
    opts = ResourcesOptions(limits="cpu=200m", requests="memory=256Mi")
    opts.validate()
    assert opts.requirements == {"limits": {"cpu": "200m"}, "requests": {"memory": "256Mi"}}


def test_parse_resource_list_values():
    assert parse_resource_list("cpu=100m,memory=256Mi") == {"cpu": "100m", "memory": "256Mi"}
    assert parse_resource_list("") == {}
    assert parse_resource_list("cpu=0,memory=0") == {"cpu": "0", "memory": "0"}


def test_parse_resource_list_bad_syntax():
    with pytest.raises(SetError, match="Invalid argument syntax cpu, expected <resource>=<value>"):
        parse_resource_list("cpu")


def test_parse_resource_list_bad_quantity():
    with pytest.raises(SetError, match="quantities must match"):
        parse_resource_list("cpu=abc")


def test_handle_resource_requirements_error_in_requests():
    with pytest.raises(SetError):
        handle_resource_requirements("cpu=1", "memory=a=b")


def test_select_containers_glob():
    containers = [{"name": "nginx"}, {"name": "nginx-sidecar"}, {"name": "busybox"}]
    matched, rest = select_containers(containers, "nginx*")
    assert [c["name"] for c in matched] == ["nginx", "nginx-sidecar"]
    assert [c["name"] for c in rest] == ["busybox"]


def test_unknown_container_reports_error():
    opts = ResourcesOptions(
        local=True, limits="cpu=1", container_selector="missing", output="name", out=io.StringIO()
    )
    opts.validate()
    with pytest.raises(SetError, match="unable to find container named missing"):
        opts.run([_workload("apps/v1", "Deployment")])


def test_existing_limits_are_kept():
    obj = _workload("apps/v1", "Deployment")
    obj["spec"]["template"]["spec"]["containers"][0]["resources"] = {"limits": {"memory": "1Gi"}}
    opts = ResourcesOptions(local=True, limits="cpu=2", output="name", out=io.StringIO())
    opts.validate()
    opts.run([obj])
    resources = obj["spec"]["template"]["spec"]["containers"][0]["resources"]
    assert resources["limits"] == {"memory": "1Gi", "cpu": "2"}
    assert "requests" not in resources


def test_default_printer_message():
    out = io.StringIO()
    opts = ResourcesOptions(local=True, limits="cpu=1", out=out, dry_run=DryRunStrategy.CLIENT)
    opts.validate()
    opts.run([_workload("apps/v1", "Deployment")])
    assert out.getvalue() == "deployment.apps/nginx resource requirements updated (dry run)\n"


def test_cloneset_is_fetched_and_replaced():
    stored = _workload("apps.kruise.io/v1alpha1", "CloneSet")
    replaced = []
    opts = ResourcesOptions(
        resources=["cloneset", "nginx"],
        limits="cpu=200m",
        output="name",
        out=io.StringIO(),
        fetcher=lambda obj: stored,
        replacer=lambda obj: replaced.append(obj) or obj,
    )
    opts.validate()
    result = opts.run([{"apiVersion": "apps.kruise.io/v1alpha1", "kind": "CloneSet",
                        "metadata": {"name": "nginx"}}])
    assert replaced == [stored]
    assert result[0]["spec"]["template"]["spec"]["containers"][0]["resources"] == {
        "limits": {"cpu": "200m"}
    }
    assert opts.out.getvalue() == "cloneset.apps.kruise.io/nginx\n"


def test_cloneset_without_matching_container_is_unchanged():
    stored = _workload("apps.kruise.io/v1alpha1", "CloneSet")
    opts = ResourcesOptions(
        local=True, limits="cpu=1", container_selector="other", out=io.StringIO()
    )
    opts.validate()
    assert opts.run([stored]) == []
    assert opts.out.getvalue() == ""


def test_remote_without_patcher_fails():
    opts = ResourcesOptions(resources=["deploy", "nginx"], limits="cpu=1", out=io.StringIO())
    opts.validate()
    with pytest.raises(SetError, match="failed to patch resources update to pod template"):
        opts.run([_workload("apps/v1", "Deployment")])


def test_run_empty_objects():
    opts = ResourcesOptions(limits="cpu=1")
    opts.validate()
    assert opts.run([]) == []