import io

import pytest

from kruiseset.manifest import DryRunStrategy, SetError
from kruiseset.selector import (
    LabelSelector,
    LabelSelectorRequirement,
    SelectorOptions,
    get_resources_and_selector,
    parse_to_label_selector,
    update_selector_for_object,
)


def _before():
    return {
        "matchLabels": {"fee": "true"},
        "matchExpressions": [{"key": "foo", "operator": "In", "values": ["on", "yes"]}],
    }


@pytest.mark.parametrize(
    "obj, want_err",
    [
        ({"apiVersion": "v1", "kind": "ReplicationController"}, True),
        ({"apiVersion": "v1", "kind": "Service"}, False),
        ({"apiVersion": "extensions/v1beta1", "kind": "Deployment", "spec": {"selector": _before()}}, True),
        ({"apiVersion": "extensions/v1beta1", "kind": "DaemonSet", "spec": {"selector": _before()}}, True),
        ({"apiVersion": "extensions/v1beta1", "kind": "ReplicaSet", "spec": {"selector": _before()}}, True),
        ({"apiVersion": "batch/v1", "kind": "Job", "spec": {"selector": _before()}}, True),
        ({"apiVersion": "v1", "kind": "PersistentVolumeClaim", "spec": {"selector": _before()}}, True),
        ({"apiVersion": "v1", "kind": "ServiceAccount"}, True),
    ],
)
def test_update_selector_for_object_types(obj, want_err):
    if want_err:
        with pytest.raises(SetError, match="only supported for Services"):
            update_selector_for_object(obj, LabelSelector())
    else:
        update_selector_for_object(obj, LabelSelector())
        assert obj["spec"]["selector"] == {}


@pytest.mark.parametrize("labels", [{}, {"b": "u"}])
def test_update_new_selector_values(labels):
    service = {"apiVersion": "v1", "kind": "Service"}
    update_selector_for_object(service, LabelSelector(match_labels=dict(labels)))
    assert service["spec"]["selector"] == labels


@pytest.mark.parametrize("labels", [{}, {"fee": "false", "x": "y"}])
def test_update_old_selector_values(labels):
    service = {"apiVersion": "v1", "kind": "Service", "spec": {"selector": {"fee": "true"}}}
    update_selector_for_object(service, LabelSelector(match_labels=dict(labels)))
    assert service["spec"]["selector"] == labels


@pytest.mark.parametrize("labels", [{}, {"b": "u"}])
def test_update_selector_rejects_expressions(labels):
    service = {"apiVersion": "v1", "kind": "Service", "spec": {"selector": {"fee": "true"}}}
    selector = LabelSelector(
        match_labels=labels,
        match_expressions=[LabelSelectorRequirement("a", "In", ["x", "y"])],
    )
    with pytest.raises(SetError, match="not supported on this object"):
        update_selector_for_object(service, selector)


def test_get_resources_and_selector_basic_match():
    resources, selector = get_resources_and_selector(["rc/foo", "healthy=true"])
    assert resources == ["rc/foo"]
    assert selector == LabelSelector(match_labels={"healthy": "true"}, match_expressions=[])


def test_get_resources_and_selector_basic_expression():
    resources, selector = get_resources_and_selector(["rc/foo", "buildType notin (debug, test)"])
    assert resources == ["rc/foo"]
    assert selector == LabelSelector(
        match_labels={},
        match_expressions=[LabelSelectorRequirement("buildType", "NotIn", ["debug", "test"])],
    )


def test_get_resources_and_selector_error():
    with pytest.raises(SetError):
        get_resources_and_selector(["rc/foo", "buildType notthis (debug, test)"])


def test_get_resources_and_selector_empty():
    assert get_resources_and_selector([]) == ([], None)


def test_parse_exists_and_does_not_exist():
    selector = parse_to_label_selector("zeta,!alpha")
    assert selector.match_expressions == [
        LabelSelectorRequirement("alpha", "DoesNotExist", []),
        LabelSelectorRequirement("zeta", "Exists", []),
    ]
    assert selector.match_labels == {}


def test_parse_in_values_are_sorted():
    selector = parse_to_label_selector("env in (prod, dev),tier==web")
    assert selector.match_labels == {"tier": "web"}
    assert selector.match_expressions == [LabelSelectorRequirement("env", "In", ["dev", "prod"])]


@pytest.mark.parametrize("text", ["a!=b", "a>1", "a<1"])
def test_parse_rejects_unsupported_operators(text):
    with pytest.raises(SetError, match="isn't supported in label selectors"):
        parse_to_label_selector(text)


@pytest.mark.parametrize("text", ["a=b,", "-bad=x", "a in ()", "a=b c"])
def test_parse_rejects_malformed(text):
    with pytest.raises(SetError):
        parse_to_label_selector(text)


def test_parse_empty_string():
    assert parse_to_label_selector("") == LabelSelector()


def _service():
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"namespace": "some-ns", "name": "cassandra"},
    }


def test_selector_run_prints_name():
    out = io.StringIO()
    options = SelectorOptions(
        selector=parse_to_label_selector("environment=qa"), local=True, output="name", out=out
    )
    results = options.run([_service()])
    assert "service/cassandra" in out.getvalue()
    assert results[0]["spec"]["selector"] == {"environment": "qa"}


def test_selector_validate_requires_selector():
    with pytest.raises(SetError, match="one selector is required"):
        SelectorOptions().validate()


def test_selector_run_sends_resource_version_in_patch():
    sent = []

    def patcher(obj, patch, server_dry_run):
        sent.append((patch, server_dry_run))
        return obj

    service = _service()
    service["metadata"]["resourceVersion"] = "1"
    out = io.StringIO()
    options = SelectorOptions(
        selector=parse_to_label_selector("environment=qa"),
        resource_version="7",
        dry_run=DryRunStrategy.SERVER,
        patcher=patcher,
        out=out,
    )
    options.run([service])
    patch, server_dry_run = sent[0]
    assert patch["metadata"]["resourceVersion"] == "7"
    assert patch["spec"]["selector"] == {"environment": "qa"}
    assert server_dry_run is True
    assert out.getvalue() == "service/cassandra selector updated (server dry run)\n"


def test_selector_run_stops_on_unsupported_kind():
    options = SelectorOptions(selector=parse_to_label_selector("a=b"), local=True, out=io.StringIO())
    with pytest.raises(SetError, match="only supported for Services"):
        options.run([{"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "p"}}])