# kruiseset

Make targeted changes to workload and RBAC manifests: container images,
compute resource requests and limits, Service selectors, service accounts
and role binding subjects. It understands the common pod-template workloads
(pods, pod templates, replication controllers, deployments, daemon sets,
replica sets, stateful sets, jobs, cron jobs) as well as CloneSets and
BroadcastJobs. Manifests are plain dictionaries as loaded from YAML or JSON.

## Installation

```
pip install kruiseset
```

## Command line

Installing the package provides the `kruise-set` command, with one
subcommand per kind of change:

| Subcommand             | What it changes                                              |
|------------------------|--------------------------------------------------------------|
| `image`                | container and init-container images                          |
| `resources`            | resource limits and requests of selected containers          |
| `selector`             | the selector of a Service                                    |
| `serviceaccount` (`sa`)| the service account of a pod template                        |
| `subject`              | users, groups and service accounts of a (Cluster)RoleBinding |

Each subcommand reads manifests given with `-f/--filename` (a file, a
directory of `.yaml`, `.yml` and `.json` files, or `-` for standard input),
changes them, and prints the updated objects, so it fits in a shell
pipeline:

```
kruise-set image -f cloneset.yaml nginx=nginx:1.9.1 --local -o yaml
kruise-set image -f cloneset.yaml '*=nginx:1.9.1' --local -o yaml
kruise-set resources -f cloneset.yaml --limits=cpu=200m,memory=512Mi --local -o yaml
kruise-set selector -f service.yaml environment=qa --local -o yaml
kruise-set serviceaccount -f cloneset.yaml serviceaccount1 --local -o yaml
kruise-set subject -f rolebinding.yaml --user=foo --serviceaccount=ns:builder --local -o yaml
```

Options shared by the subcommands:

- `-o/--output` takes `name`, `yaml` or `json`. Without it, a line such as
  `cloneset.apps.kruise.io/sample image updated` is printed per changed object.
- `--local` works on the given files only.
- `--dry-run` takes `none`, `client` or `server` (bare `--dry-run` means
  `client`).
- `--all` and `-l/--selector` (where offered) cannot be used together.

Rules worth knowing:

- `image` needs at least one `NAME=IMAGE` pair; `*` stands for every
  container and may not be combined with other pairs.
- `resources` needs `--limits` or `--requests`; `-c/--containers` picks
  containers by a glob on their name and defaults to `*`.
- `selector` only applies to Services, and only plain `key=value` labels can
  be set; set-based expressions are parsed but rejected for Services.
- `subject` service accounts are written `namespace:name`; a
  ClusterRoleBinding needs the namespace, otherwise `-n/--namespace`
  (default `default`) fills it in. Subjects already bound are left alone.
- `--local` cannot be combined with `--dry-run=server`.

Errors are printed as `error: ...` and the command exits with status 1.

Run `kruise-set --help` or `kruise-set <subcommand> --help` for every option.

## Library use

```python
from kruiseset.manifest import load_manifests, pod_spec_of, object_name
from kruiseset.image import get_resources_and_images, set_image
from kruiseset.subject import Subject, add_subjects
from kruiseset.selector import parse_to_label_selector

resources, images = get_resources_and_images(["cloneset", "sample", "nginx=nginx:1.9.1"])

for obj in load_manifests(["cloneset.yaml"]):
    spec = pod_spec_of(obj)
    if set_image(spec.get("containers", []), "nginx", "nginx:1.9.1"):
        print("updated", object_name(obj))

bound = [Subject(kind="User", name="a", api_group="rbac.authorization.k8s.io")]
changed, subjects = add_subjects(bound, [Subject(kind="User", name="b",
                                                 api_group="rbac.authorization.k8s.io")])

selector = parse_to_label_selector("buildType notin (debug, test)")
```

The option classes carry a whole command: `ImageOptions`,
`ResourcesOptions` and `SelectorOptions` have `validate()`,
`SubjectOptions` has `validate(objects)`, and `ServiceAccountOptions`
checks its options when run. Each then has `run(objects)`, which changes the
objects, prints them to `out` and returns them. Problems raise
`kruiseset.manifest.SetError`; when several objects fail, all the messages
are collected into one error, available as its `errors` list.
`merge_patch(original, modified)` gives the JSON merge patch between two
objects.

## What it does not do

The package does not talk to a cluster. On the command line, resources named
by type and name are refused, and without `--local` or `--dry-run=client`
the change cannot be sent anywhere and is reported as an error. From Python,
the option classes accept a `patcher` callable (and `ResourcesOptions` also
`fetcher` and `replacer`) that you supply to send changes to a server
yourself; none is provided.