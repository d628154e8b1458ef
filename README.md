# imagepolicy

`imagepolicy` is an admission policy for container images. It decides which images may run in
pods and other workloads, and it can rewrite image references to exact digests.

When a workload is created or updated, the plugin does the following:

- It collects every image reference in the object's pod spec, including init containers.
- It resolves each reference through an image client. Images are cached by digest for one
  minute, with room for 128 entries. A reference can be a digest, an integrated-registry tag or
  a namespace-local image stream name.
- Where the policy asks for it, it rewrites the reference to the resolved image.
- It checks each image against execution rules. A rule can match on the integrated registry,
  on registry names, on image annotations, on image labels (label selectors) and on Docker labels.

## Installation

```
pip install imagepolicy
```

To run the tests, install the `test` extra:

```
pip install "imagepolicy[test]"
```

## Configuration

Configuration is a mapping, or a YAML or JSON document, in the `ImagePolicyConfig` shape. If
`kind` or `apiVersion` are given they must be `ImagePolicyConfig` and `image.openshift.io/v1`.

```yaml
kind: ImagePolicyConfig
apiVersion: image.openshift.io/v1
resolveImages: AttemptRewrite
executionRules:
- name: execution-denied
  reject: true
  onResources:
  - resource: pods
  matchImageAnnotations:
  - key: images.openshift.io/deny-execution
    value: "true"
  skipOnResolutionFailure: true
```

`imagepolicy.config.load_config` reads such text (or a mapping) and applies defaults.
`ImagePolicyConfig.from_dict` builds the configuration without defaults; `set_defaults` fills
them in place afterwards. `imagepolicy.validation.validate` returns a list of `FieldError`s,
empty when the configuration is valid.

```python
from imagepolicy.config import load_config
from imagepolicy.validation import validate

config = load_config(text)
errors = validate(config)
```

The defaults are:

- `resolveImages` is `Attempt`.
- An execution rule without `onResources` applies to `pods`.
- When `resolutionRules` is absent, local-name rules are added for the built-in workload
  resources. Each of these gets the global policy if an execution rule covers its resource, and
  `DoNotAttempt` if none does.
- A resolution rule without a `policy` takes the global one.

### Resolution policies

`resolveImages` and each resolution rule's `policy` take one of these values:

| Policy            | Resolves | Fails when unresolved | Rewrites |
|-------------------|----------|-----------------------|----------|
| `RequiredRewrite` | yes      | yes                   | yes      |
| `Required`        | yes      | yes                   | no       |
| `AttemptRewrite`  | yes      | no                    | yes      |
| `Attempt`         | yes      | no                    | no       |
| `DoNotAttempt`    | no       | no                    | no       |

A resource covered by a resolution rule is always resolved. A rule that does not rewrite takes
precedence over a global policy that does. Jobs and builds are never rewritten on update.

If every execution rule for a resource rejects, any image that no rule matches is allowed.
If at least one rule allows, an image must match an allowing rule.

## Using the plugin

```python
from imagepolicy.config import GroupResource
from imagepolicy.images import MemoryImageClient
from imagepolicy.mutators import KubeImageMutators
from imagepolicy.plugin import AdmissionAttributes, Operation, new_from_config
from imagepolicy.workloads import Container, Pod, PodSpec

plugin = new_from_config(text)          # text, bytes, a readable file, or None
plugin.set_client(MemoryImageClient())
plugin.set_namespace_lister({})         # anything with .get(name) -> namespace metadata or None
plugin.set_internal_image_registry("integrated.registry")
plugin.set_image_mutators(KubeImageMutators())
plugin.validate_initialization()

pod = Pod(spec=PodSpec(containers=[Container(image="integrated.registry/repo/mysql:goodtag")]))
attrs = AdmissionAttributes(
    obj=pod, kind="Pod", namespace="default", name="pod1",
    resource=GroupResource(resource="pods"), operation=Operation.CREATE,
)
plugin.admit(attrs)     # may rewrite references
plugin.validate(attrs)  # refuses any change to references
```

The plugin handles only `CREATE` and `UPDATE`. It ignores subresources, resources that no rule
covers, and objects with a controller owner reference.

- If an image is not allowed, `admit` and `validate` raise `InvalidError`.
- If the object has no pod spec, they raise `ForbiddenError`. Both classes are in
  `imagepolicy.apierrors`.
- `validate_initialization` raises `RuntimeError` when the client, the namespace lister or the
  image mutators are missing.
- `new_from_config` raises `AggregateError` when the configuration is invalid.

The image client may be any object with `get_image`, `get_image_stream_tag`,
`get_image_stream_image` and `get_image_stream` methods that raise `NotFoundError` for missing
objects. `MemoryImageClient` is such a client. It holds `Image`, `ImageStreamTag`,
`ImageStreamImage` and `ImageStream` objects, added with `add`.

Workload types are in `imagepolicy.workloads`: `Pod`, `PodTemplate`, `ReplicationController`,
`DaemonSet`, `Deployment`, `ReplicaSet`, `StatefulSet`, `Job` and `CronJob`.

To skip rules in a namespace, give the namespace the annotation
`alpha.image.policy.openshift.io/ignore-rules` with a comma-separated list of rule names.
A rule with `ignoreNamespaceOverride` cannot be skipped this way.

To resolve every image name in a workload as a namespace-local image stream tag, give the
object, or its pod template, the annotation `alpha.image.policy.openshift.io/resolve-names: "*"`.

### Plugin registry and initializers

`register(plugins)` adds `new_from_config` to a `Plugins` registry under the name
`image.openshift.io/ImagePolicy`. `Plugins.new(name, data)` builds a plugin from raw
configuration. `new_initializer(image_mutators, internal_image_registry)` returns a
`LocalInitializer`, which passes those settings to any plugin that accepts them.

## What this package does not do

It is a library only. It has no command, no admission webhook server, and no client for a live
cluster's image API. The only image client it has is the in-memory `MemoryImageClient`; to use
real data, supply your own client with the methods listed above.