"""The image policy admission plugin: resolves and checks every image an object uses."""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AbstractSet, Callable, Optional

from .apierrors import ErrorType, ForbiddenError, InvalidError, aggregate
from .config import PLUGIN_NAME, GroupResource, ImagePolicyConfig, load_config, set_defaults
from .mutators import AnnotationAccessor, resolve_all_names
from .reference import InvalidReferenceError, parse
from .resolution import ResolutionConfig
from .resolver import ImageResolutionCache
from .rules import (
    ImagePolicyAttributes,
    RegistryNameMatcher,
    new_execution_rules_accepter,
    new_registry_matcher,
)
from .validation import validate
from .workloads import ObjectMeta, ObjectReference

log = logging.getLogger(__name__)

IGNORE_POLICY_RULES_ANNOTATION = "alpha.image.policy.openshift.io/ignore-rules"

_DOCKER_IMAGE_KIND = "DockerImage"
_REJECTED_BY_POLICY = "this image is prohibited by policy"


class _PolicyRejection(Exception):
    def __init__(self) -> None:
        super().__init__(_REJECTED_BY_POLICY)


class Operation(str, Enum):
    """The operation an admission request performs."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


@dataclass
class AdmissionAttributes:
    """Everything the plugin needs to know about one admission request."""

    obj: Any
    operation: Operation = Operation.CREATE
    resource: GroupResource = field(default_factory=GroupResource)
    kind: str = ""
    kind_group: str = ""
    namespace: str = ""
    name: str = ""
    subresource: str = ""
    old_obj: Any = None


class MutationPreventer:
    """Wraps a mutator so that any change to a reference becomes an error."""

    def __init__(self, mutator: Any) -> None:
        self.mutator = mutator

    def mutate(self, fn: Callable[[ObjectReference], None]) -> list:
        def guarded(ref: ObjectReference) -> None:
            original = copy.copy(ref)
            try:
                fn(ref)
            except Exception as err:
                raise ValueError(f"error in image policy validation: {err}") from err
            if ref != original:
                log.info("disallowed mutation in image policy validation: %r -> %r", original, ref)
                raise ValueError("this image is prohibited by policy (changed after admission)")

        return self.mutator.mutate(guarded)


@dataclass
class _Decision:
    attrs: Optional[ImagePolicyAttributes] = None
    tested: bool = False
    resolution_err: Optional[BaseException] = None


def _ref_key(ref: ObjectReference) -> tuple[str, str, str]:
    return (ref.kind, ref.name, ref.namespace)


def accept(
    accepter: Any,
    policy: Any,
    resolver: Any,
    mutator: Any,
    annotations: Optional[AnnotationAccessor],
    attrs: AdmissionAttributes,
    excluded_rules: Optional[AbstractSet[str]],
    mutation_allowed: bool,
) -> None:
    """Resolve and check every image reference of the object.

    Raises InvalidError listing each rejected reference.
    """
    decisions: dict[tuple[str, str, str], _Decision] = {}
    gr = attrs.resource
    resolve_all = resolve_all_names(annotations)
    excluded = frozenset(excluded_rules or ())

    def check(ref: ObjectReference) -> None:
        decision = decisions.get(_ref_key(ref))
        if decision is None:
            decision = _Decision()
            if policy.requests_resolution(gr):
                try:
                    resolved = resolver.resolve_object_reference(ref, attrs.namespace, resolve_all)
                except Exception as err:
                    if policy.fail_on_resolution_failure(gr):
                        log.debug("required image resolution failed: %s", err)
                        decision.resolution_err = err
                        decision.tested = True
                        decisions[_ref_key(ref)] = decision
                        raise
                    log.debug("optional image resolution failed: %s", err)
                    decision.resolution_err = err
                else:
                    decision.attrs = resolved
                    is_update = attrs.operation is Operation.UPDATE
                    if policy.rewrite_image_pull_spec(resolved, is_update, gr):
                        update = ("", resolved.name.exact(), _DOCKER_IMAGE_KIND)
                        current = (ref.namespace, ref.name, ref.kind)
                        if not mutation_allowed and current != update:
                            log.debug("image resolution changed between admit and validate; keeping %r", ref)
                        else:
                            ref.namespace, ref.name, ref.kind = update
            if decision.attrs is None:
                decision.attrs = ImagePolicyAttributes()
                if ref.kind == _DOCKER_IMAGE_KIND:
                    try:
                        decision.attrs.name = parse(ref.name)
                    except InvalidReferenceError:
                        pass
            decision.attrs.resource = gr
            decision.attrs.excluded_rules = excluded
            log.debug("post resolution ref=%r attributes=%r error=%s", ref, decision.attrs, decision.resolution_err)

        if not decision.tested:
            accepted = accepter.accepts(decision.attrs)
            log.debug("decision for %r: accept=%s", ref, accepted)
            decision.tested = True
            decisions[_ref_key(ref)] = decision
            if not accepted:
                # A resolution error is reported even if another condition rejected the image.
                if decision.resolution_err is not None:
                    raise decision.resolution_err
                raise _PolicyRejection()

    errors = mutator.mutate(check)
    for err in errors:
        err.type = ErrorType.FORBIDDEN
        if err.detail != _REJECTED_BY_POLICY:
            err.detail = f"{_REJECTED_BY_POLICY}: {err.detail}"
    if errors:
        log.debug("image policy admission rejecting due to: %s", errors)
        raise InvalidError(attrs.kind_group, attrs.kind, attrs.name, errors)


def _has_controller_owner(obj: Any) -> bool:
    metadata = getattr(obj, "metadata", None)
    if not isinstance(metadata, ObjectMeta):
        return False
    return any(owner.controller for owner in metadata.owner_references)


class ImagePolicyPlugin:
    """Admission plugin controlling which images may run on the cluster."""

    def __init__(self, config: ImagePolicyConfig, clock: Callable[[], float] = time.time) -> None:
        self.config = config
        # The accepter keeps the matcher it was built with; only resolution sees the registry name.
        self.accepter = new_execution_rules_accepter(config.execution_rules, new_registry_matcher(None))
        self.integrated_registry_matcher: Any = new_registry_matcher(None)
        self.client: Any = None
        self.namespace_lister: Any = None
        self.image_mutators: Any = None
        self.resolver: Any = None
        self._clock = clock

    def handles(self, operation: Operation) -> bool:
        return operation in (Operation.CREATE, Operation.UPDATE)

    def set_internal_image_registry(self, name: str) -> None:
        self.integrated_registry_matcher = RegistryNameMatcher(name)

    def set_image_mutators(self, image_mutators: Any) -> None:
        self.image_mutators = image_mutators

    def set_client(self, client: Any) -> None:
        self.client = client

    def set_namespace_lister(self, lister: Any) -> None:
        """``lister.get(name)`` returns a namespace's metadata, or None."""
        self.namespace_lister = lister

    def validate_initialization(self) -> None:
        """Raise RuntimeError if a dependency is missing; otherwise build the resolver."""
        if self.client is None:
            raise RuntimeError(f"{PLUGIN_NAME} needs an Openshift client")
        if self.namespace_lister is None:
            raise RuntimeError(f"{PLUGIN_NAME} needs a namespace lister")
        if self.image_mutators is None:
            raise RuntimeError(f"{PLUGIN_NAME} needs an image mutators")
        self.resolver = ImageResolutionCache(
            self.client, self.integrated_registry_matcher, clock=self._clock
        )

    def admit(self, attrs: AdmissionAttributes) -> None:
        """Apply the policy, rewriting image references where the policy asks."""
        self._admit(attrs, True)

    def validate(self, attrs: AdmissionAttributes) -> None:
        """Apply the policy without allowing any change to the object."""
        self._admit(attrs, False)

    def _excluded_rules(self, namespace: str) -> frozenset:
        if not namespace or self.namespace_lister is None:
            return frozenset()
        try:
            ns = self.namespace_lister.get(namespace)
        except Exception:
            return frozenset()
        if ns is None:
            return frozenset()
        value = (getattr(ns, "annotations", None) or {}).get(IGNORE_POLICY_RULES_ANNOTATION, "")
        return frozenset(value.split(",")) if value else frozenset()

    def _admit(self, attrs: AdmissionAttributes, mutation_allowed: bool) -> None:
        if not self.handles(attrs.operation) or attrs.subresource:
            return

        policy = ResolutionConfig(self.config)
        gr = attrs.resource
        if not self.accepter.covers(gr) and not policy.covers(gr):
            return

        if _has_controller_owner(attrs.obj):
            log.debug("skipping image policy admission for %s %s/%s: controller owner",
                      attrs.kind, attrs.namespace, attrs.name)
            return

        if self.image_mutators is None:
            raise RuntimeError(f"{PLUGIN_NAME} needs an image mutators")
        try:
            mutator = self.image_mutators.get_image_reference_mutator(attrs.obj, attrs.old_obj)
        except Exception as err:
            raise ForbiddenError(
                gr.group,
                gr.resource,
                attrs.name,
                ValueError(
                    "unable to apply image policy against objects of type "
                    f"{type(attrs.obj).__name__}: {err}"
                ),
            ) from err
        if not mutation_allowed:
            mutator = MutationPreventer(mutator)

        annotations = self.image_mutators.get_annotation_accessor(attrs.obj)
        excluded = self._excluded_rules(attrs.namespace)
        accept(self.accepter, policy, self.resolver, mutator, annotations, attrs, excluded, mutation_allowed)


@dataclass
class LocalInitializer:
    """Hands image mutators and the integrated registry name to plugins that want them."""

    image_mutators: Any
    internal_image_registry: str

    def initialize(self, plugin: Any) -> None:
        wants_validation = callable(getattr(plugin, "validate_initialization", None))
        if wants_validation and callable(getattr(plugin, "set_image_mutators", None)):
            plugin.set_image_mutators(self.image_mutators)
        if wants_validation and callable(getattr(plugin, "set_internal_image_registry", None)):
            plugin.set_internal_image_registry(self.internal_image_registry)


def new_initializer(image_mutators: Any, internal_image_registry: str) -> LocalInitializer:
    return LocalInitializer(image_mutators, internal_image_registry)


class Plugins:
    """A registry of admission plugin factories by name."""

    def __init__(self) -> None:
        self._factories: dict[str, Callable[[Any], Any]] = {}

    def register(self, name: str, factory: Callable[[Any], Any]) -> None:
        if name in self._factories:
            raise ValueError(f"admission plugin {name!r} was registered twice")
        self._factories[name] = factory

    def new(self, name: str, data: Any = None) -> Any:
        try:
            factory = self._factories[name]
        except KeyError:
            raise LookupError(f"unknown admission plugin {name!r}") from None
        return factory(data)


def _defaulted(config: ImagePolicyConfig) -> ImagePolicyConfig:
    result = set_defaults(config)
    return config if result is None else result


def new_from_config(data: Any = None) -> ImagePolicyPlugin:
    """Build a plugin from configuration text, bytes, a readable file, or nothing.

    Raises AggregateError if the configuration is invalid.
    """
    if data is None:
        config = ImagePolicyConfig()
    else:
        if hasattr(data, "read"):
            data = data.read()
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        config = load_config(data)
    config = _defaulted(config)
    problems = validate(config)
    if problems:
        raise aggregate(problems)
    log.debug("%s admission controller loaded with config: %r", PLUGIN_NAME, config)
    return ImagePolicyPlugin(config)


def register(plugins: Plugins) -> None:
    plugins.register(PLUGIN_NAME, new_from_config)