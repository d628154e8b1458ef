"""Configuration types for the image policy and their defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union

import yaml

from .labels import LabelSelector, LabelSelectorRequirement, Selector

PLUGIN_NAME = "image.openshift.io/ImagePolicy"

# A comma delimited list of rule names to omit from consideration in a namespace.
IGNORE_POLICY_RULES_ANNOTATION = "alpha.image.policy.openshift.io/ignore-rules"
# Placed on an object or its template to request that all image names be resolved locally.
RESOLVE_NAMES_ANNOTATION = "alpha.image.policy.openshift.io/resolve-names"

GROUP = "image.openshift.io"
VERSION = "v1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "ImagePolicyConfig"


@dataclass(frozen=True)
class GroupResource:
    """An API group and resource name; an empty group is the core group."""

    group: str = ""
    resource: str = ""

    def __str__(self) -> str:
        return f"{self.resource}.{self.group}" if self.group else self.resource


class ImageResolutionType(str, Enum):
    """How image pull spec resolution is handled."""

    REQUIRED_REWRITE = "RequiredRewrite"
    REQUIRED = "Required"
    ATTEMPT_REWRITE = "AttemptRewrite"
    ATTEMPT = "Attempt"
    DO_NOT_ATTEMPT = "DoNotAttempt"


@dataclass
class ValueCondition:
    """Whether a key in a map is set, or has a given value."""

    key: str = ""
    set: bool = False
    value: str = ""


@dataclass
class ImageCondition:
    """Conditions for matching an image source; all must hold."""

    name: str = ""
    ignore_namespace_override: bool = False
    on_resources: list[GroupResource] = field(default_factory=list)
    invert_match: bool = False
    match_integrated_registry: bool = False
    match_registries: list[str] = field(default_factory=list)
    skip_on_resolution_failure: bool = False
    match_docker_image_labels: list[ValueCondition] = field(default_factory=list)
    match_image_labels: list[LabelSelector] = field(default_factory=list)
    match_image_label_selectors: list[Selector] = field(default_factory=list)
    match_image_annotations: list[ValueCondition] = field(default_factory=list)


@dataclass
class ImageExecutionPolicyRule(ImageCondition):
    """An image condition that allows, or with ``reject`` forbids, matching images."""

    reject: bool = False


@dataclass
class ImageResolutionPolicyRule:
    """Resolution behaviour for one target resource ('*' covers a whole group)."""

    policy: Optional[ImageResolutionType] = None
    target_resource: GroupResource = field(default_factory=GroupResource)
    local_names: bool = False


@dataclass
class ImagePolicyConfig:
    """Configuration for control of images running on the platform.

    ``resolution_rules`` of None means unset and is filled with defaults;
    an empty list is kept as given.
    """

    resolve_images: Optional[ImageResolutionType] = None
    resolution_rules: Optional[list[ImageResolutionPolicyRule]] = None
    execution_rules: list[ImageExecutionPolicyRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImagePolicyConfig":
        """Build a configuration from its serialized (camelCase) form, without defaults."""
        kind = data.get("kind")
        if kind and kind != KIND:
            raise ValueError(f"expected kind {KIND!r}, got {kind!r}")
        api_version = data.get("apiVersion")
        if api_version and api_version != API_VERSION:
            raise ValueError(f"expected apiVersion {API_VERSION!r}, got {api_version!r}")

        raw_resolution = data.get("resolutionRules")
        resolution_rules = (
            None
            if raw_resolution is None
            else [_resolution_rule(item) for item in raw_resolution]
        )
        return cls(
            resolve_images=_resolution_type(data.get("resolveImages")),
            resolution_rules=resolution_rules,
            execution_rules=[_execution_rule(item) for item in data.get("executionRules") or []],
        )


def _resolution_type(value: Any) -> Optional[ImageResolutionType]:
    if not value:
        return None
    return ImageResolutionType(value)


def _group_resource(data: Optional[Mapping[str, Any]]) -> GroupResource:
    data = data or {}
    return GroupResource(group=data.get("group") or "", resource=data.get("resource") or "")


def _value_condition(data: Mapping[str, Any]) -> ValueCondition:
    return ValueCondition(
        key=data.get("key") or "",
        set=bool(data.get("set")),
        value=data.get("value") or "",
    )


def _label_selector(data: Mapping[str, Any]) -> LabelSelector:
    return LabelSelector(
        match_labels=dict(data.get("matchLabels") or {}),
        match_expressions=[
            LabelSelectorRequirement(
                key=item.get("key") or "",
                operator=item.get("operator") or "",
                values=list(item.get("values") or []),
            )
            for item in data.get("matchExpressions") or []
        ],
    )


def _resolution_rule(data: Mapping[str, Any]) -> ImageResolutionPolicyRule:
    return ImageResolutionPolicyRule(
        policy=_resolution_type(data.get("policy")),
        target_resource=_group_resource(data.get("targetResource")),
        local_names=bool(data.get("localNames")),
    )


def _execution_rule(data: Mapping[str, Any]) -> ImageExecutionPolicyRule:
    return ImageExecutionPolicyRule(
        name=data.get("name") or "",
        ignore_namespace_override=bool(data.get("ignoreNamespaceOverride")),
        on_resources=[_group_resource(item) for item in data.get("onResources") or []],
        invert_match=bool(data.get("invertMatch")),
        match_integrated_registry=bool(data.get("matchIntegratedRegistry")),
        match_registries=list(data.get("matchRegistries") or []),
        skip_on_resolution_failure=bool(data.get("skipOnResolutionFailure")),
        match_docker_image_labels=[
            _value_condition(item) for item in data.get("matchDockerImageLabels") or []
        ],
        match_image_labels=[_label_selector(item) for item in data.get("matchImageLabels") or []],
        match_image_annotations=[
            _value_condition(item) for item in data.get("matchImageAnnotations") or []
        ],
        reject=bool(data.get("reject")),
    )


_DEFAULT_RESOLUTION_TARGETS = (
    GroupResource("", "pods"),
    GroupResource("", "replicationcontrollers"),
    GroupResource("apps.openshift.io", "deploymentconfigs"),
    GroupResource("apps", "daemonsets"),
    GroupResource("apps", "deployments"),
    GroupResource("apps", "statefulsets"),
    GroupResource("apps", "replicasets"),
    GroupResource("build.openshift.io", "builds"),
    GroupResource("batch", "jobs"),
    GroupResource("batch", "cronjobs"),
    GroupResource("extensions", "daemonsets"),
    GroupResource("extensions", "deployments"),
    GroupResource("extensions", "replicasets"),
)


def _execution_rule_covers(rule: ImageExecutionPolicyRule, gr: GroupResource) -> bool:
    return any(
        target.group == gr.group and target.resource in (gr.resource, "*")
        for target in rule.on_resources
    )


def set_defaults(config: Optional[ImagePolicyConfig]) -> None:
    """Fill unset fields of ``config`` in place."""
    if config is None:
        return

    if not config.resolve_images:
        config.resolve_images = ImageResolutionType.ATTEMPT

    for rule in config.execution_rules:
        if not rule.on_resources:
            rule.on_resources = [GroupResource(group="", resource="pods")]

    if config.resolution_rules is None:
        config.resolution_rules = [
            ImageResolutionPolicyRule(target_resource=target, local_names=True)
            for target in _DEFAULT_RESOLUTION_TARGETS
        ]
        for rule in config.resolution_rules:
            if rule.policy:
                continue
            covered = any(
                _execution_rule_covers(execution, rule.target_resource)
                for execution in config.execution_rules
            )
            rule.policy = config.resolve_images if covered else ImageResolutionType.DO_NOT_ATTEMPT
    else:
        for rule in config.resolution_rules:
            if not rule.policy:
                rule.policy = config.resolve_images


def load_config(data: Union[str, bytes, Mapping[str, Any], None]) -> ImagePolicyConfig:
    """Read a configuration from YAML or JSON text (or a mapping) and apply defaults."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    if isinstance(data, str):
        data = yaml.safe_load(data)
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError("image policy configuration must be a mapping")
    config = ImagePolicyConfig.from_dict(data)
    set_defaults(config)
    return config