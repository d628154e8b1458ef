"""Execution rules that decide whether an image may be used."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import AbstractSet, Iterable, Mapping, Optional, Protocol

from .config import GroupResource, ImageCondition, ImageExecutionPolicyRule, ValueCondition
from .images import DockerImage, Image, image_with_metadata
from .labels import label_selector_as_selector
from .reference import DockerImageReference

log = logging.getLogger(__name__)


@dataclass
class ImagePolicyAttributes:
    """What is known about one image reference when policy is applied."""

    resource: GroupResource = field(default_factory=GroupResource)
    name: DockerImageReference = field(default_factory=DockerImageReference)
    image: Optional[Image] = None
    excluded_rules: AbstractSet[str] = frozenset()
    integrated_registry: bool = False
    local_rewrite: bool = False


class RegistryMatcher(Protocol):
    def matches(self, name: str) -> bool: ...


class Accepter(Protocol):
    def covers(self, gr: GroupResource) -> bool: ...

    def accepts(self, attrs: ImagePolicyAttributes) -> bool: ...


@dataclass(frozen=True)
class RegistryNameMatcher:
    """Matches one registry name; an empty name matches nothing."""

    name: str = ""

    def matches(self, name: str) -> bool:
        return bool(self.name) and self.name == name


@dataclass(frozen=True)
class NameSetMatcher:
    """Matches any of a set of registry names."""

    names: tuple[str, ...] = ()

    def matches(self, name: str) -> bool:
        return name in self.names


def new_registry_matcher(names: Optional[Iterable[str]]) -> NameSetMatcher:
    return NameSetMatcher(tuple(names or ()))


def _requires_image(rule: ImageCondition) -> bool:
    return bool(
        rule.match_image_labels or rule.match_image_annotations or rule.match_docker_image_labels
    )


def _match_key_value(values: Optional[Mapping[str, str]], conditions: Iterable[ValueCondition]) -> bool:
    values = values or {}
    for condition in conditions:
        if condition.set:
            if condition.key not in values:
                return False
        elif values.get(condition.key, "") != condition.value:
            return False
    return True


def _registry_is_integrated(matcher: Optional[RegistryMatcher], registry: str) -> bool:
    return matcher is not None and matcher.matches(registry)


def _match_condition_values(
    rule: ImageCondition, integrated: Optional[RegistryMatcher], attrs: ImagePolicyAttributes
) -> bool:
    registry = attrs.name.registry
    if rule.match_integrated_registry and not (
        attrs.integrated_registry or _registry_is_integrated(integrated, registry)
    ):
        log.debug("image registry %s does not match integrated registry", registry)
        return False
    if rule.match_registries and registry not in rule.match_registries:
        log.debug("image registry %s does not match %r", registry, rule.match_registries)
        return False

    image = attrs.image
    if image is None:
        if rule.skip_on_resolution_failure:
            return False
        # Without an image only conditions that need no metadata can pass.
        return not _requires_image(rule)

    if rule.match_docker_image_labels:
        try:
            image_with_metadata(image)
        except ValueError:
            return not rule.skip_on_resolution_failure
        metadata = image.docker_image_metadata
        if not isinstance(metadata, DockerImage):
            log.debug("image has no labels to match rule labels")
            return False
        labels = metadata.config.labels if metadata.config is not None else {}
        if not _match_key_value(labels, rule.match_docker_image_labels):
            return False

    if not _match_key_value(image.annotations, rule.match_image_annotations):
        return False
    return all(selector.matches(image.labels) for selector in rule.match_image_label_selectors)


def _match_condition(
    rule: ImageCondition, integrated: Optional[RegistryMatcher], attrs: ImagePolicyAttributes
) -> bool:
    result = _match_condition_values(rule, integrated, attrs)
    log.debug("image matches conditions for %r: %s (invert=%s)", rule.name, result, rule.invert_match)
    return not result if rule.invert_match else result


@dataclass
class ExecutionAccepter:
    """Applies the execution rules that cover a single resource."""

    resource: GroupResource
    integrated_registry_matcher: Optional[RegistryMatcher] = None
    rules: list[ImageExecutionPolicyRule] = field(default_factory=list)
    default_reject: bool = False

    def covers(self, gr: GroupResource) -> bool:
        return self.resource == gr

    def accepts(self, attrs: ImagePolicyAttributes) -> bool:
        if attrs.resource != self.resource:
            return True
        excluded = attrs.excluded_rules or frozenset()
        any_matched = False
        for rule in self.rules:
            if rule.name in excluded and not rule.ignore_namespace_override:
                log.debug("skipping rule %r excluded by namespace annotations", rule.name)
                continue
            if attrs.image is None and rule.skip_on_resolution_failure:
                log.debug("skipping rule %r because the image is not resolved", rule.name)
                continue
            if _match_condition(rule, self.integrated_registry_matcher, attrs):
                if rule.reject:
                    return False
                any_matched = True
        return any_matched or not self.default_reject


class MappedAccepter(dict):
    """Maps each covered resource to its accepter; other resources are accepted."""

    def covers(self, gr: GroupResource) -> bool:
        return gr in self

    def accepts(self, attrs: ImagePolicyAttributes) -> bool:
        accepter = self.get(attrs.resource)
        return True if accepter is None else accepter.accepts(attrs)


def new_execution_rules_accepter(
    rules: Optional[Iterable[ImageExecutionPolicyRule]],
    integrated_registry_matcher: Optional[RegistryMatcher],
) -> MappedAccepter:
    """Build an accepter from rules; raises ValueError for an invalid label selector."""
    mapped = MappedAccepter()
    for rule in rules or ():
        selectors = [label_selector_as_selector(s) for s in rule.match_image_labels]
        prepared = replace(rule, match_image_label_selectors=selectors)
        for gr in dict.fromkeys(rule.on_resources):
            accepter = mapped.get(gr)
            if accepter is None:
                accepter = ExecutionAccepter(gr, integrated_registry_matcher)
                mapped[gr] = accepter
            accepter.rules.append(prepared)

    for accepter in mapped.values():
        if accepter.rules:
            # When every rule rejects, anything unmatched is allowed.
            accepter.default_reject = not all(rule.reject for rule in accepter.rules)
    return mapped