"""Deciding when image references are resolved and rewritten."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import GroupResource, ImagePolicyConfig, ImageResolutionPolicyRule, ImageResolutionType
from .rules import ImagePolicyAttributes

_REQUESTS = frozenset(
    {
        ImageResolutionType.REQUIRED_REWRITE,
        ImageResolutionType.REQUIRED,
        ImageResolutionType.ATTEMPT_REWRITE,
        ImageResolutionType.ATTEMPT,
    }
)
_FAILS = frozenset({ImageResolutionType.REQUIRED_REWRITE, ImageResolutionType.REQUIRED})
_REWRITES = frozenset({ImageResolutionType.REQUIRED_REWRITE, ImageResolutionType.ATTEMPT_REWRITE})

# Resources whose image specs are immutable, so they are never rewritten on update.
_SKIP_REWRITE_ON_UPDATE = frozenset(
    {
        GroupResource(group="batch", resource="jobs"),
        GroupResource(group="build.openshift.io", resource="builds"),
    }
)


def requests_resolution(resolution_type: Optional[ImageResolutionType]) -> bool:
    """True if image pull specs should be resolved."""
    return resolution_type in _REQUESTS


def fail_on_resolution_failure(resolution_type: Optional[ImageResolutionType]) -> bool:
    """True if a failed resolution should fail the request."""
    return resolution_type in _FAILS


def rewrite_image_pull_spec(resolution_type: Optional[ImageResolutionType]) -> bool:
    """True if pull specs should be rewritten when resolution succeeds."""
    return resolution_type in _REWRITES


def _rule_covers(target: GroupResource, gr: GroupResource) -> bool:
    return target.group == gr.group and target.resource in (gr.resource, "*")


@dataclass
class ResolutionConfig:
    """Resolution policy derived from an image policy configuration."""

    config: ImagePolicyConfig

    def _rules(self) -> list[ImageResolutionPolicyRule]:
        return self.config.resolution_rules or []

    def covers(self, gr: GroupResource) -> bool:
        """True if a resolution rule applies to this resource."""
        return any(_rule_covers(rule.target_resource, gr) for rule in self._rules())

    def requests_resolution(self, gr: GroupResource) -> bool:
        """True if the global policy asks for resolution or any rule covers the resource."""
        return requests_resolution(self.config.resolve_images) or self.covers(gr)

    def fail_on_resolution_failure(self, gr: GroupResource) -> bool:
        """Depends only on the global policy."""
        return fail_on_resolution_failure(self.config.resolve_images)

    def rewrite_image_pull_spec(
        self, attrs: ImagePolicyAttributes, is_update: bool, gr: GroupResource
    ) -> bool:
        """True if the pull spec should be rewritten.

        Matching rules take precedence over the global policy: a resource covered
        by a rule that does not rewrite is never rewritten.
        """
        if is_update and gr in _SKIP_REWRITE_ON_UPDATE:
            return False
        has_matching_rule = False
        for rule in self._rules():
            if not _rule_covers(rule.target_resource, gr):
                continue
            if rule.local_names and attrs.local_rewrite:
                return True
            if rewrite_image_pull_spec(rule.policy):
                return True
            has_matching_rule = True
        if has_matching_rule:
            return False
        return rewrite_image_pull_spec(self.config.resolve_images)