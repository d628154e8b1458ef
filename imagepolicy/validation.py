"""Validation of an image policy configuration."""

from __future__ import annotations

from typing import Optional

from .apierrors import FieldError, FieldPath, duplicate, invalid, required
from .config import PLUGIN_NAME, ImagePolicyConfig, ImageResolutionType
from .labels import label_selector_as_selector

_NOT_RESOLVED = "images are not being resolved, this condition will always fail"


def validate(config: Optional[ImagePolicyConfig]) -> list[FieldError]:
    """Return every problem found in ``config``; an empty list means it is valid."""
    errors: list[FieldError] = []
    if config is None:
        return errors

    execution_path = FieldPath(PLUGIN_NAME, "executionRules")
    names: set[str] = set()
    for i, rule in enumerate(config.execution_rules):
        if rule.name in names:
            errors.append(duplicate(execution_path.index(i).child("name"), rule.name))
        names.add(rule.name)
        for j, selector in enumerate(rule.match_image_labels):
            try:
                label_selector_as_selector(selector)
            except ValueError as err:
                errors.append(
                    invalid(execution_path.index(i).child("matchImageLabels").index(j), None, str(err))
                )

    resolution_path = FieldPath(PLUGIN_NAME, "resolutionRules")
    for i, rule in enumerate(config.resolution_rules or []):
        if not rule.policy:
            errors.append(
                required(
                    resolution_path.index(i).child("policy"),
                    "a policy must be specified for this resource",
                )
            )
        if not rule.target_resource.resource:
            errors.append(
                required(
                    resolution_path.index(i).child("targetResource", "resource"),
                    "a target resource name or '*' must be provided",
                )
            )

    # Without resolution, no rule that needs image metadata can ever pass.
    if config.resolve_images is ImageResolutionType.DO_NOT_ATTEMPT:
        for i, rule in enumerate(config.execution_rules):
            rule_path = execution_path.index(i)
            if rule.match_docker_image_labels:
                errors.append(
                    invalid(
                        rule_path.child("matchDockerImageLabels"),
                        rule.match_docker_image_labels,
                        _NOT_RESOLVED,
                    )
                )
            if rule.match_image_labels:
                errors.append(
                    invalid(rule_path.child("matchImageLabels"), rule.match_image_labels, _NOT_RESOLVED)
                )
            if rule.match_image_annotations:
                errors.append(
                    invalid(
                        rule_path.child("matchImageAnnotations"),
                        rule.match_image_annotations,
                        _NOT_RESOLVED,
                    )
                )

    return errors