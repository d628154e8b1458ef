"""Label selectors and matching against label maps."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Union

_NAME_RE = re.compile(r"([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]")
_DNS_SUBDOMAIN_RE = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*")
_MAX_NAME_LENGTH = 63
_MAX_PREFIX_LENGTH = 253


class SelectorOperator(str, Enum):
    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


@dataclass
class LabelSelectorRequirement:
    """A single key/operator/values condition."""

    key: str
    operator: Union[SelectorOperator, str]
    values: list[str] = field(default_factory=list)


@dataclass
class LabelSelector:
    """The user-facing form of a selector: exact labels plus expressions."""

    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = field(default_factory=list)


@dataclass
class Selector:
    """A validated selector; all requirements must hold for a match."""

    requirements: tuple[LabelSelectorRequirement, ...] = ()
    match_nothing: bool = False

    def matches(self, labels: Optional[Mapping[str, str]]) -> bool:
        if self.match_nothing:
            return False
        labels = labels or {}
        return all(_requirement_matches(req, labels) for req in self.requirements)


def _requirement_matches(req: LabelSelectorRequirement, labels: Mapping[str, str]) -> bool:
    present = req.key in labels
    if req.operator is SelectorOperator.IN:
        return present and labels[req.key] in req.values
    if req.operator is SelectorOperator.NOT_IN:
        return not present or labels[req.key] not in req.values
    if req.operator is SelectorOperator.EXISTS:
        return present
    return not present


def _validate_name(name: str, what: str) -> None:
    if not name:
        raise ValueError(f"invalid label {what} {name!r}: name part must be non-empty")
    if len(name) > _MAX_NAME_LENGTH:
        raise ValueError(
            f"invalid label {what} {name!r}: must be no more than {_MAX_NAME_LENGTH} characters"
        )
    if not _NAME_RE.fullmatch(name):
        raise ValueError(
            f"invalid label {what} {name!r}: must consist of alphanumeric characters, "
            "'-', '_' or '.', and must start and end with an alphanumeric character"
        )


def _validate_key(key: str) -> None:
    parts = key.split("/")
    if len(parts) > 2:
        raise ValueError(f"invalid label key {key!r}: may contain at most one '/'")
    if len(parts) == 2:
        prefix = parts[0]
        if not prefix or len(prefix) > _MAX_PREFIX_LENGTH or not _DNS_SUBDOMAIN_RE.fullmatch(prefix):
            raise ValueError(f"invalid label key {key!r}: prefix must be a DNS subdomain")
    _validate_name(parts[-1], "key")


def _validate_value(value: str) -> None:
    if value:
        _validate_name(value, "value")


def _new_requirement(key: str, operator: SelectorOperator, values: list[str]) -> LabelSelectorRequirement:
    _validate_key(key)
    if operator in (SelectorOperator.IN, SelectorOperator.NOT_IN) and not values:
        raise ValueError("for 'in', 'notin' operators, values set can't be empty")
    if operator in (SelectorOperator.EXISTS, SelectorOperator.DOES_NOT_EXIST) and values:
        raise ValueError("values set must be empty for exists and does not exist")
    for value in values:
        _validate_value(value)
    return LabelSelectorRequirement(key, operator, list(values))


def label_selector_as_selector(selector: Optional[LabelSelector]) -> Selector:
    """Validate a label selector and turn it into a matcher.

    A missing selector matches nothing; an empty one matches everything.
    Raises ValueError when a key, value or operator is not valid.
    """
    if selector is None:
        return Selector(match_nothing=True)
    if not selector.match_labels and not selector.match_expressions:
        return Selector()
    requirements = [
        _new_requirement(key, SelectorOperator.IN, [value])
        for key, value in selector.match_labels.items()
    ]
    for expression in selector.match_expressions:
        try:
            operator = SelectorOperator(expression.operator)
        except ValueError:
            raise ValueError(
                f"{expression.operator!r} is not a valid label selector operator"
            ) from None
        requirements.append(_new_requirement(expression.key, operator, list(expression.values)))
    requirements.sort(key=lambda req: req.key)
    return Selector(tuple(requirements))