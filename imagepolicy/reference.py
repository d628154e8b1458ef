"""Parsing and formatting of container image pull specs."""

from __future__ import annotations

import re
from dataclasses import dataclass

_ALNUM = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]*)"
_NAME_COMPONENT = rf"{_ALNUM}(?:{_SEPARATOR}{_ALNUM})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*[:][0-9a-fA-F]{32,}"
_NAME = rf"(?:{_DOMAIN}/)?{_NAME_COMPONENT}(?:/{_NAME_COMPONENT})*"
_REFERENCE_RE = re.compile(rf"({_NAME})(?::({_TAG}))?(?:@({_DIGEST}))?", re.ASCII)

_NAME_TOTAL_LENGTH_MAX = 255

_DIGEST_HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}
_LOWER_HEX_RE = re.compile(r"[a-f0-9]+")


class InvalidReferenceError(ValueError):
    """An image pull spec could not be parsed."""


@dataclass(frozen=True)
class DockerImageReference:
    """The parts of an image pull spec: ``registry/namespace/name:tag@id``."""

    registry: str = ""
    namespace: str = ""
    name: str = ""
    tag: str = ""
    id: str = ""

    def name_string(self) -> str:
        """The name with the digest, or failing that the tag, appended."""
        if not self.name:
            return ""
        if self.id:
            return f"{self.name}@{self.id}"
        if self.tag:
            return f"{self.name}:{self.tag}"
        return self.name

    def exact(self) -> str:
        """The full pull spec; a digest takes precedence over a tag."""
        name = self.name_string()
        if not name:
            return ""
        prefix = f"{self.registry}/" if self.registry else ""
        if self.namespace:
            prefix += f"{self.namespace}/"
        return prefix + name

    def __str__(self) -> str:
        return self.exact()


def _validate_digest(digest: str) -> None:
    algorithm, _, encoded = digest.partition(":")
    expected = _DIGEST_HEX_LENGTHS.get(algorithm)
    if expected is None:
        raise InvalidReferenceError("unsupported digest algorithm")
    if len(encoded) != expected:
        raise InvalidReferenceError("invalid checksum digest length")
    if not _LOWER_HEX_RE.fullmatch(encoded):
        raise InvalidReferenceError("invalid checksum digest format")


def parse(spec: str) -> DockerImageReference:
    """Split a pull spec into its parts; raises InvalidReferenceError if malformed."""
    match = _REFERENCE_RE.fullmatch(spec)
    if match is None:
        if not spec:
            raise InvalidReferenceError("repository name must have at least one component")
        if _REFERENCE_RE.fullmatch(spec.lower()):
            raise InvalidReferenceError("repository name must be lowercase")
        raise InvalidReferenceError("invalid reference format")

    full_name, tag, digest = match.group(1), match.group(2) or "", match.group(3) or ""
    if len(full_name) > _NAME_TOTAL_LENGTH_MAX:
        raise InvalidReferenceError(
            f"repository name must not be more than {_NAME_TOTAL_LENGTH_MAX} characters"
        )
    if digest:
        _validate_digest(digest)

    registry, name = "", full_name
    first, sep, rest = full_name.partition("/")
    if sep and (any(c in first for c in ":.") or first == "localhost"):
        registry, name = first, rest

    namespace = ""
    head, sep, tail = name.partition("/")
    if sep:
        namespace, name = head, tail

    return DockerImageReference(
        registry=registry, namespace=namespace, name=name, tag=tag, id=digest
    )