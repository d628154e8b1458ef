"""Resolving image references to images, with a short-lived cache."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from .apierrors import is_not_found, NotFoundError
from .images import (
    DEFAULT_IMAGE_TAG,
    IMAGE_GROUP,
    Image,
    join_image_stream_image,
    join_image_stream_tag,
    split_image_stream_image,
    split_image_stream_tag,
)
from .reference import DockerImageReference, InvalidReferenceError, parse
from .rules import ImagePolicyAttributes, RegistryMatcher
from .workloads import ObjectReference

log = logging.getLogger(__name__)

_CACHE_SIZE = 128
_DEFAULT_EXPIRATION = 60.0


@dataclass
class _CacheEntry:
    expires: float
    image: Image


def _is_image_stream_tag_not_found(err: BaseException) -> bool:
    """True if the tag is missing but its image stream may exist."""
    if not is_not_found(err) or not isinstance(err, NotFoundError):
        return False
    return err.kind == "imagestreamtags" and err.group == IMAGE_GROUP


class ImageResolutionCache:
    """Resolves references through an image client, caching images by digest."""

    def __init__(
        self,
        image_client: Any,
        integrated: Optional[RegistryMatcher] = None,
        expiration: float = _DEFAULT_EXPIRATION,
        clock: Callable[[], float] = time.time,
        size: int = _CACHE_SIZE,
    ) -> None:
        self.image_client = image_client
        self.integrated = integrated
        self.expiration = expiration
        self.clock = clock
        self._size = size
        self._cache: OrderedDict[str, _CacheEntry] = OrderedDict()

    def _cache_get(self, key: str) -> Optional[_CacheEntry]:
        entry = self._cache.get(key)
        if entry is not None:
            self._cache.move_to_end(key)
        return entry

    def _cache_add(self, key: str, image: Image, now: float) -> None:
        self._cache[key] = _CacheEntry(expires=now + self.expiration, image=image)
        self._cache.move_to_end(key)
        while len(self._cache) > self._size:
            self._cache.popitem(last=False)

    def _is_integrated(self, registry: str) -> bool:
        return self.integrated is not None and self.integrated.matches(registry)

    def resolve_object_reference(
        self,
        ref: ObjectReference,
        default_namespace: str,
        force_resolve_local_names: bool,
    ) -> ImagePolicyAttributes:
        """Resolve ``ref`` to image attributes.

        Unknown kinds raise ValueError so that references which may be images
        are never silently ignored. Lookup failures propagate from the client.
        """
        if ref.kind == "ImageStreamTag":
            namespace = ref.namespace or default_namespace
            try:
                name, tag = split_image_stream_tag(ref.name)
            except ValueError:
                raise ValueError(
                    "references of kind ImageStreamTag must be of the form NAME:TAG"
                ) from None
            return self._resolve_image_stream_tag(namespace, name, tag, False, False)

        if ref.kind == "ImageStreamImage":
            namespace = ref.namespace or default_namespace
            try:
                name, image_id = split_image_stream_image(ref.name)
            except ValueError:
                raise ValueError(
                    "references of kind ImageStreamImage must be of the form NAME@DIGEST"
                ) from None
            return self._resolve_image_stream_image(namespace, name, image_id)

        if ref.kind == "DockerImage":
            return self._resolve_image_reference(
                parse(ref.name), default_namespace, force_resolve_local_names
            )

        raise ValueError(f'image policy does not allow image references of kind "{ref.kind}"')

    def _resolve_image_reference(
        self, ref: DockerImageReference, default_namespace: str, force_resolve_local_names: bool
    ) -> ImagePolicyAttributes:
        # Images addressed by digest can be looked up directly.
        if ref.id:
            now = self.clock()
            cached = self._cache_get(ref.id)
            if cached is not None and now < cached.expires:
                return ImagePolicyAttributes(name=ref, image=cached.image)
            image = self.image_client.get_image(ref.id)
            self._cache_add(ref.id, image, now)
            return ImagePolicyAttributes(
                name=ref, image=image, integrated_registry=self._is_integrated(ref.registry)
            )

        # A spec pointing at the integrated registry is also an image stream tag.
        full_reference = self._is_integrated(ref.registry)
        partial_reference = force_resolve_local_names or (
            not ref.registry and not ref.namespace and bool(ref.name)
        )
        if not full_reference and not partial_reference:
            raise ValueError(f"({ref.exact()}) could not be resolved to an exact image reference")

        tag = ref.tag or DEFAULT_IMAGE_TAG
        namespace = ref.namespace
        if not namespace or force_resolve_local_names:
            namespace = default_namespace
        return self._resolve_image_stream_tag(
            namespace, ref.name, tag, partial_reference, force_resolve_local_names
        )

    def _resolve_image_stream_tag(
        self, namespace: str, name: str, tag: str, partial: bool, force_resolve_local_names: bool
    ) -> ImagePolicyAttributes:
        attrs = ImagePolicyAttributes(integrated_registry=True)
        try:
            resolved = self.image_client.get_image_stream_tag(
                namespace, join_image_stream_tag(name, tag)
            )
        except Exception as err:
            # A stream that resolves local names points at the integrated registry
            # even when the tag is missing, so the lookup never leaves the cluster.
            if _is_image_stream_tag_not_found(err):
                local = self._local_stream_reference(namespace, name, tag, force_resolve_local_names)
                if local is not None:
                    attrs.name = local
                    attrs.local_rewrite = True
                    return attrs
            raise

        if partial:
            if not force_resolve_local_names and not resolved.lookup_policy_local:
                raise ValueError(
                    "ImageStreamTag does not allow local references and the resource "
                    "did not request image stream resolution"
                )
            attrs.local_rewrite = True

        image = resolved.image
        try:
            ref = parse(image.docker_image_reference)
        except InvalidReferenceError as err:
            raise ValueError(
                f"image reference {image.docker_image_reference} could not be parsed: {err}"
            ) from None
        ref = replace(ref, tag="", id=image.name)

        self._cache_add(image.name, image, self.clock())
        attrs.name = ref
        attrs.image = image
        return attrs

    def _local_stream_reference(
        self, namespace: str, name: str, tag: str, force_resolve_local_names: bool
    ) -> Optional[DockerImageReference]:
        try:
            stream = self.image_client.get_image_stream(namespace, name)
        except Exception:
            return None
        if not (force_resolve_local_names or stream.lookup_policy_local):
            return None
        if not stream.docker_image_repository:
            return None
        try:
            ref = parse(stream.docker_image_repository)
        except InvalidReferenceError:
            return None
        log.info("%s/%s:%s points to a local name resolving stream, but the tag does not exist",
                 namespace, name, tag)
        return replace(ref, tag=tag)

    def _resolve_image_stream_image(
        self, namespace: str, name: str, image_id: str
    ) -> ImagePolicyAttributes:
        resolved = self.image_client.get_image_stream_image(
            namespace, join_image_stream_image(name, image_id)
        )
        image = resolved.image
        try:
            ref = parse(image.docker_image_reference)
        except InvalidReferenceError as err:
            raise ValueError(f"ImageStreamTag could not be resolved: {err}") from None
        self._cache_add(image.name, image, self.clock())
        return ImagePolicyAttributes(name=ref, image=image, integrated_registry=True)