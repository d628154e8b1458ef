"""Image API objects and an in-memory image client."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from .apierrors import NotFoundError

DEFAULT_IMAGE_TAG = "latest"
IMAGE_GROUP = "image.openshift.io"
_DEFAULT_METADATA_VERSION = "1.0"


@dataclass
class DockerConfig:
    """The run configuration recorded in image metadata."""

    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class DockerImage:
    """Decoded image metadata."""

    config: Optional[DockerConfig] = None
    size: int = 0


@dataclass
class Image:
    """An image known to the cluster, named by its digest."""

    name: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    docker_image_reference: str = ""
    docker_image_metadata: Optional[DockerImage] = None
    docker_image_metadata_raw: Union[str, bytes] = ""
    docker_image_metadata_version: str = ""


@dataclass
class ImageStreamTag:
    """A tag within an image stream, pointing at one image."""

    name: str = ""
    namespace: str = ""
    image: Image = field(default_factory=Image)
    lookup_policy_local: bool = False


@dataclass
class ImageStreamImage:
    """An image within an image stream, addressed by digest."""

    name: str = ""
    namespace: str = ""
    image: Image = field(default_factory=Image)


@dataclass
class ImageStream:
    """A named collection of tags."""

    name: str = ""
    namespace: str = ""
    lookup_policy_local: bool = False
    docker_image_repository: str = ""


def _get_ci(data: Mapping[str, Any], key: str) -> Any:
    for k, v in data.items():
        if isinstance(k, str) and k.lower() == key.lower():
            return v
    return None


def _decode_metadata(raw: Union[str, bytes]) -> DockerImage:
    try:
        data = json.loads(raw)
    except ValueError as err:
        raise ValueError(f"unable to decode image metadata: {err}") from None
    if not isinstance(data, Mapping):
        raise ValueError("unable to decode image metadata: expected an object")
    config_data = _get_ci(data, "Config")
    config = None
    if config_data is not None:
        if not isinstance(config_data, Mapping):
            raise ValueError("unable to decode image metadata: Config must be an object")
        config = DockerConfig(labels=dict(_get_ci(config_data, "Labels") or {}))
    return DockerImage(config=config, size=int(_get_ci(data, "Size") or 0))


def image_with_metadata(image: Image) -> None:
    """Decode the raw metadata of ``image`` in place if it is not already decoded."""
    meta = image.docker_image_metadata
    if isinstance(meta, DockerImage) and meta.size > 0:
        return
    if image.docker_image_metadata_raw:
        image.docker_image_metadata = _decode_metadata(image.docker_image_metadata_raw)
    if not image.docker_image_metadata_version:
        image.docker_image_metadata_version = _DEFAULT_METADATA_VERSION


def split_image_stream_tag(name: str) -> tuple[str, str]:
    """Split ``NAME:TAG``; an empty tag becomes the default. Raises ValueError without ':'."""
    stream, sep, tag = name.partition(":")
    if not sep:
        raise ValueError(f"{name!r} is not of the form NAME:TAG")
    return stream, tag or DEFAULT_IMAGE_TAG


def join_image_stream_tag(name: str, tag: str) -> str:
    return f"{name}:{tag}"


def split_image_stream_image(name: str) -> tuple[str, str]:
    """Split ``NAME@DIGEST``. Raises ValueError without '@'."""
    stream, sep, image_id = name.partition("@")
    if not sep:
        raise ValueError(f"{name!r} is not of the form NAME@DIGEST")
    return stream, image_id


def join_image_stream_image(name: str, image_id: str) -> str:
    return f"{name}@{image_id}"


_RESOURCES = {
    Image: "images",
    ImageStreamTag: "imagestreamtags",
    ImageStreamImage: "imagestreamimages",
    ImageStream: "imagestreams",
}


class MemoryImageClient:
    """An image client backed by a dictionary; lookups return copies."""

    def __init__(self, *objects: Any) -> None:
        self._objects: dict[tuple[type, str, str], Any] = {}
        for obj in objects:
            self.add(obj)

    def add(self, obj: Any) -> None:
        kind = type(obj)
        if kind not in _RESOURCES:
            raise TypeError(f"unsupported object type {kind.__name__}")
        namespace = "" if kind is Image else obj.namespace
        self._objects[(kind, namespace, obj.name)] = copy.deepcopy(obj)

    def _get(self, kind: type, namespace: str, name: str) -> Any:
        try:
            return copy.deepcopy(self._objects[(kind, namespace, name)])
        except KeyError:
            raise NotFoundError(IMAGE_GROUP, _RESOURCES[kind], name) from None

    def get_image(self, name: str) -> Image:
        return self._get(Image, "", name)

    def get_image_stream_tag(self, namespace: str, name: str) -> ImageStreamTag:
        return self._get(ImageStreamTag, namespace, name)

    def get_image_stream_image(self, namespace: str, name: str) -> ImageStreamImage:
        return self._get(ImageStreamImage, namespace, name)

    def get_image_stream(self, namespace: str, name: str) -> ImageStream:
        return self._get(ImageStream, namespace, name)