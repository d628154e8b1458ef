import pytest

from imagepolicy.apierrors import NotFoundError, is_not_found
from imagepolicy.images import (
    DockerConfig,
    DockerImage,
    Image,
    ImageStream,
    ImageStreamImage,
    ImageStreamTag,
    MemoryImageClient,
    image_with_metadata,
    join_image_stream_image,
    join_image_stream_tag,
    split_image_stream_image,
    split_image_stream_tag,
)

SHA = "sha256:08151bf2fc92355f236918bb16905921e6f66e1d03100fb9b18d60125db3df3a"


def test_split_join_tag_round_trip():
    assert split_image_stream_tag(join_image_stream_tag("mysql", "goodtag")) == ("mysql", "goodtag")


def test_split_tag_defaults_empty_tag():
    assert split_image_stream_tag("mysql:") == ("mysql", "latest")


def test_split_tag_requires_separator():
    with pytest.raises(ValueError):
        split_image_stream_tag("mysql")


def test_split_join_image_round_trip():
    assert split_image_stream_image(join_image_stream_image("mysql", SHA)) == ("mysql", SHA)


def test_split_image_requires_separator():
    with pytest.raises(ValueError):
        split_image_stream_image("mysql:tag")


def test_client_returns_copies():
    image = Image(name=SHA, docker_image_reference="integrated.registry/goodns/goodimage:good")
    client = MemoryImageClient(image)
    got = client.get_image(SHA)
    assert got == image
    assert got is not image
    got.annotations["x"] = "y"
    assert client.get_image(SHA).annotations == {}


def test_client_namespaced_lookups():
    image = Image(name=SHA)
    client = MemoryImageClient()
    client.add(ImageStreamTag(name="mysql:goodtag", namespace="repo", image=image))
    client.add(ImageStreamImage(name="mysql@" + SHA, namespace="repo", image=image))
    client.add(ImageStream(name="mysql", namespace="repo", lookup_policy_local=True))
    assert client.get_image_stream_tag("repo", "mysql:goodtag").image == image
    assert client.get_image_stream_image("repo", "mysql@" + SHA).image == image
    assert client.get_image_stream("repo", "mysql").lookup_policy_local is True
    with pytest.raises(NotFoundError):
        client.get_image_stream_tag("other", "mysql:goodtag")


def test_client_not_found_details():
    client = MemoryImageClient()
    with pytest.raises(NotFoundError) as info:
        client.get_image_stream_tag("default", "test:other")
    assert is_not_found(info.value)
    assert info.value.group == "image.openshift.io"
    assert info.value.kind == "imagestreamtags"


def test_client_rejects_unknown_type():
    with pytest.raises(TypeError):
        MemoryImageClient().add("not an image")


def test_image_with_metadata_decodes_raw():
    image = Image(docker_image_metadata_raw='{"Config": {"Labels": {"label1": "value1"}}}')
    image_with_metadata(image)
    assert image.docker_image_metadata == DockerImage(config=DockerConfig(labels={"label1": "value1"}))
    assert image.docker_image_metadata_version == "1.0"


def test_image_with_metadata_keeps_decoded():
    meta = DockerImage(config=DockerConfig(labels={"label1": "value2"}))
    image = Image(docker_image_metadata=meta)
    image_with_metadata(image)
    assert image.docker_image_metadata is meta


def test_image_with_metadata_invalid_raw():
    with pytest.raises(ValueError):
        image_with_metadata(Image(docker_image_metadata_raw="{not json"))