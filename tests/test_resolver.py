import pytest

from imagepolicy.apierrors import NotFoundError
from imagepolicy.images import (
    Image,
    ImageStream,
    ImageStreamImage,
    ImageStreamTag,
    MemoryImageClient,
)
from imagepolicy.reference import InvalidReferenceError, parse
from imagepolicy.resolver import ImageResolutionCache
from imagepolicy.rules import RegistryNameMatcher
from imagepolicy.workloads import ObjectReference

GOOD_SHA = "sha256:08151bf2fc92355f236918bb16905921e6f66e1d03100fb9b18d60125db3df3a"
IMAGE1_SHA = "sha256:0000000000000000000000000000000000000000000000000000000000000001"
IMAGE1_REF = "integrated.registry/image1/image1@" + IMAGE1_SHA


def image1():
    return Image(name=IMAGE1_SHA, docker_image_reference=IMAGE1_REF)


def docker(name):
    return ObjectReference(kind="DockerImage", name=name)


def make(*objects, clock=None):
    client = MemoryImageClient(*objects)
    kwargs = {} if clock is None else {"clock": clock}
    return client, ImageResolutionCache(client, RegistryNameMatcher("integrated.registry"), **kwargs)


def test_resolves_by_digest():
    good = Image(name=GOOD_SHA, docker_image_reference="integrated.registry/goodns/goodimage:good")
    _, resolver = make(good)
    attrs = resolver.resolve_object_reference(
        docker("integrated.registry/repo/mysql@" + GOOD_SHA), "default", False
    )
    assert attrs.image.name == GOOD_SHA
    assert attrs.name == parse("integrated.registry/repo/mysql@" + GOOD_SHA)
    assert attrs.integrated_registry is True


def test_digest_outside_integrated_registry():
    _, resolver = make(Image(name=GOOD_SHA))
    attrs = resolver.resolve_object_reference(docker("index.docker.io/mysql@" + GOOD_SHA), "default", False)
    assert attrs.integrated_registry is False
    assert attrs.image.name == GOOD_SHA


def test_missing_digest_raises_not_found():
    _, resolver = make()
    with pytest.raises(NotFoundError):
        resolver.resolve_object_reference(docker("index.docker.io/mysql@" + GOOD_SHA), "default", False)


def test_cache_is_used_until_expiry():
    now = [1.0]
    client, resolver = make(Image(name=GOOD_SHA), clock=lambda: now[0])
    first = resolver.resolve_object_reference(docker("index.docker.io/mysql@" + GOOD_SHA), "default", False)
    assert first.image.annotations == {}

    client.add(Image(name=GOOD_SHA, annotations={"images.openshift.io/deny-execution": "true"}))
    cached = resolver.resolve_object_reference(docker("index.docker.io/mysql@" + GOOD_SHA), "default", False)
    assert cached.image.annotations == {}

    now[0] = 1.0 + 120
    fresh = resolver.resolve_object_reference(docker("index.docker.io/mysql@" + GOOD_SHA), "default", False)
    assert fresh.image.annotations == {"images.openshift.io/deny-execution": "true"}


def test_unresolvable_without_digest():
    _, resolver = make()
    with pytest.raises(ValueError, match="could not be resolved to an exact image reference"):
        resolver.resolve_object_reference(docker("index.docker.io/mysql:latest"), "default", False)


def test_integrated_missing_tag_raises_not_found():
    _, resolver = make()
    with pytest.raises(NotFoundError):
        resolver.resolve_object_reference(
            docker("integrated.registry/repo/mysql:missingtag"), "default", False
        )


def test_integrated_tag_resolves_to_digest():
    good = Image(name=GOOD_SHA, docker_image_reference="integrated.registry/goodns/goodimage:good")
    tag = ImageStreamTag(name="mysql:goodtag", namespace="repo", image=good)
    _, resolver = make(tag)
    attrs = resolver.resolve_object_reference(
        docker("integrated.registry/repo/mysql:goodtag"), "default", False
    )
    assert attrs.name.exact() == "integrated.registry/goodns/goodimage@" + GOOD_SHA
    assert attrs.local_rewrite is False
    assert attrs.integrated_registry is True


def test_local_name_resolves_when_lookup_is_local():
    tag = ImageStreamTag(name="test:other", namespace="default", image=image1(), lookup_policy_local=True)
    _, resolver = make(tag)
    attrs = resolver.resolve_object_reference(docker("test:other"), "default", False)
    assert attrs.name.exact() == IMAGE1_REF
    assert attrs.name.tag == ""
    assert attrs.local_rewrite is True
    assert attrs.image.name == IMAGE1_SHA


def test_local_name_rejected_without_local_lookup():
    tag = ImageStreamTag(name="test:other", namespace="default", image=image1())
    _, resolver = make(tag)
    with pytest.raises(ValueError, match="does not allow local references"):
        resolver.resolve_object_reference(docker("test:other"), "default", False)


def test_forced_local_name_resolves():
    tag = ImageStreamTag(name="test:other", namespace="default", image=image1())
    _, resolver = make(tag)
    attrs = resolver.resolve_object_reference(docker("test:other"), "default", True)
    assert attrs.name.exact() == IMAGE1_REF
    assert attrs.local_rewrite is True


def test_missing_tag_on_local_stream_points_at_registry():
    stream = ImageStream(
        name="test", namespace="default", lookup_policy_local=True,
        docker_image_repository="integrated.registry:5000/default/test",
    )
    _, resolver = make(stream)
    attrs = resolver.resolve_object_reference(docker("test:other"), "default", False)
    assert attrs.name.exact() == "integrated.registry:5000/default/test:other"
    assert attrs.local_rewrite is True
    assert attrs.image is None


def test_missing_tag_on_non_local_stream_raises():
    stream = ImageStream(
        name="test", namespace="default", lookup_policy_local=False,
        docker_image_repository="integrated.registry:5000/default/test",
    )
    _, resolver = make(stream)
    with pytest.raises(NotFoundError):
        resolver.resolve_object_reference(docker("test:other"), "default", False)


def test_missing_tag_on_stream_without_repository_raises():
    stream = ImageStream(name="test", namespace="default", lookup_policy_local=True)
    _, resolver = make(stream)
    with pytest.raises(NotFoundError):
        resolver.resolve_object_reference(docker("test:other"), "default", False)


class _OtherGroupClient:
    def get_image_stream_tag(self, namespace, name):
        raise NotFoundError("", "imagestreamtags", name)

    def get_image_stream(self, namespace, name):
        return ImageStream(
            name=name, namespace=namespace, lookup_policy_local=True,
            docker_image_repository="integrated.registry:5000/default/test",
        )


def test_not_found_from_other_group_is_not_rewritten():
    resolver = ImageResolutionCache(_OtherGroupClient(), RegistryNameMatcher("integrated.registry"))
    with pytest.raises(NotFoundError):
        resolver.resolve_object_reference(docker("test:other"), "default", False)


def test_image_stream_tag_kind_uses_default_namespace():
    tag = ImageStreamTag(name="mysql:goodtag", namespace="repo", image=image1())
    _, resolver = make(tag)
    attrs = resolver.resolve_object_reference(
        ObjectReference(kind="ImageStreamTag", name="mysql:goodtag"), "repo", False
    )
    assert attrs.image.name == IMAGE1_SHA
    assert attrs.local_rewrite is False


def test_image_stream_tag_kind_requires_tag():
    _, resolver = make()
    with pytest.raises(ValueError, match="must be of the form NAME:TAG"):
        resolver.resolve_object_reference(ObjectReference(kind="ImageStreamTag", name="mysql"), "repo", False)


def test_image_stream_image_kind():
    isi = ImageStreamImage(name="mysql@" + IMAGE1_SHA, namespace="repo", image=image1())
    _, resolver = make(isi)
    attrs = resolver.resolve_object_reference(
        ObjectReference(kind="ImageStreamImage", name="mysql@" + IMAGE1_SHA, namespace="repo"),
        "default", False,
    )
    assert attrs.name == parse(IMAGE1_REF)
    assert attrs.integrated_registry is True


def test_image_stream_image_kind_requires_digest():
    _, resolver = make()
    with pytest.raises(ValueError, match="must be of the form NAME@DIGEST"):
        resolver.resolve_object_reference(ObjectReference(kind="ImageStreamImage", name="mysql"), "repo", False)


def test_unknown_kind_is_rejected():
    _, resolver = make()
    with pytest.raises(ValueError, match='kind "Other"'):
        resolver.resolve_object_reference(ObjectReference(kind="Other", name="x"), "default", False)


def test_invalid_pull_spec():
    _, resolver = make()
    with pytest.raises(InvalidReferenceError):
        resolver.resolve_object_reference(docker("Not A Valid Spec"), "default", False)


def test_unparsable_image_reference():
    bad = Image(name=IMAGE1_SHA, docker_image_reference="Not A Valid Spec")
    tag = ImageStreamTag(name="test:other", namespace="default", image=bad, lookup_policy_local=True)
    _, resolver = make(tag)
    with pytest.raises(ValueError, match="could not be parsed"):
        resolver.resolve_object_reference(docker("test:other"), "default", False)