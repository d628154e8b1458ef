"""Finding and rewriting the image references held by objects."""

from __future__ import annotations

from typing import Callable, Optional

from .apierrors import FieldError, FieldPath, internal_error, is_not_found, not_found
from .config import RESOLVE_NAMES_ANNOTATION
from .workloads import (
    Container,
    NoPodSpecError,
    ObjectMeta,
    ObjectReference,
    PodSpec,
    get_pod_spec,
    get_template_meta,
)

DOCKER_IMAGE_KIND = "DockerImage"

# Receives a reference and may change its kind, name and namespace; raises to report an error.
ImageReferenceMutateFunc = Callable[[ObjectReference], None]


class NoImageMutatorError(LookupError):
    """The object holds no list of images."""

    def __init__(self, message: str = "No list of images available for this object") -> None:
        super().__init__(message)


class AnnotationAccessor:
    """Reads and writes the annotations of an object and of its pod template, if any."""

    def __init__(self, obj: ObjectMeta, template: Optional[ObjectMeta] = None) -> None:
        self._object = obj
        self._template = template

    def annotations(self) -> dict[str, str]:
        return self._object.annotations

    def set_annotations(self, annotations: dict[str, str]) -> None:
        self._object.annotations = annotations

    def template_annotations(self) -> Optional[dict[str, str]]:
        """The template's annotations, or None if there is no template."""
        return None if self._template is None else self._template.annotations

    def set_template_annotations(self, annotations: dict[str, str]) -> bool:
        """Set the template's annotations; False if there is no template."""
        if self._template is None:
            return False
        self._template.annotations = annotations
        return True


def resolve_all_names(annotations: Optional[AnnotationAccessor]) -> bool:
    """True if the object or its template asks for every image name to be resolved."""
    if annotations is None:
        return False
    template = annotations.template_annotations()
    if template is not None and template.get(RESOLVE_NAMES_ANNOTATION) == "*":
        return True
    own = annotations.annotations()
    return bool(own) and own.get(RESOLVE_NAMES_ANNOTATION) == "*"


def field_error_or_internal(err: BaseException, path: Optional[FieldPath]) -> FieldError:
    """Turn any error into a field error located at ``path``."""
    if isinstance(err, FieldError):
        if not err.field:
            err.field = str(path) if path is not None else ""
        return err
    if is_not_found(err):
        return not_found(path, err)
    return internal_error(path, err)


def _has_identical_image(spec: Optional[PodSpec], container_name: str, image: str) -> bool:
    if spec is None:
        return False
    for container in (*spec.init_containers, *spec.containers):
        if container.name == container_name:
            return container.image == image
    return False


class PodSpecMutator:
    """Applies a mutation to every container image of a pod spec."""

    def __init__(
        self,
        spec: PodSpec,
        old_spec: Optional[PodSpec] = None,
        path: Optional[FieldPath] = None,
        resolve_annotation_changed: bool = False,
    ) -> None:
        self.spec = spec
        self.old_spec = old_spec
        self.path = path
        self.resolve_annotation_changed = resolve_annotation_changed

    def mutate(self, fn: ImageReferenceMutateFunc) -> list[FieldError]:
        """Call ``fn`` on init containers, then containers, and store the resulting names.

        Images unchanged from the old spec are skipped unless the resolve annotation
        changed. A reference whose kind becomes anything but DockerImage is an error.
        Never stops early; returns every error found.
        """
        base = self.path if self.path is not None else FieldPath()
        errors: list[FieldError] = []
        for field_name, containers in (
            ("initContainers", self.spec.init_containers),
            ("containers", self.spec.containers),
        ):
            for i, container in enumerate(containers):
                if not self.resolve_annotation_changed and _has_identical_image(
                    self.old_spec, container.name, container.image
                ):
                    continue
                path = base.child(field_name).index(i).child("image")
                ref = ObjectReference(kind=DOCKER_IMAGE_KIND, name=container.image)
                try:
                    fn(ref)
                except Exception as err:  # the callback reports failures by raising
                    errors.append(field_error_or_internal(err, path))
                    continue
                if ref.kind != DOCKER_IMAGE_KIND:
                    message = f'pod specs may only contain references to docker images, not "{ref.kind}"'
                    errors.append(field_error_or_internal(ValueError(message), path))
                    continue
                container.image = ref.name
        return errors

    def container_by_name(self, name: str) -> Optional[Container]:
        for container in (*self.spec.init_containers, *self.spec.containers):
            if container.name == name:
                return container
        return None

    def container_by_index(self, init: bool, i: int) -> Optional[Container]:
        containers = self.spec.init_containers if init else self.spec.containers
        if 0 <= i < len(containers):
            return containers[i]
        return None


class KubeImageMutators:
    """Image mutators for the built-in workload types."""

    def get_image_reference_mutator(self, obj: object, old: object = None) -> PodSpecMutator:
        """Return a mutator over ``obj``; only images that differ from ``old`` are visited.

        Raises NoImageMutatorError if ``obj`` holds no images, and TypeError if
        ``old`` is not of a kind that holds a pod spec.
        """
        resolve_changed = resolve_all_names(self.get_annotation_accessor(obj)) != resolve_all_names(
            self.get_annotation_accessor(old)
        )
        try:
            spec, path = get_pod_spec(obj)
        except NoPodSpecError:
            raise NoImageMutatorError() from None
        old_spec = None
        if old is not None:
            try:
                old_spec, _ = get_pod_spec(old)
            except NoPodSpecError as err:
                raise TypeError(
                    "old and new pod spec objects were not of the same type "
                    f"{type(obj).__name__} != {type(old).__name__}: {err}"
                ) from None
        return PodSpecMutator(spec, old_spec, path, resolve_changed)

    def get_annotation_accessor(self, obj: object) -> Optional[AnnotationAccessor]:
        """Return an accessor for ``obj``, or None if it has no metadata."""
        metadata = getattr(obj, "metadata", None)
        if not isinstance(metadata, ObjectMeta):
            return None
        return AnnotationAccessor(metadata, get_template_meta(obj))