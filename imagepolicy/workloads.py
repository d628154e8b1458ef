"""Workload objects that carry pod specs, and access to their pod templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from .apierrors import FieldPath


@dataclass
class ObjectReference:
    """A reference to an image: a pull spec, an image stream tag or an image stream image."""

    kind: str = ""
    name: str = ""
    namespace: str = ""


@dataclass
class OwnerReference:
    """Points at an object that owns another; ``controller`` marks the managing owner."""

    kind: str = ""
    name: str = ""
    controller: Optional[bool] = None


@dataclass
class ObjectMeta:
    """Metadata common to every object."""

    name: str = ""
    namespace: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)


@dataclass
class Container:
    """A container and the image it runs."""

    name: str = ""
    image: str = ""


@dataclass
class PodSpec:
    """The containers of a pod."""

    containers: list[Container] = field(default_factory=list)
    init_containers: list[Container] = field(default_factory=list)


@dataclass
class PodTemplateSpec:
    """A pod template nested inside a workload."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: PodSpec = field(default_factory=PodSpec)


@dataclass
class Pod:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: PodSpec = field(default_factory=PodSpec)


@dataclass
class PodTemplate:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)


@dataclass
class ReplicationController:
    """A replication controller; its template is optional."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: Optional[PodTemplateSpec] = None


@dataclass
class DaemonSet:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)


@dataclass
class Deployment:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)


@dataclass
class ReplicaSet:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)


@dataclass
class StatefulSet:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)


@dataclass
class Job:
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)


@dataclass
class CronJob:
    """A cron job; ``template`` is the pod template of its job template."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)


@dataclass
class Node:
    """An object without any pod spec."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)


class NoPodSpecError(LookupError):
    """The object carries no pod spec."""

    def __init__(self, message: str = "No PodSpec available for this object") -> None:
        super().__init__(message)


_TEMPLATED = (DaemonSet, Deployment, ReplicaSet, StatefulSet, Job)

Workload = Union[
    Pod, PodTemplate, ReplicationController, DaemonSet, Deployment,
    ReplicaSet, StatefulSet, Job, CronJob,
]


def get_pod_spec(obj: object) -> tuple[PodSpec, FieldPath]:
    """Return the mutable pod spec of ``obj`` and the path to it.

    Raises NoPodSpecError when the object has none.
    """
    if isinstance(obj, Pod):
        return obj.spec, FieldPath("spec")
    if isinstance(obj, PodTemplate):
        return obj.template.spec, FieldPath("template", "spec")
    if isinstance(obj, ReplicationController):
        if obj.template is not None:
            return obj.template.spec, FieldPath("spec", "template", "spec")
    elif isinstance(obj, _TEMPLATED):
        return obj.template.spec, FieldPath("spec", "template", "spec")
    elif isinstance(obj, CronJob):
        return obj.template.spec, FieldPath("spec", "jobTemplate", "spec", "template", "spec")
    raise NoPodSpecError()


def get_template_meta(obj: object) -> Optional[ObjectMeta]:
    """Return the metadata of the pod template inside ``obj``, or None if it has none."""
    if isinstance(obj, PodTemplate):
        return obj.template.metadata
    if isinstance(obj, ReplicationController):
        return obj.template.metadata if obj.template is not None else None
    if isinstance(obj, (*_TEMPLATED, CronJob)):
        return obj.template.metadata
    return None