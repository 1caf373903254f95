"""Data types for interacting with Kubernetes."""

from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import Any, Protocol, Self

from kubernetes_asyncio.client import (
    V1ObjectMeta,
    V1ObjectReference,
    V1PersistentVolume,
    V1PersistentVolumeClaim,
    V1StorageClass,
)

from ...exceptions import InvalidObjectError

__all__ = [
    "Claim",
    "ClaimPhase",
    "EventType",
    "KubernetesModel",
    "ReclaimPolicy",
    "StorageClass",
    "Volume",
    "VolumePhase",
    "WatchEventType",
    "claim_from_object",
    "volume_from_object",
]


class KubernetesModel(Protocol):
    """Protocol for Kubernetes object models.

    kubernetes-asyncio_ doesn't currently expose type information, so this
    tells mypy that all the object models we deal with will have a metadata
    attribute.
    """

    metadata: V1ObjectMeta

    def to_dict(self, *, serialize: bool = False) -> dict[str, Any]: ...


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class EventType(StrEnum):
    """Severity of a Kubernetes event."""

    NORMAL = "Normal"
    WARNING = "Warning"


class ClaimPhase(StrEnum):
    """One of the valid phases of a ``PersistentVolumeClaim``."""

    PENDING = "Pending"
    BOUND = "Bound"
    LOST = "Lost"


class VolumePhase(StrEnum):
    """One of the valid phases of a ``PersistentVolume``."""

    PENDING = "Pending"
    AVAILABLE = "Available"
    BOUND = "Bound"
    RELEASED = "Released"
    FAILED = "Failed"


class ReclaimPolicy(StrEnum):
    """What to do with a volume once its claim is gone."""

    DELETE = "Delete"
    RETAIN = "Retain"
    RECYCLE = "Recycle"


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    # Serialized Kubernetes objects use null for unset sections.
    return data.get(key) or {}


@dataclass
class Claim:
    """The parts of a ``PersistentVolumeClaim`` used for provisioning."""

    name: str
    """Name of the claim."""

    namespace: str
    """Namespace of the claim."""

    uid: str
    """Unique identifier of the claim."""

    phase: ClaimPhase | None = None
    """Current phase, or `None` if the status has not been set yet."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations on the claim."""

    storage_class_name: str | None = None
    """Class named in ``spec.storageClassName``, if any."""

    match_labels: dict[str, str] | None = None
    """Labels from ``spec.selector.matchLabels``, if a selector is set."""

    storage: str | None = None
    """Requested storage quantity, such as ``10Gi``."""

    access_modes: list[str] = field(default_factory=list)
    """Requested access modes."""

    volume_name: str | None = None
    """Name of the bound persistent volume, if any."""

    resource_version: str | None = None
    """Resource version of the object this was decoded from."""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create from a serialized (camel-case) Kubernetes object.

        Parameters
        ----------
        data
            Object as returned by the Kubernetes API, such as the
            ``raw_object`` of a watch event.

        Returns
        -------
        Claim
            The corresponding claim.
        """
        metadata = _section(data, "metadata")
        spec = _section(data, "spec")
        status = _section(data, "status")
        selector = spec.get("selector")
        requests = _section(_section(spec, "resources"), "requests")
        phase = status.get("phase")
        storage = requests.get("storage")
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid", ""),
            phase=ClaimPhase(phase) if phase else None,
            annotations=dict(metadata.get("annotations") or {}),
            storage_class_name=spec.get("storageClassName"),
            match_labels=selector.get("matchLabels") if selector else None,
            storage=str(storage) if storage is not None else None,
            access_modes=list(spec.get("accessModes") or []),
            volume_name=spec.get("volumeName"),
            resource_version=metadata.get("resourceVersion"),
        )

    @classmethod
    def from_kubernetes(cls, claim: V1PersistentVolumeClaim) -> Self:
        """Create from a Kubernetes API object.

        Parameters
        ----------
        claim
            Kubernetes API object.

        Returns
        -------
        Claim
            The corresponding claim.
        """
        return cls.from_dict(claim.to_dict(serialize=True))

    def to_reference(self) -> V1ObjectReference:
        """Build a reference to this claim, for events and claim refs."""
        return V1ObjectReference(
            api_version="v1",
            kind="PersistentVolumeClaim",
            name=self.name,
            namespace=self.namespace,
            uid=self.uid,
            resource_version=self.resource_version,
        )


@dataclass
class Volume:
    """The parts of a ``PersistentVolume`` used for reclaiming."""

    name: str
    """Name of the volume."""

    uid: str
    """Unique identifier of the volume."""

    phase: VolumePhase | None = None
    """Current phase, if known."""

    reclaim_policy: ReclaimPolicy = ReclaimPolicy.RETAIN
    """Reclaim policy of the volume."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations on the volume."""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create from a serialized (camel-case) Kubernetes object."""
        metadata = _section(data, "metadata")
        spec = _section(data, "spec")
        phase = _section(data, "status").get("phase")
        policy = spec.get("persistentVolumeReclaimPolicy")
        return cls(
            name=metadata.get("name", ""),
            uid=metadata.get("uid", ""),
            phase=VolumePhase(phase) if phase else None,
            reclaim_policy=(
                ReclaimPolicy(policy) if policy else ReclaimPolicy.RETAIN
            ),
            annotations=dict(metadata.get("annotations") or {}),
        )

    @classmethod
    def from_kubernetes(cls, volume: V1PersistentVolume) -> Self:
        """Create from a Kubernetes API object."""
        return cls.from_dict(volume.to_dict(serialize=True))


@dataclass
class StorageClass:
    """A ``StorageClass`` as seen by the provisioner."""

    name: str
    """Name of the class."""

    provisioner: str
    """Provisioner that should service claims for this class."""

    parameters: dict[str, str] = field(default_factory=dict)
    """Provisioner parameters."""

    reclaim_policy: ReclaimPolicy = ReclaimPolicy.DELETE
    """Reclaim policy for volumes of this class."""

    mount_options: list[str] = field(default_factory=list)
    """Mount options for volumes of this class."""

    @classmethod
    def from_kubernetes(cls, storage_class: V1StorageClass) -> Self:
        """Create from a Kubernetes API object.

        Parameters
        ----------
        storage_class
            Kubernetes API object.

        Returns
        -------
        StorageClass
            The corresponding class.
        """
        policy = storage_class.reclaim_policy
        return cls(
            name=storage_class.metadata.name,
            provisioner=storage_class.provisioner,
            parameters=dict(storage_class.parameters or {}),
            reclaim_policy=(
                ReclaimPolicy(policy) if policy else ReclaimPolicy.DELETE
            ),
            mount_options=list(storage_class.mount_options or []),
        )


def claim_from_object(obj: object) -> Claim:
    """Decode the object attached to a claim watch event.

    Parameters
    ----------
    obj
        Either a ``V1PersistentVolumeClaim`` or the same claim in its raw
        serialized form.

    Returns
    -------
    Claim
        Decoded claim.

    Raises
    ------
    InvalidObjectError
        Raised if the object is of any other type.
    """
    match obj:
        case V1PersistentVolumeClaim():
            return Claim.from_kubernetes(obj)
        case dict():
            return Claim.from_dict(obj)
        case _:
            raise InvalidObjectError(obj, "PersistentVolumeClaim")


def volume_from_object(obj: object) -> Volume:
    """Decode the object attached to a volume watch event.

    Raises
    ------
    InvalidObjectError
        Raised if the object is neither a ``V1PersistentVolume`` nor a raw
        serialized object.
    """
    match obj:
        case V1PersistentVolume():
            return Volume.from_kubernetes(obj)
        case dict():
            return Volume.from_dict(obj)
        case _:
            raise InvalidObjectError(obj, "PersistentVolume")
