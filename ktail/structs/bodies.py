"""
Raw watch-events and the parsed pod snapshots.

The raw structures are exactly what comes from the K8s API. They are typed
only partially: to the extent of the fields used in this tool.

The parsed snapshots are immutable and contain only what the controller
and the tailers need: the pod's identity, labels, and ordered containers.
A snapshot is taken once per watch-event and is not kept beyond its handling,
except in the running tailers which are bound to one pod & one container.
"""
import collections.abc
import dataclasses
from typing import Any, Mapping, Optional, Tuple, Union

from typing_extensions import Literal, TypedDict

RawEventType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Mapping[str, str]
    resourceVersion: str


class RawContainer(TypedDict, total=False):
    name: str
    image: str


class RawSpec(TypedDict, total=False):
    containers: Any


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: RawSpec
    status: Mapping[str, Any]


class RawEvent(TypedDict, total=True):
    type: RawEventType
    object: RawBody


class RawError(TypedDict, total=False):
    apiVersion: str
    kind: str
    code: int
    message: str
    reason: str
    status: str


# As received from the stream before filtering, i.e. with errors & unknown types included.
class RawInput(TypedDict, total=True):
    type: str
    object: Union[RawBody, RawError]


@dataclasses.dataclass(frozen=True)
class Container:
    name: str
    image: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class Pod:
    namespace: str
    name: str
    uid: Optional[str] = None
    labels: Mapping[str, str] = dataclasses.field(default_factory=dict, hash=False)
    containers: Tuple[Container, ...] = ()

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def parse_pod(raw: object) -> Optional[Pod]:
    """
    Take a snapshot of a raw pod body, or return ``None`` if it is not a pod.

    Non-pod payloads are not an error: they are ignored by the callers.
    The list-responses contain no ``kind`` in the items, so the absence
    of the kind is acceptable; a different kind is not.
    """
    if not isinstance(raw, collections.abc.Mapping):
        return None
    if raw.get('kind', 'Pod') != 'Pod':
        return None

    meta = raw.get('metadata')
    spec = raw.get('spec')
    if not isinstance(meta, collections.abc.Mapping) or not isinstance(spec, collections.abc.Mapping):
        return None

    name = meta.get('name')
    raw_containers = spec.get('containers')
    if not name or not isinstance(raw_containers, collections.abc.Sequence):
        return None

    containers = []
    for raw_container in raw_containers:
        if not isinstance(raw_container, collections.abc.Mapping) or not raw_container.get('name'):
            return None
        containers.append(Container(name=raw_container['name'], image=raw_container.get('image')))

    labels = meta.get('labels') or {}
    return Pod(
        namespace=meta.get('namespace') or '',
        name=name,
        uid=meta.get('uid'),
        labels=dict(labels),
        containers=tuple(containers),
    )
