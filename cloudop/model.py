"""Resource model and an in-memory object store used by the reconcilers."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import ClassVar


class ResourcePhase(str, Enum):
    """Lifecycle phase of a managed resource."""

    NONE = ""
    CREATING = "Creating"
    PROVISIONING = "Provisioning"
    UPDATING = "Updating"
    CREATED = "Created"
    DELETING = "Deleting"
    DELETED = "Deleted"
    FAILED = "Failed"


class ConditionStatus(str, Enum):
    """Status value carried by a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


CONDITION_SYNCHRONIZED = "Synchronized"


@dataclass
class Condition:
    """One observed condition of a resource."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass
class ResourceStatus:
    """Status shared by every managed resource."""

    phase: ResourcePhase = ResourcePhase.NONE
    message: str = ""
    resource_id: str = ""
    observed_generation: int = 0
    phase_start_time: datetime | None = None
    conditions: list[Condition] = field(default_factory=list)


@dataclass(frozen=True)
class ResourceReference:
    """Reference to another resource by name and namespace."""

    name: str
    namespace: str = "default"


@dataclass
class Resource:
    """Base of every stored object: identity, finalizers and status."""

    kind: ClassVar[str] = "Resource"

    name: str
    namespace: str = "default"
    generation: int = 0
    deletion_timestamp: datetime | None = None
    finalizers: list[str] = field(default_factory=list)
    status: ResourceStatus = field(default_factory=ResourceStatus)

    @property
    def is_being_deleted(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, name: str) -> bool:
        return name in self.finalizers

    def add_finalizer(self, name: str) -> bool:
        """Add a finalizer; return True if the list changed."""
        if name in self.finalizers:
            return False
        self.finalizers.append(name)
        return True

    def remove_finalizer(self, name: str) -> bool:
        """Remove every copy of a finalizer; return True if the list changed."""
        kept = [f for f in self.finalizers if f != name]
        changed = len(kept) != len(self.finalizers)
        self.finalizers = kept
        return changed


@dataclass(frozen=True)
class Result:
    """Outcome of one reconcile step."""

    requeue: bool = False
    requeue_after: timedelta = timedelta(0)


class ApiError(Exception):
    """Error returned by the remote cloud API."""

    INVALID_STATUS_CODES = frozenset({"notReady", "invalidStatus"})

    def __init__(self, status: int, message: str = "", code: str | None = None):
        super().__init__(message or f"HTTP {status}")
        self.status = status
        self.message = message
        self.code = code

    def is_invalid_status(self) -> bool:
        """True when the remote resource is not ready for the operation."""
        return self.code in self.INVALID_STATUS_CODES


class NotFoundError(LookupError):
    """Raised when a stored object does not exist."""

    def __init__(self, kind: str, name: str, namespace: str):
        super().__init__(f'{kind} "{namespace}/{name}" not found')
        self.kind = kind
        self.name = name
        self.namespace = namespace


class MemoryStore:
    """Keeps objects by kind, namespace and name, with cluster-like semantics.

    Objects handed out are copies; changes reach the store only through
    ``update`` (metadata and spec) or ``update_status`` (status).
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], Resource] = {}

    @staticmethod
    def _key(kind: str, name: str, namespace: str) -> tuple[str, str, str]:
        return (kind, namespace, name)

    def _stored(self, obj: Resource) -> Resource:
        key = self._key(type(obj).kind, obj.name, obj.namespace)
        try:
            return self._objects[key]
        except KeyError:
            raise NotFoundError(type(obj).kind, obj.name, obj.namespace) from None

    def get(self, kind: str, name: str, namespace: str) -> Resource:
        try:
            return copy.deepcopy(self._objects[self._key(kind, name, namespace)])
        except KeyError:
            raise NotFoundError(kind, name, namespace) from None

    def create(self, obj: Resource) -> None:
        key = self._key(type(obj).kind, obj.name, obj.namespace)
        if key in self._objects:
            raise ValueError(
                f'{type(obj).kind} "{obj.namespace}/{obj.name}" already exists'
            )
        obj.generation = 1
        obj.deletion_timestamp = None
        self._objects[key] = copy.deepcopy(obj)

    def update(self, obj: Resource) -> None:
        """Store metadata and spec; the stored status is kept."""
        stored = self._stored(obj)
        new = copy.deepcopy(obj)
        new.status = stored.status
        if getattr(new, "spec", None) != getattr(stored, "spec", None):
            new.generation = stored.generation + 1
        else:
            new.generation = stored.generation
        if stored.deletion_timestamp is not None:
            new.deletion_timestamp = stored.deletion_timestamp
        obj.generation = new.generation
        obj.deletion_timestamp = new.deletion_timestamp
        key = self._key(type(obj).kind, obj.name, obj.namespace)
        if new.deletion_timestamp is not None and not new.finalizers:
            del self._objects[key]
        else:
            self._objects[key] = new

    def update_status(self, obj: Resource) -> None:
        """Store only the status of the object."""
        stored = self._stored(obj)
        stored.status = copy.deepcopy(obj.status)

    def delete(self, obj: Resource) -> None:
        """Delete the object, or mark it for deletion while finalizers remain."""
        stored = self._stored(obj)
        if stored.finalizers:
            if stored.deletion_timestamp is None:
                stored.deletion_timestamp = datetime.now(timezone.utc)
            obj.deletion_timestamp = stored.deletion_timestamp
            return
        del self._objects[self._key(type(obj).kind, obj.name, obj.namespace)]