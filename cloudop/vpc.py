"""VPC resource and its reconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping

from cloudop.model import Resource, ResourceReference, ResourceStatus, Result
from cloudop.reconciler import Reconciler, ResourceHandler

VPC_FINALIZER = "vpc.arubacloud.com/finalizer"


def _empty_reference() -> ResourceReference:
    return ResourceReference(name="")


@dataclass
class VpcSpec:
    """Desired state of a VPC."""

    tenant: str = ""
    tags: list[str] = field(default_factory=list)
    location: str = ""
    project_reference: ResourceReference = field(default_factory=_empty_reference)


@dataclass
class _VpcStatus(ResourceStatus):
    project_id: str = ""


@dataclass
class Vpc(Resource):
    """A virtual private cloud inside a project."""

    kind: ClassVar[str] = "Vpc"

    spec: VpcSpec = field(default_factory=VpcSpec)
    status: _VpcStatus = field(default_factory=_VpcStatus)


def build_vpc_request(vpc: Vpc, include_properties: bool) -> dict[str, Any]:
    """Build the API request body describing the VPC.

    Creation requests carry the properties block; update requests do not.
    """
    request: dict[str, Any] = {
        "metadata": {
            "name": vpc.name,
            "tags": list(vpc.spec.tags),
            "location": {"value": vpc.spec.location},
        }
    }
    if include_properties:
        request["properties"] = {"default": False, "preset": False}
    return request


def _state_of(response: Mapping[str, Any] | None) -> str:
    status = (response or {}).get("status")
    if not status:
        return ""
    return status.get("state", "") or ""


def _id_of(response: Mapping[str, Any] | None) -> str:
    metadata = (response or {}).get("metadata") or {}
    return metadata.get("id", "") or ""


class VpcReconciler(ResourceHandler):
    """Reconciles Vpc objects against the cloud API."""

    def __init__(self, reconciler: Reconciler) -> None:
        self.base = reconciler

    def reconcile(self, name: str, namespace: str) -> Result:
        return self.base.reconcile(name, namespace, Vpc.kind, self)

    def init(self, obj: Vpc) -> Result:
        return self.base.initialize_resource(obj, VPC_FINALIZER)

    def creating(self, obj: Vpc) -> Result:
        def create() -> tuple[str, str]:
            ref = obj.spec.project_reference
            project_id = self.base.get_project_id(ref.name, ref.namespace)
            response = self.base.api.create_vpc(
                project_id, build_vpc_request(obj, include_properties=True)
            )
            obj.status.project_id = project_id
            return _id_of(response), _state_of(response)

        return self.base.handle_creating(obj, create)

    def provisioning(self, obj: Vpc) -> Result:
        def state() -> str:
            response = self.base.api.get_vpc(obj.status.project_id, obj.status.resource_id)
            return _state_of(response)

        return self.base.handle_provisioning(obj, state)

    def updating(self, obj: Vpc) -> Result:
        def update() -> None:
            self.base.api.update_vpc(
                obj.status.project_id,
                obj.status.resource_id,
                build_vpc_request(obj, include_properties=False),
            )

        return self.base.handle_updating(obj, update)

    def created(self, obj: Vpc) -> Result:
        return self.base.check_for_updates(obj)

    def deleting(self, obj: Vpc) -> Result:
        def delete() -> None:
            self.base.api.delete_vpc(obj.status.project_id, obj.status.resource_id)

        return self.base.handle_deletion(obj, VPC_FINALIZER, delete)