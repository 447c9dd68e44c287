"""Subnet resource and its reconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping

from cloudop.model import Resource, ResourceReference, ResourceStatus, Result
from cloudop.reconciler import Reconciler, ResourceHandler

SUBNET_FINALIZER = "subnet.arubacloud.com/finalizer"


def _empty_reference() -> ResourceReference:
    return ResourceReference(name="")


@dataclass
class SubnetSpec:
    """Desired state of a subnet."""

    tenant: str = ""
    tags: list[str] = field(default_factory=list)
    type: str = ""
    default: bool = False
    network_address: str = ""
    dhcp_enabled: bool = False
    vpc_reference: ResourceReference = field(default_factory=_empty_reference)
    project_reference: ResourceReference = field(default_factory=_empty_reference)


@dataclass
class _SubnetStatus(ResourceStatus):
    project_id: str = ""
    vpc_id: str = ""


@dataclass
class Subnet(Resource):
    """A subnet inside a VPC."""

    kind: ClassVar[str] = "Subnet"

    spec: SubnetSpec = field(default_factory=SubnetSpec)
    status: _SubnetStatus = field(default_factory=_SubnetStatus)


def build_subnet_request(subnet: Subnet) -> dict[str, Any]:
    """Build the API request body describing the subnet."""
    spec = subnet.spec
    return {
        "metadata": {"name": subnet.name, "tags": list(spec.tags)},
        "properties": {
            "type": spec.type,
            "default": spec.default,
            "network": {"address": spec.network_address},
            "dhcp": {"enabled": spec.dhcp_enabled},
        },
    }


def _state_of(response: Mapping[str, Any] | None) -> str:
    status = (response or {}).get("status")
    if not status:
        return ""
    return status.get("state", "") or ""


def _id_of(response: Mapping[str, Any] | None) -> str:
    metadata = (response or {}).get("metadata") or {}
    return metadata.get("id", "") or ""


class SubnetReconciler(ResourceHandler):
    """Reconciles Subnet objects against the cloud API."""

    def __init__(self, reconciler: Reconciler) -> None:
        self.base = reconciler

    def reconcile(self, name: str, namespace: str) -> Result:
        return self.base.reconcile(name, namespace, Subnet.kind, self)

    def init(self, obj: Subnet) -> Result:
        return self.base.initialize_resource(obj, SUBNET_FINALIZER)

    def creating(self, obj: Subnet) -> Result:
        def create() -> tuple[str, str]:
            project_ref = obj.spec.project_reference
            vpc_ref = obj.spec.vpc_reference
            project_id = self.base.get_project_id(project_ref.name, project_ref.namespace)
            vpc_id = self.base.get_vpc_id(vpc_ref.name, vpc_ref.namespace)
            response = self.base.api.create_subnet(
                project_id, vpc_id, build_subnet_request(obj)
            )
            obj.status.project_id = project_id
            obj.status.vpc_id = vpc_id
            return _id_of(response), _state_of(response)

        return self.base.handle_creating(obj, create)

    def provisioning(self, obj: Subnet) -> Result:
        def state() -> str:
            response = self.base.api.get_subnet(
                obj.status.project_id, obj.status.vpc_id, obj.status.resource_id
            )
            return _state_of(response)

        return self.base.handle_provisioning(obj, state)

    def updating(self, obj: Subnet) -> Result:
        def update() -> None:
            self.base.api.update_subnet(
                obj.status.project_id,
                obj.status.vpc_id,
                obj.status.resource_id,
                build_subnet_request(obj),
            )

        return self.base.handle_updating(obj, update)

    def created(self, obj: Subnet) -> Result:
        return self.base.check_for_updates(obj)

    def deleting(self, obj: Subnet) -> Result:
        def delete() -> None:
            self.base.api.delete_subnet(
                obj.status.project_id, obj.status.vpc_id, obj.status.resource_id
            )

        return self.base.handle_deletion(obj, SUBNET_FINALIZER, delete)