from dataclasses import dataclass
from datetime import timedelta
from typing import ClassVar

import pytest

from cloudop.model import (
    ApiError,
    MemoryStore,
    NotFoundError,
    Resource,
    ResourcePhase,
    ResourceReference,
    ResourceStatus,
    Result,
)
from cloudop.reconciler import Reconciler, ReconcileError
from cloudop.subnet import (
    SUBNET_FINALIZER,
    Subnet,
    SubnetReconciler,
    SubnetSpec,
    build_subnet_request,
)


@dataclass
class Project(Resource):
    kind: ClassVar[str] = "Project"


@dataclass
class Vpc(Resource):
    kind: ClassVar[str] = "Vpc"


class FakeTokens:
    def __init__(self, active="token 123"):
        self.active = active
        self.credentials = None

    def get_active_token(self, tenant_id):
        return self.active

    def set_client_id_and_secret(self, client_id, client_secret):
        self.credentials = (client_id, client_secret)

    def get_access_token(self, force, tenant_id):
        return "token"


class FakeApi:
    def __init__(self, state="", resource_id="sn-1", error=None):
        self.state = state
        self.resource_id = resource_id
        self.error = error
        self.calls = []
        self.token = None

    def set_api_token(self, token):
        self.token = token

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    def create_subnet(self, project_id, vpc_id, request):
        self.calls.append(("create", project_id, vpc_id, request))
        self._maybe_fail()
        return {"metadata": {"id": self.resource_id}, "status": {"state": self.state}}

    def get_subnet(self, project_id, vpc_id, subnet_id):
        self.calls.append(("get", project_id, vpc_id, subnet_id))
        self._maybe_fail()
        return {"metadata": {"id": subnet_id}, "status": {"state": self.state}}

    def update_subnet(self, project_id, vpc_id, subnet_id, request):
        self.calls.append(("update", project_id, vpc_id, subnet_id, request))
        self._maybe_fail()
        return {}

    def delete_subnet(self, project_id, vpc_id, subnet_id):
        self.calls.append(("delete", project_id, vpc_id, subnet_id))
        self._maybe_fail()


REQUEUE = Result(requeue=True, requeue_after=timedelta(seconds=20))


def make_subnet(**status_fields):
    subnet = Subnet(
        name="test-subnet",
        namespace="default",
        spec=SubnetSpec(
            tenant="test-tenant",
            tags=["test"],
            type="Advanced",
            default=False,
            network_address="192.168.1.0/24",
            dhcp_enabled=True,
            vpc_reference=ResourceReference("test-vpc", "default"),
            project_reference=ResourceReference("test-project", "default"),
        ),
    )
    for key, value in status_fields.items():
        setattr(subnet.status, key, value)
    return subnet


EXPECTED_REQUEST = {
    "metadata": {"name": "test-subnet", "tags": ["test"]},
    "properties": {
        "type": "Advanced",
        "default": False,
        "network": {"address": "192.168.1.0/24"},
        "dhcp": {"enabled": True},
    },
}


@pytest.fixture
def store():
    s = MemoryStore()
    s.create(Project(name="test-project", status=ResourceStatus(resource_id="proj-1")))
    s.create(Vpc(name="test-vpc", status=ResourceStatus(resource_id="vpc-1")))
    return s


def make_reconciler(store, api, tokens=None, **kwargs):
    base = Reconciler(store, tokens or FakeTokens(), api=api, **kwargs)
    return SubnetReconciler(base)


def stored(store):
    return store.get("Subnet", "test-subnet", "default")


def test_reconcile_new_resource_succeeds(store):
    store.create(make_subnet())
    api = FakeApi()
    result = make_reconciler(store, api).reconcile("test-subnet", "default")
    assert result == REQUEUE
    obj = stored(store)
    assert obj.status.phase == ResourcePhase.CREATING
    assert obj.finalizers == [SUBNET_FINALIZER]
    assert api.token == "token 123"


def test_reconcile_missing_object_returns_empty_result(store):
    result = make_reconciler(store, FakeApi()).reconcile("absent", "default")
    assert result == Result()


def test_build_subnet_request():
    assert build_subnet_request(make_subnet()) == EXPECTED_REQUEST


def test_creating_moves_to_provisioning(store):
    store.create(make_subnet(phase=ResourcePhase.CREATING))
    api = FakeApi(state="InCreation", resource_id="sn-1")
    result = make_reconciler(store, api).reconcile("test-subnet", "default")
    assert result == REQUEUE
    obj = stored(store)
    assert obj.status.phase == ResourcePhase.PROVISIONING
    assert obj.status.resource_id == "sn-1"
    assert obj.status.project_id == "proj-1"
    assert obj.status.vpc_id == "vpc-1"
    assert api.calls == [("create", "proj-1", "vpc-1", EXPECTED_REQUEST)]


def test_creating_without_state_moves_to_created(store):
    store.create(make_subnet(phase=ResourcePhase.CREATING))
    make_reconciler(store, FakeApi(state="")).reconcile("test-subnet", "default")
    obj = stored(store)
    assert obj.status.phase == ResourcePhase.CREATED
    assert obj.status.message == "Resource created successfully"


def test_creating_with_missing_project_retries(store):
    store.create(
        make_subnet(phase=ResourcePhase.CREATING)
    )
    project = store.get("Project", "test-project", "default")
    store.delete(project)
    api = FakeApi()
    make_reconciler(store, api).reconcile("test-subnet", "default")
    obj = stored(store)
    assert obj.status.phase == ResourcePhase.CREATING
    assert obj.status.conditions[0].reason == "ReconcileError"
    assert "failed to get referenced Project default/test-project" in obj.status.message
    assert api.calls == []


def test_creating_client_error_fails(store):
    store.create(make_subnet(phase=ResourcePhase.CREATING))
    api = FakeApi(error=ApiError(404, "missing"))
    result = make_reconciler(store, api).reconcile("test-subnet", "default")
    assert result == Result(requeue=False, requeue_after=timedelta(seconds=20))
    obj = stored(store)
    assert obj.status.phase == ResourcePhase.FAILED
    assert obj.status.message == "Client error (HTTP 404): missing"
    assert obj.status.project_id == ""


@pytest.mark.parametrize(
    "state, phase",
    [
        ("Available", ResourcePhase.CREATED),
        ("Active", ResourcePhase.CREATED),
        ("Failed", ResourcePhase.FAILED),
        ("Pending", ResourcePhase.PROVISIONING),
    ],
)
def test_provisioning_follows_remote_state(store, state, phase):
    store.create(
        make_subnet(
            phase=ResourcePhase.PROVISIONING,
            resource_id="sn-1",
            project_id="proj-1",
            vpc_id="vpc-1",
        )
    )
    api = FakeApi(state=state)
    make_reconciler(store, api).reconcile("test-subnet", "default")
    assert stored(store).status.phase == phase
    assert api.calls == [("get", "proj-1", "vpc-1", "sn-1")]


def test_updating_sends_request(store):
    store.create(
        make_subnet(
            phase=ResourcePhase.UPDATING,
            resource_id="sn-1",
            project_id="proj-1",
            vpc_id="vpc-1",
        )
    )
    api = FakeApi()
    make_reconciler(store, api).reconcile("test-subnet", "default")
    obj = stored(store)
    assert obj.status.phase == ResourcePhase.CREATED
    assert obj.status.conditions[0].reason == "Updated"
    assert api.calls == [("update", "proj-1", "vpc-1", "sn-1", EXPECTED_REQUEST)]


def test_created_detects_spec_change(store):
    store.create(make_subnet(phase=ResourcePhase.CREATED, observed_generation=1))
    reconciler = make_reconciler(store, FakeApi())
    assert reconciler.reconcile("test-subnet", "default") == Result()

    obj = stored(store)
    obj.spec.tags = ["changed"]
    store.update(obj)
    result = reconciler.reconcile("test-subnet", "default")
    assert result == REQUEUE
    after = stored(store)
    assert after.status.phase == ResourcePhase.UPDATING
    assert after.status.observed_generation == 2


def test_full_lifecycle_and_deletion(store):
    store.create(make_subnet())
    api = FakeApi(state="")
    reconciler = make_reconciler(store, api)
    reconciler.reconcile("test-subnet", "default")
    reconciler.reconcile("test-subnet", "default")
    assert stored(store).status.phase == ResourcePhase.CREATED

    store.delete(stored(store))
    reconciler.reconcile("test-subnet", "default")
    assert stored(store).status.phase == ResourcePhase.DELETING

    assert reconciler.reconcile("test-subnet", "default") == Result()
    assert api.calls[-1] == ("delete", "proj-1", "vpc-1", "sn-1")
    with pytest.raises(NotFoundError):
        stored(store)


def test_vault_enabled_requires_tenant(store):
    subnet = make_subnet()
    subnet.spec.tenant = ""
    store.create(subnet)
    reconciler = make_reconciler(store, FakeApi(), vault_enabled=True)
    with pytest.raises(ReconcileError, match="Tenant ID is not specified"):
        reconciler.reconcile("test-subnet", "default")