# cloudop

`cloudop` moves cloud resources through a lifecycle of phases:
`Creating`, `Provisioning`, `Created`, `Updating`, `Deleting` and `Failed`.
At each step it updates the resource's status, its conditions and its
finalizers. The calls that create, poll, update and delete the remote
resource go to an API object that you supply.

## Installing

```
pip install .
```

To install the test dependencies and run the tests:

```
pip install .[test]
pytest
```

## Modules

### `cloudop.model`

The resource model.

- `Resource` is the base of every stored object. It holds a name, a
  namespace, a generation, a deletion timestamp, finalizers and a
  `ResourceStatus`. Finalizers are managed with `has_finalizer`,
  `add_finalizer` and `remove_finalizer`.
- `ResourceStatus` holds the phase, the message, the remote `resource_id`,
  the observed generation, the phase start time and a list of `Condition`s.
- `ResourcePhase`, `ConditionStatus` and `ResourceReference` are the
  supporting types.
- `Result` is what one reconcile step returns. It has `requeue` and
  `requeue_after`; `requeue_after` is a `datetime.timedelta`.
- `ApiError` is the error for remote API failures. It carries an HTTP
  `status` and an optional `code`. `is_invalid_status()` is true for the
  codes `notReady` and `invalidStatus`.
- `NotFoundError` is raised by the store when an object is missing.
- `MemoryStore` is an in-memory object store with `get`, `create`,
  `update`, `update_status` and `delete`.
  - `get` hands out copies.
  - `update` stores metadata and spec. It raises the generation when the
    spec has changed.
  - `update_status` stores only the status.
  - `delete` only marks an object for deletion while it still has
    finalizers. The object is removed once an `update` leaves it without
    any.

### `cloudop.conditions`

`update_conditions(conditions, condition_type, status, reason, message)`
adds a condition of the given type, or changes the existing one. An existing
condition is changed, and gets a new transition time, only when its status
or its reason differs.

### `cloudop.volumes`

`calculate_volume_changes(desired_volume_ids, current_volume_ids)` returns
two lists, in input order:

- the IDs to attach, which are desired but not current;
- the IDs to detach, which are current but not desired.

### `cloudop.reconciler`

`Reconciler(store, token_manager, api=None, secrets=None, vault_enabled=False, clock=None)`
holds the logic that every resource kind shares.

- **Dispatch.** `reconcile(name, namespace, kind, handler)` loads the
  object and authenticates. It then applies the phase timeout and the
  deletion check, and calls the handler step for the current phase. Objects
  in the `Deleted` or `Failed` phase are left alone. A missing object gives
  an empty `Result`.
- **Authentication.** The token manager must provide
  `get_active_token(tenant_id)`, `set_client_id_and_secret(client_id, client_secret)`
  and `get_access_token(force, tenant_id)`.
  - When `vault_enabled` is set, a resource without a tenant raises
    `ReconcileError`.
  - When no active token is found, the client id and secret are read from
    `secrets.get_secret(tenant_id)` under the keys `client-id` and
    `client-secret`.
  - The token is handed to `api.set_api_token(token)`.
- **Phase timeout.** A resource that stays longer than five minutes in
  `Creating`, `Provisioning`, `Updating` or `Deleting` is moved to `Failed`.
- **Debouncing.** `next(...)` records phase transitions. A retry in the same
  phase is debounced onto twenty-second intervals, counted from the phase
  start time.
- **API errors.** `next_to_failed_on_api_error` decides what happens next:
  - not-ready errors retry;
  - other 4xx errors move the resource to `Failed`;
  - 5xx errors retry;
  - any other error retries with reason `ReconcileError`.
- **Building blocks for handlers.** `initialize_resource`,
  `handle_creating`, `handle_provisioning`, `handle_updating`,
  `handle_deletion` and `check_for_updates` are the steps that handlers
  call.
- **Reference lookups.** `get_project_id`, `get_vpc_id`, `get_subnet_id`,
  `get_elastic_ip_id`, `get_security_group_id`, `get_block_storage_id` and
  `get_key_pair_id` look up a referenced object in the store and return its
  `resource_id`. They raise `ReconcileError` when the object is missing or
  has no ID yet.

A resource kind supplies its own steps by subclassing `ResourceHandler`,
which has `init`, `creating`, `provisioning`, `updating`, `created` and
`deleting`.

### `cloudop.vpc` and `cloudop.subnet`

`Vpc` with `VpcSpec`, and `Subnet` with `SubnetSpec`, are the resource
types. `VpcReconciler` and `SubnetReconciler` are their handlers. Each is
built around a `Reconciler` and has `reconcile(name, namespace)`.

`build_vpc_request(vpc, include_properties)` and
`build_subnet_request(subnet)` build the request bodies as dicts. The VPC
body includes the properties block only on creation.

The handlers expect the API object to provide these methods:

- `create_vpc`, `get_vpc`, `update_vpc` and `delete_vpc`;
- `create_subnet`, `get_subnet`, `update_subnet` and `delete_subnet`.

Responses are mappings of the form `{"metadata": {"id": ...}, "status": {"state": ...}}`.

## Example

```python
from cloudop.model import MemoryStore, Resource, ResourcePhase, ResourceStatus
from cloudop.reconciler import Reconciler
from cloudop.vpc import Vpc, VpcReconciler, VpcSpec
from cloudop.model import ResourceReference


class Project(Resource):
    kind = "Project"


class Tokens:
    def get_active_token(self, tenant_id):
        return "token"

    def set_client_id_and_secret(self, client_id, client_secret):
        pass

    def get_access_token(self, force, tenant_id):
        return "token"


class Api:
    def set_api_token(self, token):
        self.token = token

    def create_vpc(self, project_id, request):
        return {"metadata": {"id": "vpc-1"}, "status": {"state": "InCreation"}}

    def get_vpc(self, project_id, vpc_id):
        return {"status": {"state": "Active"}}

    def update_vpc(self, project_id, vpc_id, request):
        return {}

    def delete_vpc(self, project_id, vpc_id):
        pass


store = MemoryStore()
store.create(Project(name="proj", status=ResourceStatus(resource_id="p-1")))
store.create(
    Vpc(
        name="my-vpc",
        spec=VpcSpec(location="ITBG-Bergamo", project_reference=ResourceReference("proj")),
    )
)

vpcs = VpcReconciler(Reconciler(store, Tokens(), api=Api()))
for _ in range(3):
    result = vpcs.reconcile("my-vpc", "default")

assert store.get("Vpc", "my-vpc", "default").status.phase is ResourcePhase.CREATED
```

Each call to `reconcile` moves a resource at most one phase forward. Call it
again after `result.requeue_after` until the resource settles in `Created`.
For a deleted resource, keep calling until its finalizer has been removed.

## What it does not do

- It has no client for a real cloud API, no token manager and no secret
  store. These are supplied by the caller, as in the example above.
- `MemoryStore` keeps objects in memory only. It does not watch a cluster
  or persist anything.
- There is no command-line program or long-running controller loop. The
  caller decides when to call `reconcile` again.