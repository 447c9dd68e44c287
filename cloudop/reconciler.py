"""Phase-driven reconciliation shared by every managed resource kind."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from cloudop.conditions import update_conditions
from cloudop.model import (
    CONDITION_SYNCHRONIZED,
    ApiError,
    ConditionStatus,
    MemoryStore,
    NotFoundError,
    Resource,
    ResourcePhase,
    Result,
)

log = logging.getLogger(__name__)

REQUEUE_AFTER = timedelta(seconds=20)
MAX_PHASE_TIMEOUT = timedelta(minutes=5)
TIMEOUT_MESSAGE = "Reconciliation took too much time (timeout: 5m0s)"

TRANSITIONING_PHASES = frozenset(
    {
        ResourcePhase.CREATING,
        ResourcePhase.PROVISIONING,
        ResourcePhase.UPDATING,
        ResourcePhase.DELETING,
    }
)
PROVISIONING_STATES = frozenset({"InCreation", "Provisioning"})
READY_STATES = frozenset({"Available", "Active", "NotUsed", "Used"})
FAILED_STATES = frozenset({"Failed", "Error"})


class ReconcileError(Exception):
    """Raised when reconciliation cannot proceed."""


class TokenManager(Protocol):
    def get_active_token(self, tenant_id: str) -> str: ...

    def set_client_id_and_secret(self, client_id: str, client_secret: str) -> None: ...

    def get_access_token(self, force: bool, tenant_id: str) -> str: ...


class SecretSource(Protocol):
    def get_secret(self, tenant_id: str) -> dict[str, Any]: ...


class ResourceHandler(ABC):
    """Per-kind behaviour for each lifecycle phase."""

    @abstractmethod
    def init(self, obj: Resource) -> Result:
        """Handle a resource that has no phase yet."""

    @abstractmethod
    def creating(self, obj: Resource) -> Result:
        """Create the remote resource."""

    @abstractmethod
    def provisioning(self, obj: Resource) -> Result:
        """Poll the remote resource until it is ready."""

    @abstractmethod
    def updating(self, obj: Resource) -> Result:
        """Push spec changes to the remote resource."""

    @abstractmethod
    def created(self, obj: Resource) -> Result:
        """Check a ready resource for pending changes."""

    @abstractmethod
    def deleting(self, obj: Resource) -> Result:
        """Delete the remote resource and release the object."""


def _find_api_error(error: BaseException | None) -> ApiError | None:
    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        if isinstance(error, ApiError):
            return error
        seen.add(id(error))
        error = error.__cause__ or error.__context__
    return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    """Drives a resource through its phases and records status changes."""

    def __init__(
        self,
        store: MemoryStore | None,
        token_manager: TokenManager,
        api: Any = None,
        secrets: SecretSource | None = None,
        vault_enabled: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.token_manager = token_manager
        self.api = api
        self.secrets = secrets
        self.vault_enabled = vault_enabled
        self.api_token = ""
        self._clock = clock or _utc_now

    def reconcile(
        self, name: str, namespace: str, kind: str, handler: ResourceHandler
    ) -> Result:
        """Run one reconcile step for the named object."""
        if self.store is None:
            raise ReconcileError("client configuration not loaded")
        try:
            obj = self.store.get(kind, name, namespace)
        except NotFoundError:
            return Result()

        spec = getattr(obj, "spec", None)
        tenant = getattr(spec, "tenant", "") or ""
        if not tenant:
            if self.vault_enabled:
                message = "Tenant ID is not specified in the resource spec"
                log.error("%s: %s/%s", message, namespace, name)
                raise ReconcileError(message)
            log.debug("Vault integration is disabled; proceeding without Tenant ID")

        self.authenticate(tenant)

        timeout_result = self.handle_phase_timeout(obj)
        if timeout_result is not None:
            return timeout_result

        delete_result = self.handle_to_delete(obj)
        if delete_result is not None:
            return delete_result

        dispatch = {
            ResourcePhase.NONE: handler.init,
            ResourcePhase.CREATING: handler.creating,
            ResourcePhase.PROVISIONING: handler.provisioning,
            ResourcePhase.UPDATING: handler.updating,
            ResourcePhase.CREATED: handler.created,
            ResourcePhase.DELETING: handler.deleting,
        }
        step = dispatch.get(obj.status.phase)
        if step is None:
            return Result()
        return step(obj)

    def handle_phase_timeout(self, obj: Resource) -> Result | None:
        """Fail a resource stuck too long in a transitioning phase.

        Returns None when no timeout applies.
        """
        status = obj.status
        if status.phase_start_time is None:
            return None
        if status.phase not in TRANSITIONING_PHASES:
            return None
        if self._clock() - status.phase_start_time <= MAX_PHASE_TIMEOUT:
            return None
        log.info("%s %s [%s]: %s", type(obj).kind, obj.name, status.phase.value, TIMEOUT_MESSAGE)
        return self.next(
            obj,
            ResourcePhase.FAILED,
            ConditionStatus.FALSE,
            "ReconciliationTimeout",
            TIMEOUT_MESSAGE,
            False,
        )

    def handle_to_delete(self, obj: Resource) -> Result | None:
        """Move a resource marked for deletion into the deleting phase.

        Returns None when the resource is not to be deleted now.
        """
        phase = obj.status.phase
        if phase in (ResourcePhase.DELETING, ResourcePhase.FAILED):
            return None
        if not obj.is_being_deleted:
            return None
        return self.next(
            obj,
            ResourcePhase.DELETING,
            ConditionStatus.FALSE,
            "ToBeDeleted",
            "deletion timestamp detected",
            True,
        )

    def next(
        self,
        obj: Resource,
        next_phase: ResourcePhase,
        cond_status: ConditionStatus,
        reason: str,
        message: str,
        requeue: bool,
    ) -> Result:
        """Record a phase transition and store the status."""
        status = obj.status
        current = status.phase
        initializing = current == ResourcePhase.NONE
        same_phase = not initializing and current == next_phase
        now = self._clock()

        if requeue and same_phase and status.phase_start_time is not None:
            elapsed = now - status.phase_start_time
            intervals = int(elapsed / REQUEUE_AFTER)
            time_to_next = (intervals + 1) * REQUEUE_AFTER - elapsed
            log.debug(
                "Reconcile debounce for %s %s: reason=%s elapsed=%s next=%s",
                type(obj).kind,
                obj.name,
                reason,
                elapsed,
                time_to_next,
            )
            if timedelta(0) < time_to_next < REQUEUE_AFTER:
                return Result(requeue_after=time_to_next)

        if status.phase_start_time is None or not same_phase:
            status.phase_start_time = now
        status.phase = next_phase
        status.message = message
        status.observed_generation = obj.generation
        status.conditions = update_conditions(
            status.conditions, CONDITION_SYNCHRONIZED, cond_status, reason, message
        )

        if self.store is None:
            raise ReconcileError("client configuration not loaded")
        try:
            self.store.update_status(obj)
        except Exception:
            log.exception("failed to update status of %s %s", type(obj).kind, obj.name)
            raise

        log.info("%s %s -> %s: %s", type(obj).kind, obj.name, next_phase.value, message)
        return Result(requeue=requeue, requeue_after=REQUEUE_AFTER)

    def next_to_failed_on_api_error(self, obj: Resource, error: BaseException) -> Result:
        """Choose retry or failure from the kind of API error."""
        api_error = _find_api_error(error)
        if api_error is not None:
            code = api_error.status
            text = str(api_error)
            if api_error.is_invalid_status():
                return self.next(
                    obj,
                    obj.status.phase,
                    ConditionStatus.FALSE,
                    "ResourceNotReady",
                    f"Remote resource is not ready, will retry: {text}",
                    True,
                )
            if 400 <= code < 500:
                return self.next(
                    obj,
                    ResourcePhase.FAILED,
                    ConditionStatus.FALSE,
                    "ClientError",
                    f"Client error (HTTP {code}): {text}",
                    False,
                )
            if code >= 500:
                return self.next(
                    obj,
                    obj.status.phase,
                    ConditionStatus.FALSE,
                    "ServerError",
                    f"Server error (HTTP {code}): {text} - will retry",
                    True,
                )
        return self.next_to_failed_on_reconcile_error(obj, error)

    def next_to_failed_on_reconcile_error(
        self, obj: Resource, error: BaseException
    ) -> Result:
        """Keep the phase and retry after a generic error."""
        return self.next(
            obj,
            obj.status.phase,
            ConditionStatus.FALSE,
            "ReconcileError",
            f"Reconcile error encountered, will retry: {error}",
            True,
        )

    def initialize_resource(self, obj: Resource, finalizer_name: str) -> Result:
        """Ensure the finalizer is present and move on to creating."""
        if not obj.has_finalizer(finalizer_name):
            obj.add_finalizer(finalizer_name)
            try:
                self._require_store().update(obj)
            except Exception as exc:
                return self.next_to_failed_on_api_error(obj, exc)
        return self.next(
            obj,
            ResourcePhase.CREATING,
            ConditionStatus.FALSE,
            "Initialized",
            "Resource initialized successfully",
            True,
        )

    def handle_deletion(
        self, obj: Resource, finalizer_name: str, delete_func: Callable[[], None]
    ) -> Result:
        """Delete the remote resource, then release the finalizer."""
        try:
            delete_func()
        except Exception as exc:
            return self.next_to_failed_on_api_error(obj, exc)

        if obj.has_finalizer(finalizer_name):
            obj.remove_finalizer(finalizer_name)
            try:
                self._require_store().update(obj)
            except Exception as exc:
                return self.next_to_failed_on_api_error(obj, exc)
        return Result()

    def handle_creating(
        self, obj: Resource, create_func: Callable[[], tuple[str, str]]
    ) -> Result:
        """Create the remote resource; create_func returns (id, state)."""
        try:
            resource_id, state = create_func()
        except Exception as exc:
            return self.next_to_failed_on_api_error(obj, exc)

        obj.status.resource_id = resource_id
        if state in PROVISIONING_STATES:
            return self.next(
                obj,
                ResourcePhase.PROVISIONING,
                ConditionStatus.FALSE,
                "Provisioning",
                "Resource is being provisioned",
                True,
            )
        return self.next(
            obj,
            ResourcePhase.CREATED,
            ConditionStatus.TRUE,
            "Created",
            "Resource created successfully",
            True,
        )

    def handle_updating(self, obj: Resource, update_func: Callable[[], None]) -> Result:
        """Push an update and return to the created phase."""
        try:
            update_func()
        except Exception as exc:
            return self.next_to_failed_on_api_error(obj, exc)
        return self.next(
            obj,
            ResourcePhase.CREATED,
            ConditionStatus.TRUE,
            "Updated",
            "Resource updated successfully",
            True,
        )

    def handle_provisioning(
        self, obj: Resource, get_state_func: Callable[[], str]
    ) -> Result:
        """Poll the remote state and move on when it settles."""
        try:
            state = get_state_func()
        except Exception as exc:
            return self.next_to_failed_on_api_error(obj, exc)

        if state in READY_STATES:
            return self.next(
                obj,
                ResourcePhase.CREATED,
                ConditionStatus.TRUE,
                "Created",
                "Resource created successfully",
                True,
            )
        if state in FAILED_STATES:
            return self.next(
                obj,
                ResourcePhase.FAILED,
                ConditionStatus.TRUE,
                "ProvisioningFailed",
                "",
                False,
            )
        return self.next(
            obj,
            ResourcePhase.PROVISIONING,
            ConditionStatus.TRUE,
            "Provisioning",
            "",
            True,
        )

    def check_for_updates(self, obj: Resource) -> Result:
        """Start an update when the spec generation has moved on."""
        if obj.status.observed_generation != obj.generation:
            log.info(
                "%s %s needs update: generation %d, observed %d",
                type(obj).kind,
                obj.name,
                obj.generation,
                obj.status.observed_generation,
            )
            return self.next(
                obj,
                ResourcePhase.UPDATING,
                ConditionStatus.FALSE,
                "Updating",
                "Resource update initiated",
                True,
            )
        log.info("%s %s is up to date", type(obj).kind, obj.name)
        return Result()

    def authenticate(self, tenant_id: str) -> None:
        """Obtain an API token for the tenant and hand it to the API client."""
        if self.store is None:
            raise ReconcileError("client configuration not loaded")

        token = self.token_manager.get_active_token(tenant_id)
        if token:
            self._set_api_token(token)
            return

        if self.vault_enabled:
            if self.secrets is None:
                raise ReconcileError("secret source not configured")
            data = self.secrets.get_secret(tenant_id)
            client_id = data.get("client-id")
            client_secret = data.get("client-secret")
            self.token_manager.set_client_id_and_secret(
                client_id if isinstance(client_id, str) else "",
                client_secret if isinstance(client_secret, str) else "",
            )

        token = self.token_manager.get_access_token(False, tenant_id)
        self._set_api_token(token)

    def get_project_id(self, name: str, namespace: str) -> str:
        return self._reference_id("Project", "a project ID", name, namespace)

    def get_elastic_ip_id(self, name: str, namespace: str) -> str:
        return self._reference_id("ElasticIp", "an elastic IP ID", name, namespace)

    def get_subnet_id(self, name: str, namespace: str) -> str:
        return self._reference_id("Subnet", "a subnet ID", name, namespace)

    def get_security_group_id(self, name: str, namespace: str) -> str:
        return self._reference_id(
            "SecurityGroup", "a security group ID", name, namespace
        )

    def get_block_storage_id(self, name: str, namespace: str) -> str:
        return self._reference_id("BlockStorage", "a volume ID", name, namespace)

    def get_vpc_id(self, name: str, namespace: str) -> str:
        return self._reference_id("Vpc", "a VPC ID", name, namespace)

    def get_key_pair_id(self, name: str, namespace: str) -> str:
        return self._reference_id("KeyPair", "a key pair ID", name, namespace)

    def _reference_id(self, kind: str, noun: str, name: str, namespace: str) -> str:
        try:
            referenced = self._require_store().get(kind, name, namespace)
        except LookupError as exc:
            raise ReconcileError(
                f"failed to get referenced {kind} {namespace}/{name}: {exc}"
            ) from exc
        if not referenced.status.resource_id:
            raise ReconcileError(
                f"referenced {kind} {namespace}/{name} does not have {noun} yet"
            )
        return referenced.status.resource_id

    def _require_store(self) -> MemoryStore:
        if self.store is None:
            raise ReconcileError("client configuration not loaded")
        return self.store

    def _set_api_token(self, token: str) -> None:
        self.api_token = token
        if self.api is not None:
            self.api.set_api_token(token)