"""Migration orchestrator: the resumable state machine behind a migration attempt.

Stages:
    init → await_poweroff → converting → provisioning_ip → provisioning_nic
    → provisioning_vm → completed, with ``failed`` reachable from any
    non-terminal stage.

The orchestrator does not schedule itself. Each ``step()`` call runs until
the attempt completes, fails, or has to wait for the source VM to power off,
in which case it returns a PENDING outcome and the caller invokes ``step()``
again after ``retry_after`` seconds with the same state.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from vmware2azure.azure.provisioner import CloudResourceRef, ResourceKind, ResourceProvisioner
from vmware2azure.config import MigrationRequest, MigrationSettings
from vmware2azure.conversion.executor import ConversionResult, HostCredentials
from vmware2azure.conversion.script import ConversionScriptBuilder
from vmware2azure.errors import ConversionError, MigrationError, PowerOffTimeoutError
from vmware2azure.pipeline.state import MigrationStage, MigrationState, MigrationStateStore
from vmware2azure.utils.logging import get_logger
from vmware2azure.utils.redact import redact_secrets
from vmware2azure.vmware.power import PowerState


class SourceHypervisor(Protocol):
    def get_power_state(self, vm_id: str) -> PowerState: ...

    def request_power_off(self, vm_id: str, since_request: Optional[float] = None) -> None: ...

    def refresh(self, vm_id: str) -> None: ...


class ScriptExecutor(Protocol):
    def execute(self, host: str, port: int, credentials: HostCredentials, script: str) -> ConversionResult: ...


class OutcomeStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class MigrationOutcome:
    """What the caller should do next: stop with success, stop with failure, or retry later."""
    status: OutcomeStatus
    vm_resource_id: Optional[str] = None
    reason: Optional[str] = None
    retry_after: Optional[int] = None
    resources: tuple[CloudResourceRef, ...] = field(default_factory=tuple)

    @classmethod
    def completed(cls, vm_resource_id: str, resources=()) -> "MigrationOutcome":
        return cls(OutcomeStatus.COMPLETED, vm_resource_id=vm_resource_id, resources=tuple(resources))

    @classmethod
    def failed(cls, reason: str, resources=()) -> "MigrationOutcome":
        return cls(OutcomeStatus.FAILED, reason=reason, resources=tuple(resources))

    @classmethod
    def pending(cls, retry_after: int) -> "MigrationOutcome":
        return cls(OutcomeStatus.PENDING, retry_after=retry_after)

    @property
    def terminal(self) -> bool:
        return self.status != OutcomeStatus.PENDING


class MigrationOrchestrator:
    """Sequences power-off, conversion and provisioning for one migration attempt.

    Collaborators and settings are injected; nothing is read from process-wide
    state. ``step()`` never raises: every failure is returned as a FAILED
    outcome and recorded on the state.
    """

    def __init__(
        self,
        settings: MigrationSettings,
        source: SourceHypervisor,
        executor: ScriptExecutor,
        provisioner: ResourceProvisioner,
        script_builder: Optional[ConversionScriptBuilder] = None,
        state_store: Optional[MigrationStateStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.source = source
        self.executor = executor
        self.provisioner = provisioner
        self.script_builder = script_builder or ConversionScriptBuilder()
        self.state_store = state_store
        self.log = logger or get_logger(__name__)

    def step(self, request: MigrationRequest, state: MigrationState) -> MigrationOutcome:
        """Advance ``state`` as far as possible and report the outcome."""
        if state.stage.terminal:
            return self._recorded_outcome(state)

        try:
            while not state.stage.terminal:
                handler = getattr(self, f"_stage_{state.stage.value}")
                outcome = handler(request, state)
                if outcome is not None:
                    return outcome
        except MigrationError as e:
            return self._fail(state, str(e))
        except Exception as e:
            self.log.exception(f"Unexpected error in stage {state.stage.value}")
            return self._fail(state, f"{type(e).__name__}: {e}")

        return self._recorded_outcome(state)

    # ─── Transitions ─────────────────────────────────────────────────

    def _transition(self, state: MigrationState, stage: MigrationStage) -> None:
        previous = state.stage
        state.advance(stage)
        self.log.debug(f"{state.migration_id}: {previous.value} → {stage.value}")
        self._save(state)

    def _save(self, state: MigrationState) -> None:
        if self.state_store is not None:
            self.state_store.save(state)

    def _fail(self, state: MigrationState, reason: str) -> MigrationOutcome:
        failed_stage = state.stage.value
        state.error = reason
        self._transition(state, MigrationStage.FAILED)
        self.log.error(f"[red]✗ Migration {state.migration_id} failed in {failed_stage}: {reason}[/red]")
        refs = state.resource_refs()
        if refs:
            self.log.warning("Resources left in place for cleanup: "
                             + ", ".join(r.resource_id for r in refs))
        return MigrationOutcome.failed(reason, refs)

    def _recorded_outcome(self, state: MigrationState) -> MigrationOutcome:
        if state.stage == MigrationStage.FAILED:
            return MigrationOutcome.failed(state.error or "unknown error", state.resource_refs())
        vm = state.resource(ResourceKind.VM)
        return MigrationOutcome.completed(vm.resource_id if vm else "", state.resource_refs())

    # ─── Stage implementations ───────────────────────────────────────

    def _stage_init(self, request: MigrationRequest, state: MigrationState) -> None:
        self.log.info(f"[bold]Migration {state.migration_id}[/bold]: {request.vm_name} → "
                      f"{request.resource_group} ({request.location})")
        self._transition(state, MigrationStage.AWAIT_POWEROFF)

    def _stage_await_poweroff(self, request: MigrationRequest, state: MigrationState) -> Optional[MigrationOutcome]:
        power = self.source.get_power_state(request.vm_name)
        if power == PowerState.OFF:
            self.log.info(f"[green]✓ VM '{request.vm_name}' is powered off[/green]")
            self._transition(state, MigrationStage.CONVERTING)
            return None

        if state.power_off_checks >= self.settings.max_power_off_checks:
            raise PowerOffTimeoutError(
                f"VM '{request.vm_name}' still {power.value} after "
                f"{state.power_off_checks} checks"
            )

        self.log.info(f"Shutting down VM '{request.vm_name}' (power state: {power.value})")
        since_request = None
        if state.power_off_requested_at is not None:
            since_request = (datetime.now() - state.power_off_requested_at).total_seconds()
        self.source.request_power_off(request.vm_name, since_request)
        self.source.refresh(request.vm_name)

        state.power_off_checks += 1
        if state.power_off_requested_at is None:
            state.power_off_requested_at = datetime.now()
        state.updated_at = datetime.now()
        self._save(state)

        retry_after = self.settings.power_off_retry_seconds
        self.log.info(f"Waiting for power off, check again in {retry_after}s "
                      f"({state.power_off_checks}/{self.settings.max_power_off_checks})")
        return MigrationOutcome.pending(retry_after)

    def _stage_converting(self, request: MigrationRequest, state: MigrationState) -> None:
        script = self.script_builder.build(request)
        self.log.debug(f"Conversion script:\n{redact_secrets(script, request.secrets())}")

        credentials = HostCredentials(
            username=request.conversion_host_user,
            password=request.conversion_host_password.get_secret_value(),
            transport=request.conversion_host_transport,
        )
        self.log.info(f"Converting and uploading disk of '{request.vm_name}' via {request.conversion_host}")
        result = self.executor.execute(
            request.conversion_host, request.conversion_host_port, credentials, script
        )

        state.conversion_output = redact_secrets(result.stdout, request.secrets())
        if not result.succeeded:
            stderr = redact_secrets(result.stderr, request.secrets())
            self.log.error(f"Conversion host returned stderr:|{stderr}|")
            raise ConversionError(stderr.strip())

        self.log.info(f"Conversion host returned:|{state.conversion_output.strip()}|")
        self._transition(state, MigrationStage.PROVISIONING_IP)

    def _stage_provisioning_ip(self, request: MigrationRequest, state: MigrationState) -> None:
        ref = self.provisioner.create_ip(
            request.location, request.vm_name, request.resource_group, request.ip_name
        )
        state.record_resource(ref)
        self._transition(state, MigrationStage.PROVISIONING_NIC)

    def _stage_provisioning_nic(self, request: MigrationRequest, state: MigrationState) -> None:
        ref = self.provisioner.create_nic(
            request.nic_name,
            request.location,
            request.subnet_id,
            state.resource(ResourceKind.IP),
            request.resource_group,
        )
        state.record_resource(ref)
        self._transition(state, MigrationStage.PROVISIONING_VM)

    def _stage_provisioning_vm(self, request: MigrationRequest, state: MigrationState) -> MigrationOutcome:
        ref = self.provisioner.create_vm(
            request.storage_account,
            request.vm_name,
            request.location,
            request.vm_size,
            request.admin_password,
            request.os_type,
            state.resource(ResourceKind.NIC),
            request.resource_group,
        )
        state.record_resource(ref)
        state.error = None
        self._transition(state, MigrationStage.COMPLETED)
        self.log.info(f"[bold green]VM '{request.vm_name}' created in Azure: {ref.resource_id}[/bold green]")
        return MigrationOutcome.completed(ref.resource_id, state.resource_refs())
