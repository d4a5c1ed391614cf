"""Drives the orchestrator for the CLI: one step at a time, or until a terminal outcome."""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

from vmware2azure.azure.arm import ARMClient
from vmware2azure.azure.provisioner import ResourceProvisioner
from vmware2azure.config import AppConfig, MigrationRequest
from vmware2azure.conversion.executor import RemoteScriptExecutor
from vmware2azure.pipeline.migration import MigrationOrchestrator, MigrationOutcome
from vmware2azure.pipeline.state import MigrationState, MigrationStateStore
from vmware2azure.utils.logging import get_logger
from vmware2azure.vmware.client import VSphereClient
from vmware2azure.vmware.power import VSpherePowerController

logger = get_logger(__name__)


class MigrationRunner:
    """Owns the state store and re-invokes the orchestrator while it asks to wait.

    ``step()`` is what an external scheduler calls on every tick; ``run()``
    is the same loop done in-process, sleeping ``retry_after`` between steps.
    """

    def __init__(
        self,
        orchestrator: MigrationOrchestrator,
        state_store: MigrationStateStore,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.orchestrator = orchestrator
        self.state_store = state_store
        self.sleep = sleep

    def attach(self, request: MigrationRequest) -> MigrationState:
        """The active attempt for the request's VM, or a new one."""
        state = self.state_store.find_active(request.vm_name)
        if state:
            logger.info(f"Continuing migration {state.migration_id} for '{request.vm_name}' "
                        f"at stage {state.stage.value}")
            return state
        state = self.state_store.create(str(uuid.uuid4())[:8], request.vm_name)
        logger.info(f"Created migration {state.migration_id} for '{request.vm_name}'")
        return state

    def step(self, request: MigrationRequest, state: Optional[MigrationState] = None) -> tuple[MigrationState, MigrationOutcome]:
        state = state or self.attach(request)
        outcome = self.orchestrator.step(request, state)
        self.state_store.save(state)
        return state, outcome

    def run(self, request: MigrationRequest) -> tuple[MigrationState, MigrationOutcome]:
        """Step until the outcome is terminal.

        Bounded by ``max_power_off_checks``: the orchestrator fails the
        attempt once the VM has been seen running that many times.
        """
        state = self.attach(request)
        while True:
            state, outcome = self.step(request, state)
            if outcome.terminal:
                return state, outcome
            self.sleep(outcome.retry_after or 0)


def build_runner(config: AppConfig, client: VSphereClient) -> MigrationRunner:
    """Wire the real vCenter, WinRM and ARM collaborators from configuration."""
    settings = config.migration
    store = MigrationStateStore(settings.work_dir)
    provisioner = ResourceProvisioner(
        ARMClient(config.azure),
        admin_username=settings.admin_username,
        storage_container=config.conversion_host.storage_container,
        poll_interval=settings.provision_poll_seconds,
        timeout=settings.provision_timeout_seconds,
    )
    orchestrator = MigrationOrchestrator(
        settings=settings,
        source=VSpherePowerController(
            client,
            graceful=settings.graceful_shutdown,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
        ),
        executor=RemoteScriptExecutor(),
        provisioner=provisioner,
        state_store=store,
    )
    return MigrationRunner(orchestrator, store)
