"""Power state observation and control of the source VM."""

from __future__ import annotations

import enum
from typing import Optional

from pyVmomi import vim, vmodl

from vmware2azure.errors import SourceVMError
from vmware2azure.utils.logging import get_logger
from vmware2azure.vmware.client import VSphereClient

logger = get_logger(__name__)


class PowerState(str, enum.Enum):
    RUNNING = "running"
    OFF = "off"
    UNKNOWN = "unknown"

    @classmethod
    def from_vsphere(cls, value: str) -> "PowerState":
        if value == vim.VirtualMachine.PowerState.poweredOn:
            return cls.RUNNING
        if value == vim.VirtualMachine.PowerState.poweredOff:
            return cls.OFF
        # suspended, or no runtime info yet
        return cls.UNKNOWN


class VSpherePowerController:
    """Reads and changes the power state of VMs on vCenter.

    VMs are identified by their vCenter name. Power-off is fire-and-forget:
    the task is started and the caller re-checks the state later.

    Once a stop was requested, later requests never hard power off the VM
    before ``shutdown_grace_seconds`` have passed, so a guest that is
    still shutting down (VMware Tools already stopped) is left alone.
    """

    def __init__(self, client: VSphereClient, graceful: bool = True, shutdown_grace_seconds: int = 300):
        self.client = client
        self.graceful = graceful
        self.shutdown_grace_seconds = shutdown_grace_seconds

    def get_power_state(self, vm_id: str) -> PowerState:
        vm = self.client.find_vm(vm_id)
        state = PowerState.from_vsphere(vm.runtime.powerState)
        logger.debug(f"VM '{vm_id}' power state: {vm.runtime.powerState} -> {state.value}")
        return state

    def request_power_off(self, vm_id: str, since_request: Optional[float] = None) -> None:
        """Ask vCenter to stop the VM; repeating the request is harmless.

        Args:
            vm_id: VM name in vCenter
            since_request: Seconds since the first stop request of this
                attempt, or None if this is the first one
        """
        vm = self.client.find_vm(vm_id)
        tools_running = vm.guest is not None and vm.guest.toolsRunningStatus == "guestToolsRunning"
        grace_expired = since_request is not None and since_request >= self.shutdown_grace_seconds

        try:
            if grace_expired:
                logger.warning(f"VM '{vm_id}' still running {since_request:.0f}s after the stop request, "
                               f"powering it off")
                vm.PowerOffVM_Task()
            elif self.graceful and tools_running:
                logger.info(f"Shutting down guest OS of VM '{vm_id}'")
                vm.ShutdownGuest()
            elif since_request is not None:
                logger.info(f"Stop of VM '{vm_id}' already requested {since_request:.0f}s ago, "
                            f"not forcing power off before {self.shutdown_grace_seconds}s")
            else:
                logger.info(f"Powering off VM '{vm_id}'")
                vm.PowerOffVM_Task()
        except vim.fault.InvalidPowerState:
            logger.info(f"VM '{vm_id}' is already off or changing state")
        except vim.fault.TaskInProgress:
            logger.info(f"VM '{vm_id}' already has a power operation in progress")
        except vmodl.MethodFault as e:
            raise SourceVMError(f"vCenter refused to power off VM '{vm_id}'", e.msg) from e

    def refresh(self, vm_id: str) -> None:
        """Reload this VM's properties instead of refreshing the whole inventory."""
        vm = self.client.find_vm(vm_id)
        try:
            vm.Reload()
        except vmodl.MethodFault as e:
            logger.warning(f"Reload of VM '{vm_id}' failed: {e.msg}")
