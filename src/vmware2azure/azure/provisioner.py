"""Creates the public IP, network interface and virtual machine for a migrated disk.

Creation is strictly ordered IP → NIC → VM: each resource embeds the ARM id
of the previous one. Every operation is a name-keyed create-or-update, so
repeating a call with the same arguments converges on the same resource.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import SecretStr

from vmware2azure.azure.arm import COMPUTE_API_VERSION, NETWORK_API_VERSION, ARMClient
from vmware2azure.errors import DependencyError
from vmware2azure.naming import dns_label, fqdn, source_vhd_uri, target_vhd_uri
from vmware2azure.utils.logging import get_logger

logger = get_logger(__name__)

PUBLIC_IP_PROVIDER = "Microsoft.Network/publicIPAddresses"
NIC_PROVIDER = "Microsoft.Network/networkInterfaces"
VM_PROVIDER = "Microsoft.Compute/virtualMachines"

IDLE_TIMEOUT_MINUTES = 4


class ResourceKind(str, enum.Enum):
    IP = "ip"
    NIC = "nic"
    VM = "vm"


@dataclass(frozen=True)
class CloudResourceRef:
    """Resolved reference to a created Azure resource."""
    resource_id: str
    name: str
    kind: ResourceKind

    def to_dict(self) -> dict:
        return {"resource_id": self.resource_id, "name": self.name, "kind": self.kind.value}

    @classmethod
    def from_dict(cls, data: dict) -> "CloudResourceRef":
        return cls(resource_id=data["resource_id"], name=data["name"], kind=ResourceKind(data["kind"]))


class ResourceProvisioner:
    """Provisions Azure resources through the ARM REST API.

    Each ``create_*`` call returns only once ARM reports the resource as
    ``Succeeded``, so the returned reference can be embedded in the next
    resource's payload.
    """

    def __init__(
        self,
        arm: ARMClient,
        admin_username: str = "clouduser",
        storage_container: str = "upload",
        poll_interval: int = 5,
        timeout: int = 900,
    ):
        self.arm = arm
        self.admin_username = admin_username
        self.storage_container = storage_container
        self.poll_interval = poll_interval
        self.timeout = timeout

    def _provision(self, path: str, body: dict[str, Any], api_version: str) -> dict[str, Any]:
        self.arm.put(path, body, api_version)
        return self.arm.wait_for_provisioning(
            path, api_version, timeout=self.timeout, poll_interval=self.poll_interval
        )

    def _resolve(self, ref: Optional[CloudResourceRef], kind: ResourceKind, api_version: str) -> dict[str, Any]:
        """Confirm a dependency exists before embedding its id in another resource."""
        if ref is None or not ref.resource_id:
            raise DependencyError(f"No {kind.value.upper()} reference to build on")
        if ref.kind != kind:
            raise DependencyError(f"Expected a {kind.value.upper()} reference, got {ref.kind.value.upper()} '{ref.name}'")
        resource = self.arm.get(ref.resource_id, api_version)
        if resource is None:
            raise DependencyError(f"{kind.value.upper()} '{ref.name}' does not resolve", ref.resource_id)
        return resource

    # ── Public IP ────────────────────────────────────────────────

    def create_ip(self, location: str, vm_name: str, resource_group: str, ip_name: str) -> CloudResourceRef:
        """Allocate a dynamic public IPv4 address labelled after the VM."""
        path = self.arm.resource_path(resource_group, PUBLIC_IP_PROVIDER, ip_name)
        body = {
            "location": location,
            "properties": {
                "publicIPAddressVersion": "IPv4",
                "publicIPAllocationMethod": "Dynamic",
                "idleTimeoutInMinutes": IDLE_TIMEOUT_MINUTES,
                "dnsSettings": {
                    "domainNameLabel": dns_label(vm_name),
                    "fqdn": fqdn(vm_name, location),
                },
            },
        }

        logger.info(f"Creating public IP '{ip_name}' in {resource_group} ({body['properties']['dnsSettings']['fqdn']})")
        resource = self._provision(path, body, NETWORK_API_VERSION)
        ref = CloudResourceRef(resource_id=resource.get("id", path), name=ip_name, kind=ResourceKind.IP)
        logger.info(f"Public IP ready: {ref.resource_id}")
        return ref

    # ── Network interface ────────────────────────────────────────

    def create_nic(
        self,
        nic_name: str,
        location: str,
        subnet_id: str,
        ip_ref: Optional[CloudResourceRef],
        resource_group: str,
    ) -> CloudResourceRef:
        """Create a NIC with one IP configuration bound to the subnet and public IP.

        Raises:
            DependencyError: If ``ip_ref`` does not resolve
        """
        self._resolve(ip_ref, ResourceKind.IP, NETWORK_API_VERSION)

        path = self.arm.resource_path(resource_group, NIC_PROVIDER, nic_name)
        body = {
            "location": location,
            "properties": {
                "ipConfigurations": [
                    {
                        "name": nic_name,
                        "properties": {
                            "subnet": {"id": subnet_id},
                            "publicIPAddress": {"id": ip_ref.resource_id},
                        },
                    }
                ]
            },
        }

        logger.info(f"Creating network interface '{nic_name}' in {resource_group}")
        resource = self._provision(path, body, NETWORK_API_VERSION)
        ref = CloudResourceRef(resource_id=resource.get("id", path), name=nic_name, kind=ResourceKind.NIC)
        logger.info(f"Network interface ready: {ref.resource_id}")
        return ref

    # ── Virtual machine ──────────────────────────────────────────

    def create_vm(
        self,
        storage_account: str,
        vm_name: str,
        location: str,
        size: str,
        admin_password: SecretStr | str,
        os_type: str,
        nic_ref: Optional[CloudResourceRef],
        resource_group: str,
    ) -> CloudResourceRef:
        """Create the VM from the uploaded VHD.

        The OS disk image is the uploaded blob; the disk itself is written to a
        new blob with a random suffix. When the VM already exists its current
        disk blob is kept so the repeated PUT is a compatible update.

        Raises:
            DependencyError: If ``nic_ref`` does not resolve
            ProvisioningError: If ARM rejects the VM (quota, invalid size, ...)
        """
        self._resolve(nic_ref, ResourceKind.NIC, NETWORK_API_VERSION)

        path = self.arm.resource_path(resource_group, VM_PROVIDER, vm_name)
        existing = self.arm.get(path, COMPUTE_API_VERSION)
        vhd_uri = _existing_os_disk_uri(existing) or target_vhd_uri(
            storage_account, vm_name, self.storage_container
        )
        if isinstance(admin_password, SecretStr):
            admin_password = admin_password.get_secret_value()

        body = {
            "location": location,
            "properties": {
                "hardwareProfile": {"vmSize": size},
                "osProfile": {
                    "adminUsername": self.admin_username,
                    "adminPassword": admin_password,
                    "computerName": vm_name,
                },
                "storageProfile": {
                    "osDisk": {
                        "createOption": "FromImage",
                        "caching": "ReadWrite",
                        "name": f"{vm_name}.vhd",
                        "osType": os_type,
                        "image": {"uri": source_vhd_uri(storage_account, vm_name, self.storage_container)},
                        "vhd": {"uri": vhd_uri},
                    }
                },
                "networkProfile": {
                    "networkInterfaces": [{"id": nic_ref.resource_id}],
                },
            },
        }

        action = "Updating" if existing else "Creating"
        logger.info(f"{action} virtual machine '{vm_name}' ({size}, {os_type}) in {resource_group}")
        resource = self._provision(path, body, COMPUTE_API_VERSION)
        ref = CloudResourceRef(resource_id=resource.get("id", path), name=vm_name, kind=ResourceKind.VM)
        logger.info(f"Virtual machine ready: {ref.resource_id}")
        return ref


def _existing_os_disk_uri(vm: Optional[dict[str, Any]]) -> Optional[str]:
    if not vm:
        return None
    return (vm.get("properties", {})
              .get("storageProfile", {})
              .get("osDisk", {})
              .get("vhd", {})
              .get("uri"))
