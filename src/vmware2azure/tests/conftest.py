"""Shared fixtures and in-memory fakes for the vmware2azure tests."""

from __future__ import annotations

import copy

import pytest
from pydantic import SecretStr

from vmware2azure.config import MigrationRequest, MigrationSettings
from vmware2azure.conversion.executor import ConversionResult
from vmware2azure.vmware.power import PowerState

SUBSCRIPTION = "00000000-0000-0000-0000-000000000001"
SUBNET_ID = (f"/subscriptions/{SUBSCRIPTION}/resourceGroups/net-rg/providers/"
             "Microsoft.Network/virtualNetworks/prod-vnet/subnets/default")


@pytest.fixture
def request_factory():
    def make(**overrides) -> MigrationRequest:
        values = dict(
            vm_name="web-prod-01",
            source_host="vcenter.local",
            source_username="administrator@vsphere.local",
            source_password=SecretStr("vc-secret"),
            location="eastus2",
            resource_group="migrated-rg",
            storage_account="migstore01",
            subnet_id=SUBNET_ID,
            ip_name="web-prod-01-ip",
            nic_name="web-prod-01-nic",
            vm_size="Standard_D2s_v3",
            os_type="Windows",
            admin_password=SecretStr("Adm1n!pass"),
            conversion_host="10.0.0.5",
            conversion_host_user="converter",
            conversion_host_password=SecretStr("winrm-secret"),
            conversion_host_path="C:\\images",
        )
        values.update(overrides)
        return MigrationRequest(**values)
    return make


@pytest.fixture
def migration_request(request_factory) -> MigrationRequest:
    return request_factory()


@pytest.fixture
def settings(tmp_path) -> MigrationSettings:
    return MigrationSettings(work_dir=tmp_path, provision_poll_seconds=0, max_power_off_checks=3)


class FakeSource:
    """Source hypervisor whose power state follows a scripted sequence."""

    def __init__(self, *states: PowerState):
        self.states = list(states) or [PowerState.OFF]
        self.power_off_calls = []
        self.since_request = []
        self.refresh_calls = []
        self.state_reads = 0

    def get_power_state(self, vm_id: str) -> PowerState:
        self.state_reads += 1
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]

    def request_power_off(self, vm_id: str, since_request=None) -> None:
        self.power_off_calls.append(vm_id)
        self.since_request.append(since_request)

    def refresh(self, vm_id: str) -> None:
        self.refresh_calls.append(vm_id)


class FakeExecutor:
    def __init__(self, stdout: str = "ok", stderr: str = ""):
        self.result = ConversionResult(stdout=stdout, stderr=stderr, status_code=0 if not stderr else 1)
        self.calls = []

    def execute(self, host, port, credentials, script):
        self.calls.append((host, port, credentials, script))
        return self.result


class FakeARM:
    """In-memory ARM: PUT upserts by id, GET returns a copy or None."""

    def __init__(self, subscription_id: str = SUBSCRIPTION):
        self.subscription_id = subscription_id
        self.resources: dict[str, dict] = {}
        self.puts: list[tuple[str, dict]] = []
        self.fail_put: dict[str, Exception] = {}

    def resource_path(self, resource_group, provider, name):
        return (f"/subscriptions/{self.subscription_id}/resourceGroups/{resource_group}"
                f"/providers/{provider}/{name}")

    def get(self, path, api_version):
        resource = self.resources.get(path)
        return copy.deepcopy(resource) if resource is not None else None

    def put(self, path, body, api_version):
        for suffix, error in self.fail_put.items():
            if path.endswith(suffix):
                raise error
        self.puts.append((path, copy.deepcopy(body)))
        resource = copy.deepcopy(body)
        resource["id"] = path
        resource["name"] = path.rsplit("/", 1)[-1]
        resource.setdefault("properties", {})["provisioningState"] = "Succeeded"
        self.resources[path] = resource
        return copy.deepcopy(resource)

    def wait_for_provisioning(self, path, api_version, timeout=900, poll_interval=5):
        return self.get(path, api_version)


@pytest.fixture
def fake_arm() -> FakeARM:
    return FakeARM()
