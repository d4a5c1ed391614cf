"""Configuration models for vmware2azure using Pydantic v2."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator


def _secret_from_env(value: Optional[SecretStr], env_name: Optional[str]) -> Optional[SecretStr]:
    if value is None and env_name:
        env_val = os.environ.get(env_name)
        if env_val:
            return SecretStr(env_val)
    return value


class VMwareConfig(BaseModel):
    """VMware vCenter/vSphere connection configuration."""

    vcenter: str = Field(..., description="vCenter hostname or IP")
    username: str = Field(..., description="vCenter username")
    password: Optional[SecretStr] = Field(None, description="vCenter password (prefer password_env)")
    password_env: Optional[str] = Field(None, description="Environment variable containing the password")
    insecure: bool = Field(False, description="Skip SSL certificate verification")
    port: int = Field(443, description="vCenter port")

    @model_validator(mode="after")
    def resolve_password(self) -> "VMwareConfig":
        self.password = _secret_from_env(self.password, self.password_env)
        if self.password is None:
            raise ValueError("Either 'password' or 'password_env' (with matching env var) must be provided")
        return self


class AzureConfig(BaseModel):
    """Azure service principal and target subscription."""

    tenant_id: str = Field(..., description="Azure AD tenant ID")
    client_id: str = Field(..., description="Service principal application ID")
    client_secret: Optional[SecretStr] = Field(None)
    client_secret_env: Optional[str] = Field("AZURE_CLIENT_SECRET")
    subscription_id: str = Field(..., description="Target subscription ID")
    location: str = Field("eastus2", description="Azure region for created resources")
    management_endpoint: str = Field("https://management.azure.com")
    authority: str = Field("https://login.microsoftonline.com")

    @model_validator(mode="after")
    def resolve_secret(self) -> "AzureConfig":
        self.client_secret = _secret_from_env(self.client_secret, self.client_secret_env)
        if self.client_secret is None:
            raise ValueError("Azure client_secret not found (check AZURE_CLIENT_SECRET env var)")
        return self


class ConversionHostConfig(BaseModel):
    """Windows host running Microsoft Virtual Machine Converter, reached over WinRM."""

    address: str = Field(..., description="Conversion host hostname or IP")
    port: int = Field(5985, description="WinRM HTTP port")
    username: str = Field(..., description="WinRM username")
    password: Optional[SecretStr] = Field(None)
    password_env: Optional[str] = Field("CONVERSION_HOST_PASSWORD")
    transport: str = Field("ntlm", description="pywinrm transport (ntlm, kerberos, basic, credssp)")
    output_path: str = Field("C:\\images", description="Directory converted disks are written to")
    converter_module_path: str = Field(
        "C:\\Program Files\\Microsoft Virtual Machine Converter\\MvmcCmdlet.psd1"
    )
    azure_profile_path: str = Field("C:\\creds\\azure.txt", description="Saved AzureRM profile on the host")
    storage_container: str = Field("upload", description="Blob container receiving the VHD")

    @model_validator(mode="after")
    def resolve_password(self) -> "ConversionHostConfig":
        self.password = _secret_from_env(self.password, self.password_env)
        if self.password is None:
            raise ValueError("Conversion host password not found (check CONVERSION_HOST_PASSWORD env var)")
        return self


class MigrationSettings(BaseModel):
    """Global migration behavior settings."""

    work_dir: Path = Field(Path("/var/lib/vmware2azure"), description="Directory holding migration state")
    power_off_retry_seconds: int = Field(30, ge=1, description="Delay before re-checking the source power state")
    max_power_off_checks: int = Field(20, ge=1, description="Power-state checks before the attempt fails")
    graceful_shutdown: bool = Field(True, description="Shut down the guest OS when VMware Tools are running")
    shutdown_grace_seconds: int = Field(
        300, ge=0, description="Wait after a stop request before forcing a hard power off"
    )
    provision_poll_seconds: int = Field(5, ge=0, description="Interval between provisioning state polls")
    provision_timeout_seconds: int = Field(900, ge=1, description="Maximum wait for one resource to provision")
    admin_username: str = Field("clouduser", description="Administrative user on the migrated VM")


class AppConfig(BaseModel):
    """Root application configuration."""

    vmware: VMwareConfig
    azure: AzureConfig
    conversion_host: ConversionHostConfig
    migration: MigrationSettings = MigrationSettings()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls(**data)

    @classmethod
    def from_env_and_args(cls, **overrides) -> "AppConfig":
        """Build config from environment variables with CLI overrides."""
        base = {
            "vmware": {
                "vcenter": os.environ.get("VCENTER_HOST", ""),
                "username": os.environ.get("VCENTER_USERNAME", ""),
                "password_env": "VCENTER_PASSWORD",
                "insecure": os.environ.get("VCENTER_INSECURE", "false").lower() == "true",
            },
            "azure": {
                "tenant_id": os.environ.get("AZURE_TENANT_ID", ""),
                "client_id": os.environ.get("AZURE_CLIENT_ID", ""),
                "subscription_id": os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
                "location": os.environ.get("AZURE_LOCATION", "eastus2"),
            },
            "conversion_host": {
                "address": os.environ.get("CONVERSION_HOST", ""),
                "username": os.environ.get("CONVERSION_HOST_USER", ""),
                "output_path": os.environ.get("CONVERSION_HOST_PATH", "C:\\images"),
            },
        }
        # Deep merge overrides
        for key, value in overrides.items():
            if isinstance(value, dict) and key in base:
                base[key].update(value)
            else:
                base[key] = value
        return cls(**base)


# --- VM-specific migration input ---

class VMMigrationPlan(BaseModel):
    """User-supplied parameters for migrating a single VM."""

    vm_name: str = Field(..., min_length=1, description="Source VM name in vCenter")
    resource_group: str = Field(..., min_length=1, description="Target Azure resource group")
    storage_account: str = Field(..., pattern=r"^[a-z0-9]{3,24}$", description="Storage account receiving the VHD")
    subnet_id: str = Field(..., pattern=r"^/subscriptions/", description="ARM id of the target subnet")
    vm_size: str = Field(..., description="Azure VM size (e.g. Standard_D2s_v3)")
    os_type: Literal["Windows", "Linux"] = Field(..., description="Guest OS family")
    ip_name: Optional[str] = Field(None, description="Public IP resource name (default: <vm>-ip)")
    nic_name: Optional[str] = Field(None, description="Network interface name (default: <vm>-nic)")
    admin_password: Optional[SecretStr] = Field(None)
    admin_password_env: Optional[str] = Field("VM_ADMIN_PASSWORD")
    location: Optional[str] = Field(None, description="Overrides azure.location")

    @model_validator(mode="after")
    def fill_defaults(self) -> "VMMigrationPlan":
        if not self.ip_name:
            self.ip_name = f"{self.vm_name}-ip"
        if not self.nic_name:
            self.nic_name = f"{self.vm_name}-nic"
        self.admin_password = _secret_from_env(self.admin_password, self.admin_password_env)
        if self.admin_password is None:
            raise ValueError("Either 'admin_password' or 'admin_password_env' (with matching env var) must be provided")
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "VMMigrationPlan":
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls(**data)


class MigrationRequest(BaseModel):
    """Immutable input bundle for one migration attempt."""

    model_config = ConfigDict(frozen=True)

    vm_name: str
    source_host: str
    source_username: str
    source_password: SecretStr
    location: str
    resource_group: str
    storage_account: str = Field(..., pattern=r"^[a-z0-9]{3,24}$")
    subnet_id: str
    ip_name: str
    nic_name: str
    vm_size: str
    os_type: Literal["Windows", "Linux"]
    admin_password: SecretStr
    conversion_host: str
    conversion_host_port: int = 5985
    conversion_host_transport: str = "ntlm"
    conversion_host_user: str
    conversion_host_password: SecretStr
    conversion_host_path: str
    converter_module_path: str = "C:\\Program Files\\Microsoft Virtual Machine Converter\\MvmcCmdlet.psd1"
    azure_profile_path: str = "C:\\creds\\azure.txt"
    storage_container: str = "upload"

    @classmethod
    def from_plan(cls, config: AppConfig, plan: VMMigrationPlan) -> "MigrationRequest":
        host = config.conversion_host
        return cls(
            vm_name=plan.vm_name,
            source_host=config.vmware.vcenter,
            source_username=config.vmware.username,
            source_password=config.vmware.password,
            location=plan.location or config.azure.location,
            resource_group=plan.resource_group,
            storage_account=plan.storage_account,
            subnet_id=plan.subnet_id,
            ip_name=plan.ip_name,
            nic_name=plan.nic_name,
            vm_size=plan.vm_size,
            os_type=plan.os_type,
            admin_password=plan.admin_password,
            conversion_host=host.address,
            conversion_host_port=host.port,
            conversion_host_transport=host.transport,
            conversion_host_user=host.username,
            conversion_host_password=host.password,
            conversion_host_path=host.output_path,
            converter_module_path=host.converter_module_path,
            azure_profile_path=host.azure_profile_path,
            storage_container=host.storage_container,
        )

    def secrets(self) -> list[SecretStr]:
        """Every secret carried by the request, for log redaction."""
        return [self.source_password, self.admin_password, self.conversion_host_password]
