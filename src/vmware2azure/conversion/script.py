"""PowerShell script that converts the source disk to VHD and uploads it to Azure.

The script runs on the conversion host, which needs:
  - Microsoft Virtual Machine Converter (MvmcCmdlet module)
  - AzureRM PowerShell with a saved profile (Save-AzureRmProfile)

Every user-supplied value is emitted as a single-quoted PowerShell string
literal. Inside single quotes PowerShell performs no variable expansion or
subexpression evaluation; the only special character is the quote itself,
which is escaped by doubling it.
"""

from __future__ import annotations

from vmware2azure.config import MigrationRequest
from vmware2azure.naming import source_vhd_uri

# PowerShell treats the typographic single quotes as quote characters too
_PS_QUOTES = ("'", "‘", "’", "‚", "‛")


def ps_quote(value: str) -> str:
    """Render ``value`` as a single-quoted PowerShell string literal."""
    escaped = "".join(ch * 2 if ch in _PS_QUOTES else ch for ch in str(value))
    return f"'{escaped}'"


def _ps_join(*parts: str) -> str:
    """Join Windows path fragments without doubling separators."""
    cleaned = [parts[0].rstrip("\\")] + [p.strip("\\") for p in parts[1:]]
    return "\\".join(cleaned)


class ConversionScriptBuilder:
    """Renders the conversion-and-upload command sequence for a migration request.

    Pure: the same request always renders byte-identical text and no I/O
    happens here.
    """

    disk_file = "disk-0.vhd"

    def build(self, request: MigrationRequest) -> str:
        destination_dir = _ps_join(request.conversion_host_path, request.vm_name)
        local_vhd = _ps_join(destination_dir, self.disk_file)
        upload_uri = source_vhd_uri(request.storage_account, request.vm_name, request.storage_container)

        lines = [
            "$ErrorActionPreference = 'Stop'",
            "$ProgressPreference = 'SilentlyContinue'",
            "",
            f"Import-Module {ps_quote(request.converter_module_path)}",
            "",
            f"$sourceUser = {ps_quote(request.source_username)}",
            f"$sourcePassword = ConvertTo-SecureString {ps_quote(request.source_password.get_secret_value())}"
            " -AsPlainText -Force",
            "$sourceCredential = New-Object System.Management.Automation.PSCredential ($sourceUser, $sourcePassword)",
            f"$sourceConnection = New-MvmcSourceConnection -Server {ps_quote(request.source_host)}"
            " -SourceCredential $sourceCredential",
            "",
            f"$vmName = {ps_quote(request.vm_name)}",
            "$sourceVM = Get-MvmcSourceVirtualMachine -SourceConnection $sourceConnection"
            " | Where-Object { $_.Name -eq $vmName } | Select-Object -First 1",
            "if ($null -eq $sourceVM) {",
            "    Write-Error \"Source VM '$vmName' not found on the source server\"",
            "    exit 1",
            "}",
            "",
            f"$destinationLiteralPath = {ps_quote(destination_dir)}",
            "ConvertTo-MvmcVirtualHardDiskOvf -SourceConnection $sourceConnection"
            " -DestinationLiteralPath $destinationLiteralPath -GuestVmId $sourceVM.GuestVmId -VhdFormat Vhd",
            "",
            f"Select-AzureRmProfile -Path {ps_quote(request.azure_profile_path)} | Out-Null",
            f"Add-AzureRmVhd -Destination {ps_quote(upload_uri)} -LocalFilePath {ps_quote(local_vhd)}"
            f" -ResourceGroupName {ps_quote(request.resource_group)}",
            "",
        ]
        return "\r\n".join(lines)
