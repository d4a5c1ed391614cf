"""Tests for the conversion script builder.

Covers:
  - PowerShell single-quote escaping
  - Deterministic rendering
  - Command ordering and upload URI
  - Injection attempts through every interpolated field
"""

import pytest
from pydantic import SecretStr


# ═══════════════════════════════════════════════════════════════════
#  Quoting Tests
# ═══════════════════════════════════════════════════════════════════

class TestPsQuote:
    def test_plain_value(self):
        from vmware2azure.conversion.script import ps_quote
        assert ps_quote("web-prod-01") == "'web-prod-01'"

    def test_single_quote_doubled(self):
        from vmware2azure.conversion.script import ps_quote
        assert ps_quote("O'Brien") == "'O''Brien'"

    def test_typographic_quotes_doubled(self):
        from vmware2azure.conversion.script import ps_quote
        assert ps_quote("a\u2019b") == "'a\u2019\u2019b'"
        assert ps_quote("a\u2018b") == "'a\u2018\u2018b'"

    def test_dollar_and_backtick_left_literal(self):
        from vmware2azure.conversion.script import ps_quote
        assert ps_quote("$(Remove-Item C:\\ -Recurse)`n") == "'$(Remove-Item C:\\ -Recurse)`n'"

    def test_empty(self):
        from vmware2azure.conversion.script import ps_quote
        assert ps_quote("") == "''"


# ═══════════════════════════════════════════════════════════════════
#  Script Builder Tests
# ═══════════════════════════════════════════════════════════════════

class TestConversionScriptBuilder:
    def test_deterministic(self, migration_request):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        builder = ConversionScriptBuilder()
        assert builder.build(migration_request) == builder.build(migration_request)
        assert ConversionScriptBuilder().build(migration_request) == builder.build(migration_request)

    def test_command_order(self, migration_request):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        script = ConversionScriptBuilder().build(migration_request)

        markers = [
            "$ErrorActionPreference = 'Stop'",
            "Import-Module",
            "New-MvmcSourceConnection",
            "Get-MvmcSourceVirtualMachine",
            "ConvertTo-MvmcVirtualHardDiskOvf",
            "Select-AzureRmProfile",
            "Add-AzureRmVhd",
        ]
        positions = [script.index(m) for m in markers]
        assert positions == sorted(positions)

    def test_upload_destination(self, migration_request):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        script = ConversionScriptBuilder().build(migration_request)

        assert "-Destination 'https://migstore01.blob.core.windows.net/upload/web-prod-01.vhd'" in script
        assert "-LocalFilePath 'C:\\images\\web-prod-01\\disk-0.vhd'" in script
        assert "-ResourceGroupName 'migrated-rg'" in script

    def test_output_path_trailing_separator(self, request_factory):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        script = ConversionScriptBuilder().build(request_factory(conversion_host_path="D:\\work\\"))
        assert "$destinationLiteralPath = 'D:\\work\\web-prod-01'" in script

    def test_missing_vm_is_an_error(self, migration_request):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        script = ConversionScriptBuilder().build(migration_request)
        assert "$_.Name -eq $vmName" in script
        assert "Write-Error" in script

    def test_credentials_are_literals(self, migration_request):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        script = ConversionScriptBuilder().build(migration_request)
        assert "$sourceUser = 'administrator@vsphere.local'" in script
        assert "ConvertTo-SecureString 'vc-secret' -AsPlainText -Force" in script
        assert "-Server 'vcenter.local'" in script

    @pytest.mark.parametrize("field", ["vm_name", "source_username", "resource_group", "conversion_host_path"])
    def test_injection_stays_inside_literal(self, request_factory, field):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        payload = "x'; Remove-Item -Recurse C:\\ ; '"
        script = ConversionScriptBuilder().build(request_factory(**{field: payload}))

        assert "x''; Remove-Item -Recurse C:\\ ; ''" in script
        # every quote in the rendered script is balanced on its line
        for line in script.split("\r\n"):
            if "Remove-Item" in line:
                assert line.count("'") % 2 == 0

    def test_password_with_quote(self, request_factory):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        script = ConversionScriptBuilder().build(request_factory(source_password=SecretStr("p'w$d")))
        assert "ConvertTo-SecureString 'p''w$d'" in script

    def test_crlf_line_endings(self, migration_request):
        from vmware2azure.conversion.script import ConversionScriptBuilder
        script = ConversionScriptBuilder().build(migration_request)
        assert "\r\n" in script
        assert "\n" not in script.replace("\r\n", "")
