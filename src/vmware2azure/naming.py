"""Derived names and URIs shared by the conversion script and the provisioner."""

from __future__ import annotations

import re
import uuid
from typing import Optional
from urllib.parse import quote

BLOB_ENDPOINT = "https://{account}.blob.core.windows.net"
CLOUDAPP_DOMAIN = "cloudapp.azure.com"

_DNS_INVALID = re.compile(r"[^a-z0-9-]+")


def dns_label(vm_name: str) -> str:
    """Azure public IP DNS label for a VM name.

    Labels must match ``^[a-z][a-z0-9-]{1,61}[a-z0-9]$``.
    """
    label = _DNS_INVALID.sub("-", vm_name.lower()).strip("-")
    label = re.sub(r"-{2,}", "-", label)
    if not label or not label[0].isalpha():
        label = f"vm-{label}".rstrip("-")
    label = label[:63].rstrip("-")
    if len(label) < 3:
        label = f"{label}-vm"
    return label


def fqdn(vm_name: str, location: str) -> str:
    return f"{dns_label(vm_name)}.{location.lower()}.{CLOUDAPP_DOMAIN}"


def source_vhd_uri(storage_account: str, vm_name: str, container: str = "upload") -> str:
    """URI of the VHD uploaded by the conversion host."""
    base = BLOB_ENDPOINT.format(account=storage_account)
    return f"{base}/{container}/{quote(vm_name, safe='')}.vhd"


def target_vhd_uri(
    storage_account: str,
    vm_name: str,
    container: str = "upload",
    suffix: Optional[str] = None,
) -> str:
    """URI the VM's OS disk is written to; the random suffix keeps it apart from the source blob."""
    suffix = suffix or str(uuid.uuid4())
    base = BLOB_ENDPOINT.format(account=storage_account)
    return f"{base}/{container}/{quote(vm_name, safe='')}_{suffix}.vhd"
