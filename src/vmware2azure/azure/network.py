"""Discovery of virtual networks and subnets available to a migration."""

from __future__ import annotations

from dataclasses import dataclass

from vmware2azure.azure.arm import NETWORK_API_VERSION, ARMClient


@dataclass
class SubnetInfo:
    name: str
    resource_id: str
    address_prefix: str


@dataclass
class VirtualNetworkInfo:
    name: str
    resource_group: str
    location: str
    address_prefixes: list[str]
    subnets: list[SubnetInfo]


def _resource_group_of(resource_id: str) -> str:
    parts = resource_id.split("/")
    lowered = [p.lower() for p in parts]
    if "resourcegroups" in lowered:
        return parts[lowered.index("resourcegroups") + 1]
    return ""


def _subnet(raw: dict) -> SubnetInfo:
    props = raw.get("properties", {})
    prefix = props.get("addressPrefix") or ", ".join(props.get("addressPrefixes", []))
    return SubnetInfo(name=raw.get("name", ""), resource_id=raw.get("id", ""), address_prefix=prefix)


def list_virtual_networks(arm: ARMClient) -> list[VirtualNetworkInfo]:
    """All virtual networks in the subscription, with their subnets."""
    path = f"/subscriptions/{arm.subscription_id}/providers/Microsoft.Network/virtualNetworks"
    networks = []
    for raw in arm.list_all(path, NETWORK_API_VERSION):
        props = raw.get("properties", {})
        networks.append(VirtualNetworkInfo(
            name=raw.get("name", ""),
            resource_group=_resource_group_of(raw.get("id", "")),
            location=raw.get("location", ""),
            address_prefixes=props.get("addressSpace", {}).get("addressPrefixes", []),
            subnets=[_subnet(s) for s in props.get("subnets", [])],
        ))
    return sorted(networks, key=lambda n: n.name)

