"""Descriptors for resources and states observed at the provider.

All state lives in Azure and is re-fetched on every check. Descriptors are
snapshots: immutable once returned, never cached beyond a single ensure or
poll call.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ResourceKind(str, Enum):
    """Kinds of resources this deployer looks up or creates."""

    RESOURCE_GROUP = "ResourceGroup"
    SECRET = "Secret"
    KEY = "Key"
    SECURITY_RULE = "SecurityRule"
    RUNTIME = "Runtime"
    VM = "VM"
    NETWORK_INTERFACE = "NetworkInterface"


@dataclass(frozen=True)
class ResourceDescriptor:
    """Snapshot of a resource as reported by a provider lookup."""

    name: str
    kind: ResourceKind
    exists: bool = True
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def resource_id(self) -> str | None:
        """ARM resource ID if the provider reported one."""
        return self.attributes.get("id")


class ProvisioningStatus(str, Enum):
    """Terminal and transient states of a deployment or long-running operation."""

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    RUNNING = "Running"
    UNKNOWN = "Unknown"

    @classmethod
    def from_provider(cls, value: str | None) -> ProvisioningStatus:
        """Map an ARM provisioningState string, tolerating unknown values."""
        if not value:
            return cls.UNKNOWN
        for member in cls:
            if member.value.lower() == value.lower():
                return member
        if value.lower() in ("accepted", "creating", "updating", "deploying"):
            return cls.RUNNING
        if value.lower() == "canceled":
            return cls.FAILED
        return cls.UNKNOWN


@dataclass(frozen=True)
class ProvisioningState:
    """Observed state of a deployment."""

    status: ProvisioningStatus
    error_detail: str | None = None
    outputs: Mapping[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == ProvisioningStatus.SUCCEEDED


class RuntimeState(str, Enum):
    """Coarse state of a self-hosted integration runtime."""

    ONLINE = "Online"
    OFFLINE = "Offline"
    CONNECTING = "Connecting"
    UNKNOWN = "Unknown"


# Data Factory reports a richer set of runtime states; these collapse them.
_RUNTIME_STATE_MAP: dict[str, RuntimeState] = {
    "online": RuntimeState.ONLINE,
    "offline": RuntimeState.OFFLINE,
    "stopped": RuntimeState.OFFLINE,
    "needregistration": RuntimeState.CONNECTING,
    "initial": RuntimeState.CONNECTING,
    "starting": RuntimeState.CONNECTING,
    "started": RuntimeState.CONNECTING,
    "limited": RuntimeState.CONNECTING,
}


@dataclass(frozen=True)
class RuntimeStatus:
    """Integration runtime status observed at a point in time."""

    state: RuntimeState
    last_observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    raw_state: str | None = None

    @classmethod
    def from_provider(cls, raw_state: str | None) -> RuntimeStatus:
        state = _RUNTIME_STATE_MAP.get((raw_state or "").lower(), RuntimeState.UNKNOWN)
        return cls(state=state, raw_state=raw_state)

    @property
    def online(self) -> bool:
        return self.state == RuntimeState.ONLINE


@dataclass(frozen=True)
class SecurityRuleSpec:
    """Outbound allow rule from the runtime subnet to an Azure service tag."""

    name: str
    priority: int
    destination_service_tag: str
    destination_port: str
    protocol: str = "Tcp"
    direction: str = "Outbound"
    access: str = "Allow"
    source_address_prefix: str = "VirtualNetwork"
    source_port: str = "*"
    description: str | None = None

    def __post_init__(self) -> None:
        # NSG rule priorities are limited to 100-4096
        if not 100 <= self.priority <= 4096:
            raise ValueError(f"Security rule priority must be 100-4096: {self.priority}")


# Outbound rules the runtime needs to reach storage, vault and database endpoints
SHIR_OUTBOUND_RULES: tuple[SecurityRuleSpec, ...] = (
    SecurityRuleSpec(
        name="AllowAdfToStorage",
        priority=100,
        destination_service_tag="Storage",
        destination_port="443",
        description="Self-hosted integration runtime to Azure Storage",
    ),
    SecurityRuleSpec(
        name="AllowAdfToKeyVault",
        priority=110,
        destination_service_tag="AzureKeyVault",
        destination_port="443",
        description="Self-hosted integration runtime to Azure Key Vault",
    ),
    SecurityRuleSpec(
        name="AllowAdfToSql",
        priority=120,
        destination_service_tag="Sql",
        destination_port="1433",
        description="Self-hosted integration runtime to Azure SQL",
    ),
)
