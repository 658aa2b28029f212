"""Mock Azure state shared by every mock SDK client.

Holds resource groups, Key Vault objects, the resources an ARM deployment of
the SHIR template creates (factory, runtime, VM, NIC, NSG) and a log of every
operation performed, so tests can assert on both outcome and call counts.
"""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.mgmt.network.models import NetworkSecurityGroup

DEFAULT_SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"


@dataclass
class MockDeployment:
    """A recorded ARM deployment request."""

    name: str
    resource_group: str
    mode: str
    template: dict[str, Any]
    parameters: dict[str, Any]
    provisioning_state: str = "Succeeded"


@dataclass
class MockValidationError:
    """An error the template validation endpoint should report."""

    code: str
    message: str


@dataclass
class MockResourceState:
    """In-memory Azure control plane.

    Failure injection:
    - ``unauthorized``: operation names that raise ClientAuthenticationError
    - ``validation_errors``: reported by deployments.begin_validate (HTTP 400)
    - ``deployment_error``: makes deployments end in ``Failed``
    - ``runtime_states``: successive integration runtime states; the last one sticks
    """

    subscription_id: str = DEFAULT_SUBSCRIPTION_ID
    resource_groups: dict[str, SimpleNamespace] = field(default_factory=dict)
    vaults: set[str] = field(default_factory=set)
    secrets: dict[tuple[str, str], SimpleNamespace] = field(default_factory=dict)
    keys: dict[tuple[str, str], SimpleNamespace] = field(default_factory=dict)
    factories: dict[tuple[str, str], SimpleNamespace] = field(default_factory=dict)
    runtimes: dict[tuple[str, str, str], SimpleNamespace] = field(default_factory=dict)
    vms: dict[tuple[str, str], SimpleNamespace] = field(default_factory=dict)
    nics: dict[str, SimpleNamespace] = field(default_factory=dict)
    nsgs: dict[tuple[str, str], NetworkSecurityGroup] = field(default_factory=dict)

    deployments: list[MockDeployment] = field(default_factory=list)
    restarts: list[tuple[str, str]] = field(default_factory=list)
    calls: Counter[str] = field(default_factory=Counter)

    unauthorized: set[str] = field(default_factory=set)
    validation_errors: list[MockValidationError] = field(default_factory=list)
    deployment_error: MockValidationError | None = None
    deployment_outputs: dict[str, Any] = field(default_factory=dict)
    runtime_states: list[str] = field(default_factory=lambda: ["Online"])
    nsg_attached: bool = True

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def record(self, operation: str) -> None:
        """Count an operation, raising if it has been made to fail."""
        self.calls[operation] += 1
        if operation in self.unauthorized:
            raise ClientAuthenticationError(message=f"Simulated 403 on {operation}")

    def call_count(self, operation: str) -> int:
        return self.calls[operation]

    @property
    def deployment_count(self) -> int:
        return len(self.deployments)

    def resource_id(self, resource_group: str, provider_type: str, *names: str) -> str:
        path = "/".join(names)
        return (
            f"/subscriptions/{self.subscription_id}/resourceGroups/{resource_group}"
            f"/providers/{provider_type}/{path}"
        )

    @staticmethod
    def not_found(what: str) -> ResourceNotFoundError:
        return ResourceNotFoundError(message=f"{what} was not found")

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_resource_group(self, name: str, location: str = "westeurope") -> SimpleNamespace:
        rg = SimpleNamespace(
            id=f"/subscriptions/{self.subscription_id}/resourceGroups/{name}",
            name=name,
            location=location,
            tags={},
        )
        self.resource_groups[name] = rg
        return rg

    def add_vault(self, name: str) -> None:
        self.vaults.add(name)

    def check_vault(self, vault: str) -> None:
        # Unknown vault host names fail DNS resolution
        if vault not in self.vaults:
            raise ServiceRequestError(message=f"Failed to resolve {vault}.vault.azure.net")

    def add_secret(self, vault: str, name: str, value: str = "existing") -> SimpleNamespace:
        secret = SimpleNamespace(
            id=f"https://{vault}.vault.azure.net/secrets/{name}/{uuid.uuid4().hex}",
            name=name,
            value=value,
        )
        self.secrets[(vault, name)] = secret
        return secret

    def add_key(self, vault: str, name: str) -> SimpleNamespace:
        key = SimpleNamespace(
            id=f"https://{vault}.vault.azure.net/keys/{name}/{uuid.uuid4().hex}",
            name=name,
            key_type="RSA",
            size=2048,
        )
        self.keys[(vault, name)] = key
        return key

    def add_shir_environment(
        self,
        resource_group: str,
        *,
        factory: str,
        runtime: str,
        vm: str,
        nsg: str | None = None,
    ) -> None:
        """Create what the SHIR template deploys: factory, runtime, VM, NIC and NSG."""
        nsg_name = nsg or f"{vm}-nsg"
        nsg_id = self.resource_id(
            resource_group, "Microsoft.Network/networkSecurityGroups", nsg_name
        )
        if (resource_group, nsg_name) not in self.nsgs:
            group = NetworkSecurityGroup(location="westeurope", security_rules=[])
            group.name = nsg_name
            group.id = nsg_id
            self.nsgs[(resource_group, nsg_name)] = group

        nic_id = self.resource_id(
            resource_group, "Microsoft.Network/networkInterfaces", f"{vm}-nic"
        )
        self.nics[nic_id] = SimpleNamespace(
            id=nic_id,
            name=f"{vm}-nic",
            network_security_group=SimpleNamespace(id=nsg_id) if self.nsg_attached else None,
        )
        self.vms[(resource_group, vm)] = SimpleNamespace(
            id=self.resource_id(resource_group, "Microsoft.Compute/virtualMachines", vm),
            name=vm,
            network_profile=SimpleNamespace(
                network_interfaces=[SimpleNamespace(id=nic_id, primary=True)]
            ),
        )

        factory_id = self.resource_id(resource_group, "Microsoft.DataFactory/factories", factory)
        self.factories[(resource_group, factory)] = SimpleNamespace(id=factory_id, name=factory)
        self.runtimes[(resource_group, factory, runtime)] = SimpleNamespace(
            id=f"{factory_id}/integrationruntimes/{runtime}",
            name=runtime,
            properties=SimpleNamespace(type="SelfHosted"),
        )

    # -------------------------------------------------------------------------
    # Deployment simulation
    # -------------------------------------------------------------------------

    def validation_failure(self) -> HttpResponseError | None:
        """Build the HTTP 400 ARM returns for an invalid template, if any."""
        if not self.validation_errors:
            return None
        error = HttpResponseError(message="InvalidTemplateDeployment")
        error.status_code = 400
        error.error = SimpleNamespace(
            code="InvalidTemplateDeployment",
            message="The template deployment is not valid",
            details=[SimpleNamespace(code=e.code, message=e.message, details=None)
                     for e in self.validation_errors],
        )
        return error

    def apply_deployment(self, deployment: MockDeployment) -> SimpleNamespace:
        """Record a deployment and create the resources named by its parameters."""
        self.deployments.append(deployment)

        if self.deployment_error is not None:
            deployment.provisioning_state = "Failed"
            return SimpleNamespace(
                name=deployment.name,
                properties=SimpleNamespace(
                    provisioning_state="Failed",
                    error=SimpleNamespace(
                        code=self.deployment_error.code,
                        message=self.deployment_error.message,
                        details=None,
                    ),
                    outputs=None,
                ),
            )

        params = {name: p.get("value") for name, p in deployment.parameters.items()}
        self.add_shir_environment(
            deployment.resource_group,
            factory=params["dataFactoryName"],
            runtime=params["integrationRuntimeName"],
            vm=params["vmName"],
        )
        return SimpleNamespace(
            name=deployment.name,
            properties=SimpleNamespace(
                provisioning_state="Succeeded",
                error=None,
                outputs={name: {"type": "String", "value": value}
                         for name, value in self.deployment_outputs.items()},
            ),
        )

    def next_runtime_state(self) -> str:
        if len(self.runtime_states) > 1:
            return self.runtime_states.pop(0)
        return self.runtime_states[0]
