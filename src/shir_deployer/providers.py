"""Capability interfaces over the Azure control plane and their SDK adapters.

The orchestrator only depends on the Protocols below. Each Azure adapter wraps
one management client and follows the same lookup convention:

- ``ResourceNotFoundError`` means "confirmed absent" and becomes ``None``
- any other ``AzureError`` means "cannot determine" and raises LookupFailure

Exceptions are not used for the not-found control flow beyond this layer.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential, ManagedIdentityCredential
from azure.keyvault.keys import KeyClient
from azure.keyvault.secrets import SecretClient
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.datafactory import DataFactoryManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import NetworkSecurityGroup, SecurityRule
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resource.resources.models import (
    Deployment,
    DeploymentMode,
    DeploymentProperties,
    ResourceGroup,
)

from .errors import LookupFailure
from .resources import (
    ProvisioningState,
    ProvisioningStatus,
    ResourceDescriptor,
    ResourceKind,
    RuntimeStatus,
    SecurityRuleSpec,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_VAULT_URL_TEMPLATE = "https://{vault}.vault.azure.net"
CUSTOMER_MANAGED_KEY_SIZE = 2048


# =============================================================================
# Capability interfaces
# =============================================================================


class ResourceGroupProvider(Protocol):
    def exists(self, name: str) -> bool: ...

    def get(self, name: str) -> ResourceDescriptor | None: ...

    def create(self, name: str, location: str, tags: dict[str, str]) -> ResourceDescriptor: ...


class SecretStore(Protocol):
    def get_secret(self, vault: str, name: str) -> ResourceDescriptor | None: ...

    def set_secret(self, vault: str, name: str, value: str) -> ResourceDescriptor: ...

    def get_key(self, vault: str, name: str) -> ResourceDescriptor | None: ...

    def create_key(self, vault: str, name: str) -> ResourceDescriptor: ...


class DeploymentEngine(Protocol):
    def validate(
        self,
        resource_group: str,
        deployment_name: str,
        template: dict[str, Any],
        parameters: dict[str, Any],
    ) -> list[str]: ...

    def deploy(
        self,
        resource_group: str,
        deployment_name: str,
        template: dict[str, Any],
        parameters: dict[str, Any],
    ) -> ProvisioningState: ...


class ComputeProvider(Protocol):
    def restart(self, resource_group: str, vm_name: str) -> None: ...

    def get_vm(self, resource_group: str, vm_name: str) -> ResourceDescriptor | None: ...


class NetworkProvider(Protocol):
    def get_nic(self, nic_id: str) -> ResourceDescriptor | None: ...

    def get_nsg(self, resource_group: str, name: str) -> NetworkSecurityGroup | None: ...

    def add_rule(
        self, nsg: NetworkSecurityGroup, rule: SecurityRuleSpec
    ) -> NetworkSecurityGroup: ...

    def save(self, resource_group: str, nsg: NetworkSecurityGroup) -> NetworkSecurityGroup: ...


class IntegrationRuntimeProvider(Protocol):
    def get(self, resource_group: str, factory: str, name: str) -> ResourceDescriptor | None: ...

    def get_status(self, resource_group: str, factory: str, name: str) -> RuntimeStatus: ...

    def get_factory_id(self, resource_group: str, factory: str) -> str | None: ...


@dataclass(frozen=True)
class AzureProviders:
    """The set of collaborators the orchestrator drives."""

    resource_groups: ResourceGroupProvider
    secrets: SecretStore
    deployments: DeploymentEngine
    compute: ComputeProvider
    network: NetworkProvider
    runtimes: IntegrationRuntimeProvider


# =============================================================================
# Helpers
# =============================================================================


def _lookup(description: str, operation: Callable[[], T]) -> T | None:
    """Run a provider read, mapping not-found to None and other faults to LookupFailure."""
    try:
        return operation()
    except ResourceNotFoundError:
        logger.debug(f"{description} not found")
        return None
    except AzureError as e:
        raise LookupFailure(f"Failed to look up {description}: {e}", resource=description) from e


def parse_resource_id(resource_id: str) -> tuple[str, str]:
    """Extract (resource group, resource name) from an ARM resource ID.

    Azure resource IDs follow the pattern:
    /subscriptions/{sub}/resourceGroups/{rg}/providers/{namespace}/{type}/{name}

    Raises:
        ValueError: If the ID does not contain a resource group and name.
    """
    segments = [s for s in resource_id.split("/") if s]
    lowered = [s.lower() for s in segments]
    try:
        rg_index = lowered.index("resourcegroups")
        resource_group = segments[rg_index + 1]
    except (ValueError, IndexError) as e:
        raise ValueError(f"Resource ID has no resource group: {resource_id}") from e

    if "providers" not in lowered or len(segments) <= lowered.index("providers") + 3:
        raise ValueError(f"Resource ID has no resource name: {resource_id}")

    return resource_group, segments[-1]


def _flatten_error(error: Any) -> list[str]:
    """Flatten an ARM error (code, message, nested details) into readable lines."""
    if error is None:
        return []
    lines: list[str] = []
    code = getattr(error, "code", None)
    message = getattr(error, "message", None)
    if code or message:
        lines.append(f"{code}: {message}" if code else str(message))
    for detail in getattr(error, "details", None) or []:
        lines.extend(_flatten_error(detail))
    return lines


def _error_payload(error: Any) -> str:
    """Render an SDK error model verbatim as JSON where possible."""
    as_dict = getattr(error, "as_dict", None)
    if callable(as_dict):
        return json.dumps(as_dict())
    return str(error)


# =============================================================================
# Azure adapters
# =============================================================================


class AzureResourceGroupProvider:
    """Resource groups via azure-mgmt-resource."""

    def __init__(self, client: ResourceManagementClient) -> None:
        self._client = client

    def exists(self, name: str) -> bool:
        try:
            return bool(self._client.resource_groups.check_existence(name))
        except AzureError as e:
            raise LookupFailure(
                f"Failed to check resource group '{name}': {e}", resource=name
            ) from e

    def get(self, name: str) -> ResourceDescriptor | None:
        rg = _lookup(f"resource group '{name}'", lambda: self._client.resource_groups.get(name))
        if rg is None:
            return None
        return ResourceDescriptor(
            name=rg.name,
            kind=ResourceKind.RESOURCE_GROUP,
            attributes={"id": rg.id, "location": rg.location, "tags": dict(rg.tags or {})},
        )

    def create(self, name: str, location: str, tags: dict[str, str]) -> ResourceDescriptor:
        rg = self._client.resource_groups.create_or_update(
            resource_group_name=name,
            parameters=ResourceGroup(location=location, tags=tags),
        )
        logger.info(f"Resource group '{name}' created in {location}")
        return ResourceDescriptor(
            name=rg.name,
            kind=ResourceKind.RESOURCE_GROUP,
            attributes={"id": rg.id, "location": rg.location, "tags": dict(rg.tags or {})},
        )


class KeyVaultSecretStore:
    """Secrets and keys via the Key Vault data-plane clients.

    Clients are created per vault on first use. Secret values are never
    returned in descriptors or logged.
    """

    def __init__(self, credential: TokenCredential) -> None:
        self._credential = credential
        self._secret_clients: dict[str, SecretClient] = {}
        self._key_clients: dict[str, KeyClient] = {}

    def _secret_client(self, vault: str) -> SecretClient:
        if vault not in self._secret_clients:
            self._secret_clients[vault] = SecretClient(
                vault_url=KEY_VAULT_URL_TEMPLATE.format(vault=vault),
                credential=self._credential,
            )
        return self._secret_clients[vault]

    def _key_client(self, vault: str) -> KeyClient:
        if vault not in self._key_clients:
            self._key_clients[vault] = KeyClient(
                vault_url=KEY_VAULT_URL_TEMPLATE.format(vault=vault),
                credential=self._credential,
            )
        return self._key_clients[vault]

    def get_secret(self, vault: str, name: str) -> ResourceDescriptor | None:
        client = self._secret_client(vault)
        secret = _lookup(f"secret '{name}' in vault '{vault}'", lambda: client.get_secret(name))
        if secret is None:
            return None
        return ResourceDescriptor(
            name=secret.name,
            kind=ResourceKind.SECRET,
            attributes={"id": secret.id, "vault": vault},
        )

    def set_secret(self, vault: str, name: str, value: str) -> ResourceDescriptor:
        secret = self._secret_client(vault).set_secret(name, value)
        return ResourceDescriptor(
            name=secret.name,
            kind=ResourceKind.SECRET,
            attributes={"id": secret.id, "vault": vault},
        )

    def get_key(self, vault: str, name: str) -> ResourceDescriptor | None:
        client = self._key_client(vault)
        key = _lookup(f"key '{name}' in vault '{vault}'", lambda: client.get_key(name))
        if key is None:
            return None
        return ResourceDescriptor(
            name=key.name,
            kind=ResourceKind.KEY,
            attributes={"id": key.id, "vault": vault, "key_type": str(key.key_type)},
        )

    def create_key(self, vault: str, name: str) -> ResourceDescriptor:
        key = self._key_client(vault).create_rsa_key(name, size=CUSTOMER_MANAGED_KEY_SIZE)
        return ResourceDescriptor(
            name=key.name,
            kind=ResourceKind.KEY,
            attributes={"id": key.id, "vault": vault, "key_type": str(key.key_type)},
        )


class ArmDeploymentEngine:
    """Template validation and incremental deployment via azure-mgmt-resource."""

    def __init__(self, client: ResourceManagementClient) -> None:
        self._client = client

    @staticmethod
    def _deployment(template: dict[str, Any], parameters: dict[str, Any]) -> Deployment:
        # Incremental only: resources absent from the template are left untouched
        return Deployment(
            properties=DeploymentProperties(
                mode=DeploymentMode.INCREMENTAL,
                template=template,
                parameters=parameters,
            )
        )

    def validate(
        self,
        resource_group: str,
        deployment_name: str,
        template: dict[str, Any],
        parameters: dict[str, Any],
    ) -> list[str]:
        """Validate the template; returns the reported errors (empty when valid).

        Raises:
            HttpResponseError: For faults other than a validation rejection.
        """
        try:
            result = self._client.deployments.begin_validate(
                resource_group_name=resource_group,
                deployment_name=deployment_name,
                parameters=self._deployment(template, parameters),
            ).result()
        except HttpResponseError as e:
            # ARM answers 400 for templates that fail validation
            if e.status_code == 400:
                return _flatten_error(e.error) or [str(e.message)]
            raise

        return _flatten_error(getattr(result, "error", None))

    def deploy(
        self,
        resource_group: str,
        deployment_name: str,
        template: dict[str, Any],
        parameters: dict[str, Any],
    ) -> ProvisioningState:
        """Run an incremental deployment and wait for its terminal state."""
        try:
            poller = self._client.deployments.begin_create_or_update(
                resource_group_name=resource_group,
                deployment_name=deployment_name,
                parameters=self._deployment(template, parameters),
            )
            result = poller.result()
        except HttpResponseError as e:
            return ProvisioningState(status=ProvisioningStatus.FAILED, error_detail=str(e))

        properties = result.properties
        status = ProvisioningStatus.from_provider(
            properties.provisioning_state if properties else None
        )
        error = properties.error if properties else None
        outputs = {
            name: output.get("value") if isinstance(output, dict) else output
            for name, output in ((properties.outputs if properties else None) or {}).items()
        }
        return ProvisioningState(
            status=status,
            error_detail=_error_payload(error) if error is not None else None,
            outputs=outputs,
        )


class AzureComputeProvider:
    """Virtual machines via azure-mgmt-compute."""

    def __init__(self, client: ComputeManagementClient) -> None:
        self._client = client

    def restart(self, resource_group: str, vm_name: str) -> None:
        self._client.virtual_machines.begin_restart(resource_group, vm_name).result()

    def get_vm(self, resource_group: str, vm_name: str) -> ResourceDescriptor | None:
        vm = _lookup(
            f"virtual machine '{vm_name}'",
            lambda: self._client.virtual_machines.get(resource_group, vm_name),
        )
        if vm is None:
            return None

        profile = vm.network_profile
        interfaces = list(profile.network_interfaces or []) if profile else []
        fallback = interfaces[0] if interfaces else None
        primary = next((nic for nic in interfaces if nic.primary), fallback)
        return ResourceDescriptor(
            name=vm.name,
            kind=ResourceKind.VM,
            attributes={
                "id": vm.id,
                "network_interface_ids": tuple(nic.id for nic in interfaces),
                "primary_network_interface_id": primary.id if primary else None,
            },
        )


class AzureNetworkProvider:
    """Network interfaces and security groups via azure-mgmt-network."""

    def __init__(self, client: NetworkManagementClient) -> None:
        self._client = client

    def get_nic(self, nic_id: str) -> ResourceDescriptor | None:
        resource_group, name = parse_resource_id(nic_id)
        nic = _lookup(
            f"network interface '{name}'",
            lambda: self._client.network_interfaces.get(resource_group, name),
        )
        if nic is None:
            return None
        nsg = nic.network_security_group
        return ResourceDescriptor(
            name=nic.name,
            kind=ResourceKind.NETWORK_INTERFACE,
            attributes={"id": nic.id, "network_security_group_id": nsg.id if nsg else None},
        )

    def get_nsg(self, resource_group: str, name: str) -> NetworkSecurityGroup | None:
        return _lookup(
            f"network security group '{name}'",
            lambda: self._client.network_security_groups.get(resource_group, name),
        )

    def add_rule(self, nsg: NetworkSecurityGroup, rule: SecurityRuleSpec) -> NetworkSecurityGroup:
        """Return a copy of ``nsg`` with ``rule`` appended. Nothing is sent to Azure."""
        updated = copy.deepcopy(nsg)
        updated.security_rules = [
            *(updated.security_rules or []),
            SecurityRule(
                name=rule.name,
                priority=rule.priority,
                protocol=rule.protocol,
                direction=rule.direction,
                access=rule.access,
                source_address_prefix=rule.source_address_prefix,
                source_port_range=rule.source_port,
                destination_address_prefix=rule.destination_service_tag,
                destination_port_range=rule.destination_port,
                description=rule.description,
            ),
        ]
        return updated

    def save(self, resource_group: str, nsg: NetworkSecurityGroup) -> NetworkSecurityGroup:
        return self._client.network_security_groups.begin_create_or_update(
            resource_group, nsg.name, nsg
        ).result()


class DataFactoryRuntimeProvider:
    """Integration runtimes via azure-mgmt-datafactory."""

    def __init__(self, client: DataFactoryManagementClient) -> None:
        self._client = client

    def get(self, resource_group: str, factory: str, name: str) -> ResourceDescriptor | None:
        runtime = _lookup(
            f"integration runtime '{name}'",
            lambda: self._client.integration_runtimes.get(resource_group, factory, name),
        )
        if runtime is None:
            return None
        runtime_type = getattr(runtime.properties, "type", None) if runtime.properties else None
        return ResourceDescriptor(
            name=runtime.name,
            kind=ResourceKind.RUNTIME,
            attributes={"id": runtime.id, "factory": factory, "type": runtime_type},
        )

    def get_status(self, resource_group: str, factory: str, name: str) -> RuntimeStatus:
        """Fetch the current runtime state.

        Raises:
            LookupFailure: If the status cannot be read (including a missing runtime).
        """
        try:
            response = self._client.integration_runtimes.get_status(resource_group, factory, name)
        except AzureError as e:
            raise LookupFailure(
                f"Failed to read status of integration runtime '{name}': {e}", resource=name
            ) from e
        raw_state = response.properties.state if response.properties else None
        return RuntimeStatus.from_provider(raw_state)

    def get_factory_id(self, resource_group: str, factory: str) -> str | None:
        result = _lookup(
            f"data factory '{factory}'",
            lambda: self._client.factories.get(resource_group, factory),
        )
        return result.id if result is not None else None


# =============================================================================
# Construction
# =============================================================================


def get_credential(client_id: str | None = None) -> TokenCredential:
    """Return the credential used for all Azure calls.

    Args:
        client_id: Client ID of a user-assigned managed identity. When None,
            the DefaultAzureCredential chain is used (CLI login, environment,
            managed identity).
    """
    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using default Azure credential chain")
    return DefaultAzureCredential(exclude_interactive_browser_credential=True)


def create_azure_providers(credential: TokenCredential, subscription_id: str) -> AzureProviders:
    """Build SDK-backed providers for one subscription."""
    resource_client = ResourceManagementClient(
        credential=credential,
        subscription_id=subscription_id,
    )
    return AzureProviders(
        resource_groups=AzureResourceGroupProvider(resource_client),
        secrets=KeyVaultSecretStore(credential),
        deployments=ArmDeploymentEngine(resource_client),
        compute=AzureComputeProvider(
            ComputeManagementClient(credential=credential, subscription_id=subscription_id)
        ),
        network=AzureNetworkProvider(
            NetworkManagementClient(credential=credential, subscription_id=subscription_id)
        ),
        runtimes=DataFactoryRuntimeProvider(
            DataFactoryManagementClient(credential=credential, subscription_id=subscription_id)
        ),
    )
