"""Pydantic model for the per-environment deployment spec.

The spec provides:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Clean transformation to ARM parameters
"""

from __future__ import annotations

import re
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

# Key Vault names: 3-24 chars, alphanumerics and hyphens, starting with a letter
VALID_KEY_VAULT_NAME_PATTERN = r"^[a-zA-Z][a-zA-Z0-9-]{1,22}[a-zA-Z0-9]$"
# Key Vault secret and key names: 1-127 alphanumerics and hyphens
VALID_VAULT_OBJECT_NAME_PATTERN = r"^[a-zA-Z0-9-]{1,127}$"

# Parameters rendered from typed fields; free-form parameters may not shadow them
RESERVED_PARAMETER_NAMES = frozenset(
    {
        "location",
        "environment",
        "dataFactoryName",
        "integrationRuntimeName",
        "vmName",
        "adminUsername",
        "adminPassword",
        "keyVaultName",
        "customerManagedKeyName",
        "tags",
    }
)


class ShirDeploymentSpec(BaseModel):
    """Names and parameters of one SHIR environment."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    data_factory_name: Annotated[str, Field(min_length=3, max_length=63, alias="dataFactoryName")]
    integration_runtime_name: Annotated[
        str, Field(min_length=3, max_length=63, alias="integrationRuntimeName")
    ]
    vm_name: Annotated[str, Field(min_length=1, max_length=64, alias="vmName")]
    vm_admin_username: str = Field("shiradmin", alias="vmAdminUsername")

    key_vault_name: str = Field(alias="keyVaultName")
    # Defaults to the deployment resource group
    key_vault_resource_group: str | None = Field(None, alias="keyVaultResourceGroup")
    admin_password_secret_name: str = Field("vmAdminPassword", alias="adminPasswordSecretName")
    customer_managed_key_name: str = Field("adfCmk", alias="customerManagedKeyName")

    # Resolved from the VM's network interface when not set
    network_security_group_name: str | None = Field(None, alias="networkSecurityGroupName")

    template_name: str = Field("azuredeploy", alias="templateName")
    parameters: dict[str, Any] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("key_vault_name")
    @classmethod
    def validate_key_vault_name(cls, v: str) -> str:
        if not re.match(VALID_KEY_VAULT_NAME_PATTERN, v):
            raise ValueError("keyVaultName must be 3-24 alphanumerics or hyphens")
        return v

    @field_validator("admin_password_secret_name", "customer_managed_key_name")
    @classmethod
    def validate_vault_object_name(cls, v: str) -> str:
        if not re.match(VALID_VAULT_OBJECT_NAME_PATTERN, v):
            raise ValueError("Key Vault object names must be 1-127 alphanumerics or hyphens")
        return v

    @field_validator("template_name")
    @classmethod
    def validate_template_name(cls, v: str) -> str:
        # Template name becomes a file name under the templates directory
        if not re.match(r"^[A-Za-z0-9_.-]+$", v) or ".." in v:
            raise ValueError("templateName must be a plain file name without path separators")
        return v

    @field_validator("parameters")
    @classmethod
    def validate_parameters(cls, v: dict[str, Any]) -> dict[str, Any]:
        shadowed = sorted(RESERVED_PARAMETER_NAMES.intersection(v))
        if shadowed:
            raise ValueError(f"parameters may not override typed fields: {shadowed}")
        return v

    def key_vault_id(self, subscription_id: str, resource_group: str) -> str:
        """ARM resource ID of the Key Vault holding the admin password."""
        vault_rg = self.key_vault_resource_group or resource_group
        return (
            f"/subscriptions/{subscription_id}/resourceGroups/{vault_rg}"
            f"/providers/Microsoft.KeyVault/vaults/{self.key_vault_name}"
        )

    def to_arm_parameters(
        self,
        *,
        subscription_id: str,
        resource_group: str,
        location: str,
        environment: str,
    ) -> dict[str, Any]:
        """Convert to ARM template parameters.

        The admin password is passed as a Key Vault reference, so the value
        never appears in the deployment payload.
        """
        params: dict[str, Any] = {
            name: value if isinstance(value, dict) and "value" in value else {"value": value}
            for name, value in self.parameters.items()
        }

        params["location"] = {"value": location}
        params["environment"] = {"value": environment}
        params["dataFactoryName"] = {"value": self.data_factory_name}
        params["integrationRuntimeName"] = {"value": self.integration_runtime_name}
        params["vmName"] = {"value": self.vm_name}
        params["adminUsername"] = {"value": self.vm_admin_username}
        params["adminPassword"] = {
            "reference": {
                "keyVault": {"id": self.key_vault_id(subscription_id, resource_group)},
                "secretName": self.admin_password_secret_name,
            }
        }
        params["keyVaultName"] = {"value": self.key_vault_name}
        params["customerManagedKeyName"] = {"value": self.customer_managed_key_name}

        if self.tags:
            params["tags"] = {"value": self.tags}

        return params
