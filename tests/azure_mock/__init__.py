"""Azure API Mock for Integration Testing.

In-memory stand-ins for the Azure SDK clients the deployer drives, so the
real provider adapters and orchestrator run end to end without Azure.

Key Features:
- Shared in-memory state for resource groups, Key Vault objects and the
  resources a SHIR template deployment creates
- Template validation and deployment simulation with error injection
- Scripted integration runtime state sequences
- Per-operation call counters and simulated 403s

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext(vaults=["kv-shir-dev"]) as ctx:
        result = Orchestrator(config, spec, template, ctx.providers, sleep=sleeps.append).run()

        assert ctx.state.deployment_count == 1
        assert ctx.state.call_count("resource_groups.create_or_update") == 1
"""

from .clients import (
    MockComputeClient,
    MockDataFactoryClient,
    MockKeyClient,
    MockLROPoller,
    MockNetworkClient,
    MockResourceClient,
    MockSecretClient,
)
from .context import MockAzureContext
from .credential import MockCredential, create_mock_credential
from .resources import (
    DEFAULT_SUBSCRIPTION_ID,
    MockDeployment,
    MockResourceState,
    MockValidationError,
)

__all__ = [
    "DEFAULT_SUBSCRIPTION_ID",
    "MockAzureContext",
    "MockComputeClient",
    "MockCredential",
    "MockDataFactoryClient",
    "MockDeployment",
    "MockKeyClient",
    "MockLROPoller",
    "MockNetworkClient",
    "MockResourceClient",
    "MockResourceState",
    "MockSecretClient",
    "MockValidationError",
    "create_mock_credential",
]
