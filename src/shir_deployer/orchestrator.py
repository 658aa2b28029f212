"""Deployment orchestrator for the SHIR environment.

Sequences the provisioning steps as a strictly forward state machine:

    Init -> ResourceGroupEnsured -> SecretsEnsured -> TemplateValidated
         -> TemplateDeployed -> PostDeployFixupApplied -> Done

with an absorbing Failed state reachable from every step. Execution is
single-threaded and synchronous; fixed delays and readiness polling block the
control thread. Nothing is rolled back on failure: re-running is idempotent.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from azure.core.exceptions import AzureError, HttpResponseError

from .config import MAX_DEPLOYMENT_NAME_LENGTH, Config
from .ensure import ensure
from .errors import (
    DeploymentError,
    DeploymentFailure,
    LookupFailure,
    ReadinessTimeout,
    ValidationFailure,
)
from .models import ShirDeploymentSpec
from .passwords import generate_password
from .providers import AzureProviders, parse_resource_id
from .resources import (
    SHIR_OUTBOUND_RULES,
    ResourceDescriptor,
    ResourceKind,
    RuntimeStatus,
    SecurityRuleSpec,
)
from .waiter import wait_until

logger = logging.getLogger(__name__)

# Deployment name prefix for tracking
DEPLOYMENT_NAME_PREFIX = "shir"
MANAGED_BY_TAG = "adf-shir-deployer"


class DeploymentState(str, Enum):
    """Orchestrator states."""

    INIT = "Init"
    RESOURCE_GROUP_ENSURED = "ResourceGroupEnsured"
    SECRETS_ENSURED = "SecretsEnsured"
    TEMPLATE_VALIDATED = "TemplateValidated"
    TEMPLATE_DEPLOYED = "TemplateDeployed"
    POST_DEPLOY_FIXUP_APPLIED = "PostDeployFixupApplied"
    DONE = "Done"
    FAILED = "Failed"


FORWARD_ORDER: tuple[DeploymentState, ...] = (
    DeploymentState.INIT,
    DeploymentState.RESOURCE_GROUP_ENSURED,
    DeploymentState.SECRETS_ENSURED,
    DeploymentState.TEMPLATE_VALIDATED,
    DeploymentState.TEMPLATE_DEPLOYED,
    DeploymentState.POST_DEPLOY_FIXUP_APPLIED,
    DeploymentState.DONE,
)


@dataclass
class DeploymentResult:
    """Result of one orchestrator run."""

    resource_group: str
    environment: str
    deployment_name: str
    state: DeploymentState = DeploymentState.INIT
    history: list[DeploymentState] = field(default_factory=lambda: [DeploymentState.INIT])
    skipped: list[DeploymentState] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None
    validation_errors: list[str] = field(default_factory=list)
    factory_id: str | None = None
    runtime_status: RuntimeStatus | None = None
    runtime_wait_attempts: int = 0
    security_rules: list[str] = field(default_factory=list)

    def advance(self, target: DeploymentState, *, skipped: bool = False) -> None:
        """Move to the next state in forward order.

        Raises:
            RuntimeError: If ``target`` is not the immediate successor.
        """
        if self.state in (DeploymentState.DONE, DeploymentState.FAILED):
            raise RuntimeError(f"Cannot leave terminal state {self.state.value}")
        expected = FORWARD_ORDER[FORWARD_ORDER.index(self.state) + 1]
        if target != expected:
            raise RuntimeError(
                f"Illegal transition {self.state.value} -> {target.value}, "
                f"expected {expected.value}"
            )
        self.state = target
        self.history.append(target)
        if skipped:
            self.skipped.append(target)

    def fail(self, error: Exception) -> None:
        """Enter the absorbing Failed state."""
        self.error = error
        if self.state != DeploymentState.FAILED:
            self.state = DeploymentState.FAILED
            self.history.append(DeploymentState.FAILED)

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.state == DeploymentState.DONE

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 when Done, 1 for any failure."""
        return 0 if self.success else 1


def generate_deployment_name(environment: str) -> str:
    """Build a unique ARM deployment name within the 64 character limit."""
    # Format: {prefix}-{environment}-{timestamp}-{suffix}
    # Lengths: prefix + 1 + environment + 1 + 10 + 1 + 4 = prefix + environment + 17
    timestamp = int(time.time())
    random_suffix = random.randint(1000, 9999)
    max_env_len = MAX_DEPLOYMENT_NAME_LENGTH - len(DEPLOYMENT_NAME_PREFIX) - 17
    return f"{DEPLOYMENT_NAME_PREFIX}-{environment[:max_env_len]}-{timestamp}-{random_suffix}"


class Orchestrator:
    """Drives one deployment of the SHIR environment.

    The orchestrator:
    1. Ensures the resource group exists
    2. Ensures the VM admin password secret and customer-managed key exist
    3. Validates the ARM template
    4. Deploys the template incrementally
    5. Restarts the VM, waits for the runtime to come online and ensures the
       outbound network rules

    All provider calls go through ``providers``; no state is kept between runs.
    """

    def __init__(
        self,
        config: Config,
        spec: ShirDeploymentSpec,
        template: dict[str, Any],
        providers: AzureProviders,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Validated deployment configuration.
            spec: Validated deployment spec for ``config.environment``.
            template: ARM template to validate and deploy.
            providers: Azure capability providers.
            sleep: Blocking delay function (injectable for tests).
        """
        self._config = config
        self._spec = spec
        self._template = template
        self._providers = providers
        self._sleep = sleep

    def run(self) -> DeploymentResult:
        """Run every step in order, stopping at the first fatal error.

        Returns:
            DeploymentResult; ``exit_code`` is 0 only if Done was reached.
        """
        config = self._config
        result = DeploymentResult(
            resource_group=config.resource_group_name,
            environment=config.environment.value,
            deployment_name=generate_deployment_name(config.environment.value),
        )

        logger.info(
            "Starting SHIR deployment",
            extra={
                "resource_group": config.resource_group_name,
                "location": config.location,
                "environment": config.environment.value,
                "deployment_name": result.deployment_name,
            },
        )

        try:
            self._ensure_resource_group()
            result.advance(DeploymentState.RESOURCE_GROUP_ENSURED)

            if config.skip_secret_preparation:
                logger.info("Skipping secret and key preparation")
                result.advance(DeploymentState.SECRETS_ENSURED, skipped=True)
            else:
                self._ensure_secrets()
                result.advance(DeploymentState.SECRETS_ENSURED)

            parameters = self._spec.to_arm_parameters(
                subscription_id=config.subscription_id,
                resource_group=config.resource_group_name,
                location=config.location,
                environment=config.environment.value,
            )

            if config.skip_template_validation:
                logger.info("Skipping template validation")
                result.advance(DeploymentState.TEMPLATE_VALIDATED, skipped=True)
            else:
                self._validate_template(result.deployment_name, parameters)
                result.advance(DeploymentState.TEMPLATE_VALIDATED)

            outputs = self._deploy_template(result.deployment_name, parameters)
            result.advance(DeploymentState.TEMPLATE_DEPLOYED)

            readiness_error = self._apply_post_deploy_fixup(result)
            result.advance(DeploymentState.POST_DEPLOY_FIXUP_APPLIED)

            if readiness_error is not None:
                raise readiness_error

            # A lookup failure here fails the run with the fixup already applied
            result.factory_id = outputs.get("dataFactoryId") or (
                self._providers.runtimes.get_factory_id(
                    config.resource_group_name, self._spec.data_factory_name
                )
            )

            result.advance(DeploymentState.DONE)

        except ValidationFailure as e:
            logger.error(
                "Template validation failed",
                extra={"deployment_name": result.deployment_name, "errors": e.errors},
            )
            result.validation_errors = e.errors
            result.fail(e)
        except DeploymentFailure as e:
            logger.error(
                "Deployment failed",
                extra={
                    "deployment_name": result.deployment_name,
                    "error": str(e),
                    "detail": e.detail,
                },
            )
            result.fail(e)
        except ReadinessTimeout as e:
            # Earlier steps stay in place; operators re-run once the runtime is healthy
            logger.warning(
                "Integration runtime did not come online, no rollback performed",
                extra={
                    "runtime": e.runtime_name,
                    "attempts": e.attempts,
                    "last_state": e.last_state,
                },
            )
            result.fail(e)
        except LookupFailure as e:
            logger.error(
                "Provider lookup failed",
                extra={"resource": e.resource, "error": str(e)},
            )
            result.fail(e)
        except DeploymentError as e:
            logger.error("Deployment error", extra={"error": str(e)})
            result.fail(e)
        except HttpResponseError as e:
            logger.error(
                "Azure API error",
                extra={"error": str(e), "status_code": e.status_code},
            )
            result.fail(e)
        except AzureError as e:
            logger.error("Azure error", extra={"error": str(e)})
            result.fail(e)
        except Exception as e:
            logger.exception("Unexpected error during deployment")
            result.fail(e)

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _ensure_resource_group(self) -> ResourceDescriptor:
        config = self._config
        groups = self._providers.resource_groups
        tags = {
            **self._spec.tags,
            "environment": config.environment.value,
            "managedBy": MANAGED_BY_TAG,
        }
        return ensure(
            lookup=lambda: groups.get(config.resource_group_name),
            create=lambda: groups.create(config.resource_group_name, config.location, tags),
            kind=ResourceKind.RESOURCE_GROUP,
            name=config.resource_group_name,
        )

    def _ensure_secrets(self) -> None:
        store = self._providers.secrets
        vault = self._spec.key_vault_name
        secret_name = self._spec.admin_password_secret_name
        key_name = self._spec.customer_managed_key_name

        ensure(
            lookup=lambda: store.get_secret(vault, secret_name),
            create=lambda: store.set_secret(vault, secret_name, generate_password()),
            kind=ResourceKind.SECRET,
            name=secret_name,
        )
        ensure(
            lookup=lambda: store.get_key(vault, key_name),
            create=lambda: store.create_key(vault, key_name),
            kind=ResourceKind.KEY,
            name=key_name,
        )

    def _validate_template(self, deployment_name: str, parameters: dict[str, Any]) -> None:
        errors = self._providers.deployments.validate(
            self._config.resource_group_name,
            deployment_name,
            self._template,
            parameters,
        )
        if errors:
            raise ValidationFailure(errors)
        logger.info("Template validation passed", extra={"deployment_name": deployment_name})

    def _deploy_template(self, deployment_name: str, parameters: dict[str, Any]) -> dict[str, Any]:
        logger.info(
            "Deploying template (incremental)",
            extra={"deployment_name": deployment_name},
        )
        state = self._providers.deployments.deploy(
            self._config.resource_group_name,
            deployment_name,
            self._template,
            parameters,
        )
        if not state.succeeded:
            raise DeploymentFailure(
                f"Deployment '{deployment_name}' ended in state {state.status.value}",
                detail=state.error_detail,
            )
        logger.info("Template deployed", extra={"deployment_name": deployment_name})
        return dict(state.outputs)

    def _apply_post_deploy_fixup(self, result: DeploymentResult) -> ReadinessTimeout | None:
        """Restart the VM, wait for the runtime, ensure outbound rules.

        The network rules are ensured whatever the outcome of the runtime wait.

        Returns:
            ReadinessTimeout if the runtime never came online, else None.
        """
        config = self._config
        vm_name = self._spec.vm_name

        logger.info(
            "Waiting for integration runtime agent installation",
            extra={"delay_seconds": config.agent_install_delay_seconds},
        )
        self._sleep(config.agent_install_delay_seconds)

        logger.info("Restarting virtual machine", extra={"vm_name": vm_name})
        self._providers.compute.restart(config.resource_group_name, vm_name)

        logger.info(
            "Waiting for virtual machine reboot",
            extra={"delay_seconds": config.reboot_delay_seconds},
        )
        self._sleep(config.reboot_delay_seconds)

        readiness_error = self._wait_for_runtime(result)
        result.security_rules = [descriptor.name for descriptor in self._ensure_security_rules()]
        return readiness_error

    def _wait_for_runtime(self, result: DeploymentResult) -> ReadinessTimeout | None:
        runtimes = self._providers.runtimes
        rg = self._config.resource_group_name
        factory = self._spec.data_factory_name
        runtime_name = self._spec.integration_runtime_name

        if runtimes.get(rg, factory, runtime_name) is None:
            raise DeploymentFailure(
                f"Integration runtime '{runtime_name}' not found in factory '{factory}'"
            )

        wait = wait_until(
            lambda: runtimes.get_status(rg, factory, runtime_name),
            lambda status: status.online,
            self._config.runtime_wait_policy,
            sleep=self._sleep,
            description=f"Integration runtime '{runtime_name}'",
        )
        result.runtime_status = wait.final_status
        result.runtime_wait_attempts = wait.attempts

        if wait.ready:
            return None

        logger.warning(
            "Integration runtime not online, continuing with network configuration",
            extra={
                "runtime": runtime_name,
                "attempts": wait.attempts,
                "state": wait.final_status.state.value,
            },
        )
        return ReadinessTimeout(
            runtime_name,
            attempts=wait.attempts,
            last_state=wait.final_status.raw_state or wait.final_status.state.value,
        )

    def _resolve_network_security_group(self) -> tuple[str, str]:
        """Find (resource group, name) of the NSG guarding the SHIR VM."""
        rg = self._config.resource_group_name
        if self._spec.network_security_group_name:
            return rg, self._spec.network_security_group_name

        vm = self._providers.compute.get_vm(rg, self._spec.vm_name)
        if vm is None:
            raise DeploymentFailure(f"Virtual machine '{self._spec.vm_name}' not found")

        nic_id = vm.attributes.get("primary_network_interface_id")
        if not nic_id:
            raise DeploymentFailure(f"Virtual machine '{vm.name}' has no network interface")

        nic = self._providers.network.get_nic(nic_id)
        if nic is None:
            raise DeploymentFailure(f"Network interface not found: {nic_id}")

        nsg_id = nic.attributes.get("network_security_group_id")
        if not nsg_id:
            raise DeploymentFailure(
                f"Network interface '{nic.name}' has no security group attached"
            )

        return parse_resource_id(nsg_id)

    def _ensure_security_rules(self) -> list[ResourceDescriptor]:
        nsg_rg, nsg_name = self._resolve_network_security_group()
        ensured: list[ResourceDescriptor] = []

        for rule in SHIR_OUTBOUND_RULES:
            ensured.append(
                ensure(
                    lookup=lambda rule=rule: self._find_security_rule(nsg_rg, nsg_name, rule.name),
                    create=lambda rule=rule: self._add_security_rule(nsg_rg, nsg_name, rule),
                    kind=ResourceKind.SECURITY_RULE,
                    name=rule.name,
                )
            )

        logger.info(
            "Outbound security rules ensured",
            extra={"nsg": nsg_name, "rules": [d.name for d in ensured]},
        )
        return ensured

    def _get_nsg(self, resource_group: str, name: str) -> Any:
        nsg = self._providers.network.get_nsg(resource_group, name)
        if nsg is None:
            raise DeploymentFailure(f"Network security group '{name}' not found")
        return nsg

    @staticmethod
    def _rule_descriptor(nsg: Any, rule_name: str) -> ResourceDescriptor | None:
        for rule in nsg.security_rules or []:
            if rule.name == rule_name:
                return ResourceDescriptor(
                    name=rule.name,
                    kind=ResourceKind.SECURITY_RULE,
                    attributes={
                        "id": rule.id,
                        "nsg": nsg.name,
                        "priority": rule.priority,
                        "direction": rule.direction,
                        "destination": rule.destination_address_prefix,
                        "port": rule.destination_port_range,
                    },
                )
        return None

    def _find_security_rule(
        self, resource_group: str, nsg_name: str, rule_name: str
    ) -> ResourceDescriptor | None:
        return self._rule_descriptor(self._get_nsg(resource_group, nsg_name), rule_name)

    def _add_security_rule(
        self, resource_group: str, nsg_name: str, rule: SecurityRuleSpec
    ) -> ResourceDescriptor:
        network = self._providers.network
        nsg = self._get_nsg(resource_group, nsg_name)
        saved = network.save(resource_group, network.add_rule(nsg, rule))
        descriptor = self._rule_descriptor(saved, rule.name)
        if descriptor is None:
            raise DeploymentFailure(
                f"Security rule '{rule.name}' missing from '{nsg_name}' after update"
            )
        return descriptor

    def _log_result(self, result: DeploymentResult) -> None:
        """Log the deployment result with structured data."""
        extra: dict[str, Any] = {
            "resource_group": result.resource_group,
            "environment": result.environment,
            "deployment_name": result.deployment_name,
            "state": result.state.value,
            "history": [s.value for s in result.history],
            "skipped": [s.value for s in result.skipped],
            "duration_seconds": result.duration_seconds,
            "exit_code": result.exit_code,
        }

        if result.factory_id is not None:
            extra["factory_id"] = result.factory_id
        if result.runtime_status is not None:
            extra["runtime_state"] = result.runtime_status.state.value
        if result.security_rules:
            extra["security_rules"] = result.security_rules

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Deployment failed", extra=extra)
        else:
            logger.info("Deployment complete", extra=extra)
