"""Configuration management with validation.

All deployment inputs are collected into one immutable Config that is passed
to the orchestrator. Invalid values fail at load time, before any Azure call.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .waiter import RetryPolicy


class Environment(str, Enum):
    """Environment tag applied to deployed resources."""

    DEV = "dev"
    TEST = "test"
    ACC = "acc"
    PROD = "prod"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RUNTIME_WAIT_ATTEMPTS = 10
DEFAULT_RUNTIME_WAIT_INTERVAL_SECONDS = 60
MAX_RUNTIME_WAIT_ATTEMPTS = 100

DEFAULT_AGENT_INSTALL_DELAY_SECONDS = 300
DEFAULT_REBOOT_DELAY_SECONDS = 120
MAX_FIXED_DELAY_SECONDS = 3600

# Security constraints - enforced limits to prevent abuse
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file
MAX_TEMPLATE_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB max ARM template
MAX_DEPLOYMENT_NAME_LENGTH = 64
MAX_RESOURCE_GROUP_NAME_LENGTH = 90

# Input validation patterns
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_LOCATION_PATTERN = r"^[a-z]{2,}[a-z0-9]*$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w._()]*[-\w_()]$"


@dataclass(frozen=True)
class Config:
    """Deployment configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-deployment.
    """

    # Required fields
    subscription_id: str
    resource_group_name: str
    location: str
    environment: Environment

    # Paths
    specs_dir: Path = field(default_factory=lambda: Path("specs"))
    templates_dir: Path = field(default_factory=lambda: Path("templates"))

    # Step switches
    skip_secret_preparation: bool = False
    skip_template_validation: bool = False

    # Timing
    runtime_wait_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(
            max_attempts=DEFAULT_RUNTIME_WAIT_ATTEMPTS,
            interval_seconds=DEFAULT_RUNTIME_WAIT_INTERVAL_SECONDS,
        )
    )
    agent_install_delay_seconds: int = DEFAULT_AGENT_INSTALL_DELAY_SECONDS
    reboot_delay_seconds: int = DEFAULT_REBOOT_DELAY_SECONDS

    # Identity used for Azure calls; None selects the default credential chain
    managed_identity_client_id: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        All inputs are validated at the boundary (fail-fast) and every problem
        is reported at once.
        """
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not self.resource_group_name:
            errors.append("RESOURCE_GROUP_NAME is required")
        elif len(self.resource_group_name) > MAX_RESOURCE_GROUP_NAME_LENGTH:
            errors.append(
                f"RESOURCE_GROUP_NAME exceeds maximum length of {MAX_RESOURCE_GROUP_NAME_LENGTH}"
            )
        elif not re.match(VALID_RESOURCE_GROUP_PATTERN, self.resource_group_name):
            errors.append(
                f"RESOURCE_GROUP_NAME contains invalid characters: {self.resource_group_name}"
            )

        if not self.location:
            errors.append("AZURE_LOCATION is required")
        elif not re.match(VALID_LOCATION_PATTERN, self.location.lower()):
            errors.append(f"AZURE_LOCATION must be a valid Azure region: {self.location}")

        if not isinstance(self.environment, Environment):
            valid = [e.value for e in Environment]
            errors.append(f"ENVIRONMENT must be one of {valid}: {self.environment}")

        # Timing validation
        if self.runtime_wait_policy.max_attempts > MAX_RUNTIME_WAIT_ATTEMPTS:
            errors.append(f"RUNTIME_WAIT_ATTEMPTS cannot exceed {MAX_RUNTIME_WAIT_ATTEMPTS}")

        if not 0 <= self.agent_install_delay_seconds <= MAX_FIXED_DELAY_SECONDS:
            errors.append(f"AGENT_INSTALL_DELAY must be between 0 and {MAX_FIXED_DELAY_SECONDS}")

        if not 0 <= self.reboot_delay_seconds <= MAX_FIXED_DELAY_SECONDS:
            errors.append(f"REBOOT_DELAY must be between 0 and {MAX_FIXED_DELAY_SECONDS}")

        # Path validation
        if not self.specs_dir.exists():
            errors.append(f"Specs directory does not exist: {self.specs_dir}")

        if not self.templates_dir.exists():
            errors.append(f"Templates directory does not exist: {self.templates_dir}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls, **overrides: object) -> Config:
        """Load configuration from environment variables.

        Keyword overrides take precedence over the environment (used by the CLI).

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Target Azure subscription
            RESOURCE_GROUP_NAME: Resource group holding the SHIR environment
            AZURE_LOCATION: Region for the resource group
            ENVIRONMENT: One of dev, test, acc, prod
            SPECS_DIR: Path to per-environment YAML specs (default: ./specs)
            TEMPLATES_DIR: Path to ARM templates (default: ./templates)
            SKIP_SECRET_PREPARATION: If "true", skip password secret and key (default: false)
            SKIP_TEMPLATE_VALIDATION: If "true", skip template validation (default: false)
            RUNTIME_WAIT_ATTEMPTS: Runtime status polls before giving up (default: 10)
            RUNTIME_WAIT_INTERVAL: Seconds between runtime status polls (default: 60)
            AGENT_INSTALL_DELAY: Seconds to wait for the SHIR agent install (default: 300)
            REBOOT_DELAY: Seconds to wait after the VM restart (default: 120)
            AZURE_CLIENT_ID: Client ID of a user-assigned managed identity (optional)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_environment(value: str | None) -> Environment:
            try:
                return Environment((value or "").lower())
            except ValueError as e:
                valid = [env.value for env in Environment]
                raise ConfigurationError(f"ENVIRONMENT must be one of {valid}: {value}") from e

        def get_policy() -> RetryPolicy:
            try:
                return RetryPolicy(
                    max_attempts=get_int("RUNTIME_WAIT_ATTEMPTS", DEFAULT_RUNTIME_WAIT_ATTEMPTS),
                    interval_seconds=get_int(
                        "RUNTIME_WAIT_INTERVAL", DEFAULT_RUNTIME_WAIT_INTERVAL_SECONDS
                    ),
                )
            except ValueError as e:
                raise ConfigurationError(f"Invalid runtime wait policy: {e}") from e

        overrides = {key: value for key, value in overrides.items() if value is not None}

        values: dict[str, object] = {
            "subscription_id": os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            "resource_group_name": os.environ.get("RESOURCE_GROUP_NAME", ""),
            "location": os.environ.get("AZURE_LOCATION", ""),
            "specs_dir": Path(os.environ.get("SPECS_DIR", "specs")),
            "templates_dir": Path(os.environ.get("TEMPLATES_DIR", "templates")),
            "managed_identity_client_id": os.environ.get("AZURE_CLIENT_ID") or None,
        }

        parsers: dict[str, Callable[[], object]] = {
            "environment": lambda: get_environment(os.environ.get("ENVIRONMENT")),
            "runtime_wait_policy": get_policy,
            "skip_secret_preparation": lambda: get_bool("SKIP_SECRET_PREPARATION", False),
            "skip_template_validation": lambda: get_bool("SKIP_TEMPLATE_VALIDATION", False),
            "agent_install_delay_seconds": lambda: get_int(
                "AGENT_INSTALL_DELAY", DEFAULT_AGENT_INSTALL_DELAY_SECONDS
            ),
            "reboot_delay_seconds": lambda: get_int("REBOOT_DELAY", DEFAULT_REBOOT_DELAY_SECONDS),
        }

        # Only parse sources that are not overridden, so a bad env value cannot
        # mask an explicit CLI choice
        for key, parse in parsers.items():
            if key not in overrides:
                values[key] = parse()

        values.update(overrides)

        environment = values.get("environment")
        if isinstance(environment, str) and not isinstance(environment, Environment):
            values["environment"] = get_environment(environment)

        return cls(**values)  # type: ignore[arg-type]
