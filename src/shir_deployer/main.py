"""Process entry point wiring for the SHIR deployer.

Loads the spec and template for the configured environment, builds the Azure
providers and runs the orchestrator. Exit codes: 0 when the deployment reached
Done, 1 for any failure (configuration, spec, validation, deployment or
runtime readiness).
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Callable
from datetime import UTC, datetime

from .config import Config, ConfigurationError
from .orchestrator import DeploymentResult, Orchestrator
from .providers import AzureProviders, create_azure_providers, get_credential
from .spec_loader import SpecLoadError, load_spec, load_template

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def execute_deployment(
    config: Config,
    *,
    providers: AzureProviders | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DeploymentResult | None:
    """Load the deployment inputs and run the orchestrator once.

    Args:
        config: Validated configuration.
        providers: Azure providers; built from the configured credential when None.
        sleep: Blocking delay function passed to the orchestrator.

    Returns:
        The orchestrator result, or None if the spec or template failed to load.
    """
    logger = logging.getLogger(__name__)

    try:
        spec = load_spec(config.specs_dir, config.environment.value)
        template = load_template(config.templates_dir, spec.template_name)
    except SpecLoadError as e:
        logger.error(
            "Failed to load deployment inputs",
            extra={"error": str(e), "environment": config.environment.value},
        )
        return None

    if providers is None:
        credential = get_credential(config.managed_identity_client_id)
        providers = create_azure_providers(credential, config.subscription_id)

    return Orchestrator(config, spec, template, providers, sleep=sleep).run()


def run_deployment(
    config: Config,
    *,
    providers: AzureProviders | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Run one deployment and return the process exit code."""
    result = execute_deployment(config, providers=providers, sleep=sleep)
    return 1 if result is None else result.exit_code


def main() -> int:
    """Run a deployment configured purely from environment variables."""
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    return run_deployment(config)


def run() -> None:
    """Entry point for environment-driven runs (containers, pipelines)."""
    sys.exit(main())


if __name__ == "__main__":
    run()
