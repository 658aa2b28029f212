"""SHIR deployer CLI (shir).

Usage:
    shir deploy -g rg-shir-dev -l westeurope -e dev        # Full deployment
    shir deploy -e prod --skip-secret-preparation           # Reuse existing secrets
    shir status -g rg-shir-dev -e dev --attempts 5          # Poll runtime state

Every option falls back to the environment variable documented in
``Config.from_env``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from .config import Config, ConfigurationError, Environment
from .errors import LookupFailure
from .main import execute_deployment, setup_logging
from .providers import create_azure_providers, get_credential
from .spec_loader import SpecLoadError, load_spec
from .waiter import RetryPolicy, wait_until

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _load_config(**overrides: object) -> Config:
    try:
        return Config.from_env(**overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def common_options(func):  # type: ignore[no-untyped-def]
    """Options shared by every command that targets a deployment."""
    decorators = [
        click.option(
            "--subscription-id",
            envvar="AZURE_SUBSCRIPTION_ID",
            help="Target Azure subscription ID.",
        ),
        click.option(
            "--resource-group",
            "-g",
            envvar="RESOURCE_GROUP_NAME",
            help="Resource group holding the SHIR environment.",
        ),
        click.option("--location", "-l", envvar="AZURE_LOCATION", help="Azure region."),
        click.option(
            "--environment",
            "-e",
            envvar="ENVIRONMENT",
            type=click.Choice([env.value for env in Environment], case_sensitive=False),
            help="Environment tag; selects specs/<environment>.yaml.",
        ),
        click.option(
            "--specs-dir",
            envvar="SPECS_DIR",
            type=click.Path(file_okay=False, path_type=Path),
            help="Directory with per-environment YAML specs.",
        ),
        click.option(
            "--templates-dir",
            envvar="TEMPLATES_DIR",
            type=click.Path(file_okay=False, path_type=Path),
            help="Directory with ARM templates.",
        ),
        click.option(
            "--log-level",
            type=click.Choice(LOG_LEVELS, case_sensitive=False),
            default="INFO",
            show_default=True,
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


@click.group()
@click.version_option(version="0.1.0", prog_name="shir")
def cli() -> None:
    """SHIR deployer (shir).

    Provisions an Azure Data Factory self-hosted integration runtime
    environment: resource group, Key Vault secret and key, ARM deployment,
    VM restart, runtime readiness and outbound network rules.
    """
    pass


@cli.command()
@common_options
@click.option(
    "--skip-secret-preparation",
    is_flag=True,
    envvar="SKIP_SECRET_PREPARATION",
    help="Do not ensure the VM password secret and customer-managed key.",
)
@click.option(
    "--skip-template-validation",
    is_flag=True,
    envvar="SKIP_TEMPLATE_VALIDATION",
    help="Deploy without validating the template first.",
)
def deploy(
    subscription_id: str | None,
    resource_group: str | None,
    location: str | None,
    environment: str | None,
    specs_dir: Path | None,
    templates_dir: Path | None,
    log_level: str,
    skip_secret_preparation: bool,
    skip_template_validation: bool,
) -> None:
    """Run the full deployment. Exits 0 on success, 1 on any failure."""
    setup_logging(log_level)
    config = _load_config(
        subscription_id=subscription_id,
        resource_group_name=resource_group,
        location=location,
        environment=environment,
        specs_dir=specs_dir,
        templates_dir=templates_dir,
        skip_secret_preparation=skip_secret_preparation,
        skip_template_validation=skip_template_validation,
    )

    result = execute_deployment(config)
    if result is None or not result.success:
        click.secho("Deployment failed", fg="red", err=True)
        raise SystemExit(1)

    runtime_status = result.runtime_status
    click.echo(f"Data Factory: {result.factory_id}")
    if runtime_status is not None:
        click.echo(
            f"Integration runtime: {runtime_status.raw_state or runtime_status.state.value}"
        )
    click.secho("Deployment complete", fg="green", err=True)
    raise SystemExit(0)


@cli.command()
@common_options
@click.option(
    "--attempts",
    type=click.IntRange(1, 100),
    default=1,
    show_default=True,
    help="Status polls before giving up.",
)
@click.option(
    "--interval",
    type=click.IntRange(1, 3600),
    default=60,
    show_default=True,
    help="Seconds between polls.",
)
def status(
    subscription_id: str | None,
    resource_group: str | None,
    location: str | None,
    environment: str | None,
    specs_dir: Path | None,
    templates_dir: Path | None,
    log_level: str,
    attempts: int,
    interval: int,
) -> None:
    """Report the integration runtime state. Exits 0 when Online, else 1."""
    setup_logging(log_level)
    config = _load_config(
        subscription_id=subscription_id,
        resource_group_name=resource_group,
        location=location,
        environment=environment,
        specs_dir=specs_dir,
        templates_dir=templates_dir,
        runtime_wait_policy=RetryPolicy(max_attempts=attempts, interval_seconds=interval),
    )

    try:
        spec = load_spec(config.specs_dir, config.environment.value)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    providers = create_azure_providers(
        get_credential(config.managed_identity_client_id), config.subscription_id
    )

    try:
        wait = wait_until(
            lambda: providers.runtimes.get_status(
                config.resource_group_name,
                spec.data_factory_name,
                spec.integration_runtime_name,
            ),
            lambda runtime_status: runtime_status.online,
            config.runtime_wait_policy,
            description=f"Integration runtime '{spec.integration_runtime_name}'",
        )
    except LookupFailure as e:
        logging.getLogger(__name__).error("Status query failed", extra={"error": str(e)})
        raise click.ClickException(str(e)) from e

    final = wait.final_status
    click.echo(f"{spec.integration_runtime_name}: {final.raw_state or final.state.value}")
    raise SystemExit(0 if wait.ready else 1)


if __name__ == "__main__":
    cli()
