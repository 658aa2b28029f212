"""Pytest configuration and fixtures."""

import json
import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"
RESOURCE_GROUP = "rg-shir-dev"
KEY_VAULT = "kv-shir-dev"

SPEC_YAML = """\
dataFactoryName: adf-shir-dev
integrationRuntimeName: shir-dev
vmName: vm-shir-dev
keyVaultName: kv-shir-dev
parameters:
  vmSize: Standard_D2s_v3
tags:
  costCenter: data-platform
"""

TEMPLATE = {
    "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#",
    "contentVersion": "1.0.0.0",
    "parameters": {},
    "resources": [
        {
            "type": "Microsoft.DataFactory/factories",
            "apiVersion": "2018-06-01",
            "name": "[parameters('dataFactoryName')]",
        }
    ],
}


@pytest.fixture
def deploy_dirs(tmp_path: Path) -> tuple[Path, Path]:
    """Specs and templates directories holding a valid dev environment."""
    specs_dir = tmp_path / "specs"
    templates_dir = tmp_path / "templates"
    specs_dir.mkdir()
    templates_dir.mkdir()
    (specs_dir / "dev.yaml").write_text(SPEC_YAML)
    (templates_dir / "azuredeploy.json").write_text(json.dumps(TEMPLATE))
    return specs_dir, templates_dir
