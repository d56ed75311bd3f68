"""
Orchestrator Module

Coordinates ARM deployments and post-deployment steps for the AVD environment.
"""

from typing import Dict, Any, List, Optional, Tuple
import json
import logging
import os
import tempfile
from pathlib import Path

from azure.core.exceptions import HttpResponseError
from azure.mgmt.resource.resources.models import Tags, TagsPatchResource

from .azure_cli import AzureCli
from .exceptions import ResourceNotFoundError
from .session_host_prep import dns_record_command, icacls_commands

logger = logging.getLogger(__name__)

VM_RESOURCE_TYPE = "Microsoft.Compute/virtualMachines"


class Orchestrator:
    """Orchestrate Azure deployments."""

    def __init__(self, config: Dict[str, Any], cli: Optional[AzureCli] = None, resources=None):
        """
        Initialize the Orchestrator.

        Args:
            config: Parsed configuration dictionary
            cli: Azure CLI wrapper
            resources: azure.mgmt.resource.ResourceManagementClient (needed for tagging)
        """
        self.config = config
        self.cli = cli or AzureCli()
        self.resources = resources
        self.resource_group = config.get('resource_group', 'rg-avd')
        self.location = config.get('location', 'eastus')
        self.name = config.get('name', 'avd')

    def resource_group_exists(self) -> bool:
        result = self.cli.run(['group', 'exists', '--name', self.resource_group])
        return result.stdout.strip().lower() == 'true'

    def ensure_resource_group(self, create: bool = False):
        """
        Make sure the resource group exists.

        Args:
            create: Create it when missing instead of failing

        Raises:
            ResourceNotFoundError: If it is missing and create is False
        """
        if self.resource_group_exists():
            logger.info("Resource group '%s' exists", self.resource_group)
            return

        if not create:
            raise ResourceNotFoundError(f"Resource group '{self.resource_group}' not found")

        logger.info("Creating resource group: %s", self.resource_group)
        self.cli.run([
            'group', 'create',
            '--name', self.resource_group,
            '--location', self.location
        ])

    def deploy(self, template: Dict[str, Any], parameters: Dict[str, Any],
               deployment_name: str) -> Dict[str, Any]:
        """
        Deploy an ARM template to the resource group.

        Args:
            template: Generated ARM template
            parameters: Parameter name to value
            deployment_name: ARM deployment name

        Returns:
            Deployment outputs as name to value
        """
        template_path = self._write_temp_json(template, f"{deployment_name}-")
        params_path = self._write_temp_json(
            self._build_parameters(parameters), f"{deployment_name}-params-"
        )

        logger.info("Starting deployment: %s", deployment_name)
        try:
            result = self.cli.run_json([
                'deployment', 'group', 'create',
                '--resource-group', self.resource_group,
                '--name', deployment_name,
                '--template-file', str(template_path),
                '--parameters', f"@{params_path}"
            ])
        finally:
            # Parameter file holds secrets
            template_path.unlink(missing_ok=True)
            params_path.unlink(missing_ok=True)

        outputs = self._extract_outputs(result)
        logger.info("Deployment %s succeeded", deployment_name)
        return outputs

    @staticmethod
    def _write_temp_json(document: Dict[str, Any], prefix: str) -> Path:
        # Owner-only permissions
        fd, path = tempfile.mkstemp(prefix=prefix, suffix=".json")
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2)
        return Path(path)

    def get_deployment_outputs(self, deployment_name: str) -> Dict[str, Any]:
        """Outputs of an earlier deployment."""
        result = self.cli.run_json([
            'deployment', 'group', 'show',
            '--resource-group', self.resource_group,
            '--name', deployment_name
        ])
        return self._extract_outputs(result)

    def _extract_outputs(self, result: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        outputs = ((result or {}).get('properties') or {}).get('outputs') or {}
        return {key: value.get('value') for key, value in outputs.items()}

    def _build_parameters(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build an ARM parameters document.

        Returns:
            Parameters dictionary
        """
        parameters = {"location": {"value": self.location}}
        for key, value in values.items():
            if value is not None:
                parameters[key] = {"value": value}

        return {
            "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#",
            "contentVersion": "1.0.0.0",
            "parameters": parameters
        }

    def list_session_hosts(self, prefix: str) -> List[Any]:
        """VMs in the resource group named <prefix>-<n>."""
        if self.resources is None:
            raise ValueError("A ResourceManagementClient is required to list VMs")
        vms = self.resources.resources.list_by_resource_group(
            self.resource_group,
            filter=f"resourceType eq '{VM_RESOURCE_TYPE}'"
        )
        name_prefix = f"{prefix}-".lower()
        return [vm for vm in vms if vm.name.lower().startswith(name_prefix)]

    def tag_session_hosts(self, prefix: str, tags: Dict[str, str]) -> Tuple[List[str], List[str]]:
        """
        Merge tags into every session host VM.

        A failure on one VM is logged and the remaining VMs are still tagged.

        Returns:
            (tagged VM names, failed VM names)
        """
        tagged, failed = [], []
        vms = self.list_session_hosts(prefix)
        if not vms:
            logger.warning("No VMs named '%s-<n>' in %s", prefix, self.resource_group)

        for vm in vms:
            try:
                self.resources.tags.update_at_scope(
                    vm.id,
                    TagsPatchResource(operation="Merge", properties=Tags(tags=tags))
                )
            except HttpResponseError as e:
                logger.error("Failed to tag %s: %s", vm.name, e.message)
                failed.append(vm.name)
                continue
            logger.info("Tagged %s", vm.name)
            tagged.append(vm.name)

        return tagged, failed

    def print_follow_up(self, storage_fqdn: str, share_name: str,
                        private_endpoint_ip: Optional[str] = None,
                        groups: Optional[Dict[str, str]] = None):
        """Print the manual steps left after deployment."""
        groups = groups or {}
        print("\n" + "="*60)
        print("MANUAL FOLLOW-UP")
        print("="*60)

        print(f"\nResource Group: {self.resource_group}")
        print(f"Location: {self.location}")
        print(f"Profile share: \\\\{storage_fqdn}\\{share_name}")

        print("\n1. Grant admin consent for the '[Storage Account] "
              f"{storage_fqdn}' application in the Entra admin center.")

        if private_endpoint_ip:
            name, zone = storage_fqdn.split('.', 1)
            dns_servers = self.config.get('network', {}).get('dns_servers', [])
            print("\n2. Point the storage FQDN at the private endpoint on your DNS server:")
            print(f"   {dns_record_command(zone, name, private_endpoint_ip, dns_servers[0] if dns_servers else None)}")

        print("\n3. Mount the share as an administrator and set NTFS permissions:")
        for command in icacls_commands(
            'Z',
            groups.get('users', 'AVD-Users'),
            groups.get('admins', 'AVD-Admins'),
        ):
            print(f"   {command}")

        print("\n" + "="*60)
