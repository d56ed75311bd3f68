"""
Template Builder Module

Builds the ARM templates for the AVD core infrastructure (storage, private
endpoint, host pool, application group, workspace) and for the session hosts.
"""

from typing import Dict, Any, List
import json

from .config_loader import ConfigLoader
from .exceptions import ConfigurationError
from .session_host_prep import build_prep_command

STORAGE_API = "2023-01-01"
NETWORK_API = "2023-04-01"
COMPUTE_API = "2023-03-01"
AVD_API = "2023-09-05"

AVD_DSC_MODULES_URL = (
    "https://wvdportalstorageblob.blob.core.windows.net/galleryartifacts/"
    "Configuration_1.0.02790.438.zip"
)
INTUNE_MDM_ID = "0000000a-0000-0000-c000-000000000000"

DEFAULT_IMAGE = {
    "publisher": "MicrosoftWindowsDesktop",
    "offer": "windows-11",
    "sku": "win11-23h2-avd",
    "version": "latest",
}

# Entra-joined hosts need these for single sign-on from Entra-joined clients
ENTRA_JOIN_RDP_PROPERTIES = "targetisaadjoined:i:1;enablerdsaadauth:i:1;"


class TemplateBuilder:
    """Common ARM template scaffolding."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the TemplateBuilder.

        Args:
            config: Parsed configuration dictionary
        """
        self.config = config
        self.loader = ConfigLoader.from_dict(config)
        self.template: Dict[str, Any] = {
            "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#",
            "contentVersion": "1.0.0.0",
            "parameters": {
                "location": {
                    "type": "string",
                    "defaultValue": "[resourceGroup().location]",
                    "metadata": {
                        "description": "Location for all resources"
                    }
                }
            },
            "variables": {},
            "resources": [],
            "outputs": {}
        }

    def build(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _subnet_id_expression(self, subnet_name: str) -> str:
        """resourceId() expression for a subnet of the existing virtual network."""
        network = self.loader.get_network_config()
        vnet_name = network.get('vnet_name')
        if not vnet_name or not subnet_name:
            raise ConfigurationError("network.vnet_name and a subnet name are required")
        vnet_rg = network.get('vnet_resource_group') or self.config.get('resource_group')
        return (
            f"[resourceId('{vnet_rg}', 'Microsoft.Network/virtualNetworks/subnets', "
            f"'{vnet_name}', '{subnet_name}')]"
        )

    def _tags(self) -> Dict[str, str]:
        return dict(self.loader.get_tags())

    def save_template(self, output_path: str):
        """
        Save the template to a file.

        Args:
            output_path: Path to save the template
        """
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(self.template, f, indent=2)


class InfraTemplateBuilder(TemplateBuilder):
    """Storage account with FSLogix share, private endpoint and AVD control plane."""

    def build(self) -> Dict[str, Any]:
        """
        Build the complete ARM template.

        Returns:
            Complete ARM template dictionary
        """
        account = self.loader.get_storage_account()
        if account is None:
            raise ConfigurationError("storage.account_name is required")

        self._add_parameters()
        self._add_variables(account.name)
        self._add_storage_resources()

        if self.loader.get('storage.private_endpoint', True):
            self._add_private_endpoint()

        self._add_host_pool_resources()
        self._add_outputs()

        return self.template

    def _add_parameters(self):
        """Add parameters to the template."""
        hours = self.loader.get('host_pool.registration_hours', 8)
        self.template["parameters"]["registrationExpiration"] = {
            "type": "string",
            "defaultValue": f"[dateTimeAdd(utcNow(), 'PT{hours}H')]",
            "metadata": {
                "description": "Expiry of the host pool registration token"
            }
        }

    def _add_variables(self, account_name: str):
        """Add variables to the template."""
        host_pool = self.loader.get_host_pool_config()
        self.template["variables"] = {
            "storageAccountName": account_name,
            "shareName": self.loader.get('storage.share_name', 'profiles'),
            "privateEndpointName": f"pe-{account_name}-file",
            "hostPoolName": host_pool.get('name', 'hp-avd'),
            "applicationGroupName": self.loader.get_application_group_name(),
            "workspaceName": self.loader.get_workspace_name(),
        }

    def _add_storage_resources(self):
        """Storage account with Entra Kerberos identity and the profile share."""
        storage = self.loader.get_storage_config()
        sku = storage.get('sku', 'Premium_LRS')
        private = storage.get('private_endpoint', True)

        identity_auth: Dict[str, Any] = {"directoryServiceOptions": "AADKERB"}
        kerberos = storage.get('kerberos', {})
        if kerberos.get('domain_name') and kerberos.get('domain_guid'):
            identity_auth["activeDirectoryProperties"] = {
                "domainName": kerberos['domain_name'],
                "domainGuid": kerberos['domain_guid'],
            }

        account = {
            "type": "Microsoft.Storage/storageAccounts",
            "apiVersion": STORAGE_API,
            "name": "[variables('storageAccountName')]",
            "location": "[parameters('location')]",
            "tags": self._tags(),
            "sku": {"name": sku},
            "kind": "FileStorage" if sku.startswith('Premium') else "StorageV2",
            "properties": {
                "minimumTlsVersion": "TLS1_2",
                "supportsHttpsTrafficOnly": True,
                "allowBlobPublicAccess": False,
                "allowSharedKeyAccess": True,
                "publicNetworkAccess": "Disabled" if private else "Enabled",
                "azureFilesIdentityBasedAuthentication": identity_auth,
            }
        }
        if sku.startswith('Standard') and storage.get('quota_gb', 0) > 5120:
            account["properties"]["largeFileSharesState"] = "Enabled"

        share = {
            "type": "Microsoft.Storage/storageAccounts/fileServices/shares",
            "apiVersion": STORAGE_API,
            "name": "[format('{0}/default/{1}', variables('storageAccountName'), variables('shareName'))]",
            "dependsOn": [
                "[resourceId('Microsoft.Storage/storageAccounts', variables('storageAccountName'))]"
            ],
            "properties": {
                "shareQuota": storage.get('quota_gb', 100),
                "enabledProtocols": "SMB",
            }
        }

        self.template["resources"].extend([account, share])

    def _add_private_endpoint(self):
        """Private endpoint for the file service in the existing subnet."""
        network = self.loader.get_network_config()
        subnet = network.get('private_endpoint_subnet') or network.get('subnet_name')

        endpoint = {
            "type": "Microsoft.Network/privateEndpoints",
            "apiVersion": NETWORK_API,
            "name": "[variables('privateEndpointName')]",
            "location": "[parameters('location')]",
            "tags": self._tags(),
            "dependsOn": [
                "[resourceId('Microsoft.Storage/storageAccounts', variables('storageAccountName'))]"
            ],
            "properties": {
                "subnet": {
                    "id": self._subnet_id_expression(subnet)
                },
                "privateLinkServiceConnections": [
                    {
                        "name": "[variables('privateEndpointName')]",
                        "properties": {
                            "privateLinkServiceId": "[resourceId('Microsoft.Storage/storageAccounts', variables('storageAccountName'))]",
                            "groupIds": ["file"]
                        }
                    }
                ]
            }
        }
        self.template["resources"].append(endpoint)
        self.template["outputs"]["privateEndpointIp"] = {
            "type": "string",
            "value": "[reference(resourceId('Microsoft.Network/privateEndpoints', variables('privateEndpointName')), '"
                     + NETWORK_API + "').customDnsConfigs[0].ipAddresses[0]]"
        }

    def _add_host_pool_resources(self):
        """Host pool, desktop application group and workspace."""
        host_pool = self.loader.get_host_pool_config()
        pool_type = host_pool.get('type', 'Pooled')
        default_balancer = 'Persistent' if pool_type == 'Personal' else 'BreadthFirst'

        pool_properties: Dict[str, Any] = {
            "friendlyName": host_pool.get('friendly_name', host_pool.get('name', 'hp-avd')),
            "hostPoolType": pool_type,
            "loadBalancerType": host_pool.get('load_balancer', default_balancer),
            "preferredAppGroupType": "Desktop",
            "customRdpProperty": ENTRA_JOIN_RDP_PROPERTIES,
            "startVMOnConnect": host_pool.get('start_vm_on_connect', False),
            "validationEnvironment": False,
            "registrationInfo": {
                "expirationTime": "[parameters('registrationExpiration')]",
                "registrationTokenOperation": "Update"
            }
        }
        if pool_type == 'Pooled':
            pool_properties["maxSessionLimit"] = host_pool.get('max_sessions', 10)
        else:
            pool_properties["personalDesktopAssignmentType"] = "Automatic"

        pool = {
            "type": "Microsoft.DesktopVirtualization/hostPools",
            "apiVersion": AVD_API,
            "name": "[variables('hostPoolName')]",
            "location": "[parameters('location')]",
            "tags": self._tags(),
            "properties": pool_properties
        }

        app_group = {
            "type": "Microsoft.DesktopVirtualization/applicationGroups",
            "apiVersion": AVD_API,
            "name": "[variables('applicationGroupName')]",
            "location": "[parameters('location')]",
            "tags": self._tags(),
            "kind": "Desktop",
            "dependsOn": [
                "[resourceId('Microsoft.DesktopVirtualization/hostPools', variables('hostPoolName'))]"
            ],
            "properties": {
                "hostPoolArmPath": "[resourceId('Microsoft.DesktopVirtualization/hostPools', variables('hostPoolName'))]",
                "applicationGroupType": "Desktop"
            }
        }

        workspace = {
            "type": "Microsoft.DesktopVirtualization/workspaces",
            "apiVersion": AVD_API,
            "name": "[variables('workspaceName')]",
            "location": "[parameters('location')]",
            "tags": self._tags(),
            "dependsOn": [
                "[resourceId('Microsoft.DesktopVirtualization/applicationGroups', variables('applicationGroupName'))]"
            ],
            "properties": {
                "applicationGroupReferences": [
                    "[resourceId('Microsoft.DesktopVirtualization/applicationGroups', variables('applicationGroupName'))]"
                ]
            }
        }

        self.template["resources"].extend([pool, app_group, workspace])

    def _add_outputs(self):
        """Add outputs to the template."""
        self.template["outputs"].update({
            "storageAccountId": {
                "type": "string",
                "value": "[resourceId('Microsoft.Storage/storageAccounts', variables('storageAccountName'))]"
            },
            "hostPoolId": {
                "type": "string",
                "value": "[resourceId('Microsoft.DesktopVirtualization/hostPools', variables('hostPoolName'))]"
            },
            "applicationGroupId": {
                "type": "string",
                "value": "[resourceId('Microsoft.DesktopVirtualization/applicationGroups', variables('applicationGroupName'))]"
            },
            "registrationToken": {
                "type": "string",
                "value": "[first(listRegistrationTokens(resourceId('Microsoft.DesktopVirtualization/hostPools', variables('hostPoolName')), '"
                         + AVD_API + "').value).token]"
            }
        })


class SessionHostTemplateBuilder(TemplateBuilder):
    """Entra-joined session host VMs registered to the host pool."""

    def build(self) -> Dict[str, Any]:
        """
        Build the complete ARM template.

        Returns:
            Complete ARM template dictionary
        """
        self._add_parameters()
        self._add_variables()

        for name in self.session_host_names():
            self.template["resources"].append(self._create_nic_resource(name))
            self.template["resources"].append(self._create_vm_resource(name))
            self.template["resources"].extend(self._create_extensions(name))

        self._add_outputs()
        return self.template

    def session_host_names(self) -> List[str]:
        """VM names '<prefix>-<n>' for every configured session host."""
        hosts = self.loader.get_session_hosts_config()
        prefix = hosts.get('prefix', 'avd')
        start = hosts.get('start_index', 0)
        return [f"{prefix}-{start + i}" for i in range(hosts.get('count', 1))]

    def _add_parameters(self):
        """Add parameters to the template."""
        self.template["parameters"].update({
            "adminUsername": {
                "type": "string",
                "metadata": {
                    "description": "Local admin username for the session hosts"
                }
            },
            "adminPassword": {
                "type": "securestring",
                "minLength": 12,
                "metadata": {
                    "description": "Local admin password for the session hosts"
                }
            },
            "registrationToken": {
                "type": "securestring",
                "metadata": {
                    "description": "Host pool registration token"
                }
            }
        })

    def _add_variables(self):
        """Add variables to the template."""
        network = self.loader.get_network_config()
        account = self.loader.get_storage_account()
        if account is None:
            raise ConfigurationError("storage.account_name is required for the FSLogix share")

        share = account.unc_path(self.loader.get('storage.share_name', 'profiles'))
        self.template["variables"] = {
            "hostPoolName": self.loader.get('host_pool.name', 'hp-avd'),
            "subnetId": self._subnet_id_expression(network.get('subnet_name')),
            "prepCommand": build_prep_command(share, self.loader.get('storage.profile_size_mb')),
        }

    def _create_nic_resource(self, name: str) -> Dict[str, Any]:
        """Create network interface resource."""
        nic = {
            "type": "Microsoft.Network/networkInterfaces",
            "apiVersion": NETWORK_API,
            "name": f"nic-{name}",
            "location": "[parameters('location')]",
            "tags": self._tags(),
            "properties": {
                "ipConfigurations": [
                    {
                        "name": "ipconfig1",
                        "properties": {
                            "privateIPAllocationMethod": "Dynamic",
                            "subnet": {
                                "id": "[variables('subnetId')]"
                            }
                        }
                    }
                ]
            }
        }

        dns_servers = self.loader.get('network.dns_servers', [])
        if dns_servers:
            nic["properties"]["dnsSettings"] = {"dnsServers": list(dns_servers)}

        return nic

    def _create_vm_resource(self, name: str) -> Dict[str, Any]:
        """Create Trusted Launch virtual machine resource."""
        hosts = self.loader.get_session_hosts_config()
        image = dict(DEFAULT_IMAGE)
        image.update(hosts.get('image', {}))

        return {
            "type": "Microsoft.Compute/virtualMachines",
            "apiVersion": COMPUTE_API,
            "name": name,
            "location": "[parameters('location')]",
            "tags": self._tags(),
            "identity": {"type": "SystemAssigned"},
            "dependsOn": [
                f"[resourceId('Microsoft.Network/networkInterfaces', 'nic-{name}')]"
            ],
            "properties": {
                "licenseType": "Windows_Client",
                "hardwareProfile": {
                    "vmSize": hosts.get('size', 'Standard_D4s_v5')
                },
                "osProfile": {
                    "computerName": name,
                    "adminUsername": "[parameters('adminUsername')]",
                    "adminPassword": "[parameters('adminPassword')]",
                    "windowsConfiguration": {
                        "enableAutomaticUpdates": True
                    }
                },
                "storageProfile": {
                    "imageReference": image,
                    "osDisk": {
                        "name": f"osdisk-{name}",
                        "createOption": "FromImage",
                        "deleteOption": "Delete",
                        "managedDisk": {
                            "storageAccountType": "Premium_LRS"
                        }
                    }
                },
                "securityProfile": {
                    "securityType": "TrustedLaunch",
                    "uefiSettings": {
                        "secureBootEnabled": True,
                        "vTpmEnabled": True
                    }
                },
                "networkProfile": {
                    "networkInterfaces": [
                        {
                            "id": f"[resourceId('Microsoft.Network/networkInterfaces', 'nic-{name}')]",
                            "properties": {"deleteOption": "Delete"}
                        }
                    ]
                },
                "diagnosticsProfile": {
                    "bootDiagnostics": {
                        "enabled": True
                    }
                }
            }
        }

    def _extension(self, vm_name: str, extension_name: str, depends_on: str,
                   properties: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "Microsoft.Compute/virtualMachines/extensions",
            "apiVersion": COMPUTE_API,
            "name": f"{vm_name}/{extension_name}",
            "location": "[parameters('location')]",
            "dependsOn": [depends_on],
            "properties": properties
        }

    def _create_extensions(self, name: str) -> List[Dict[str, Any]]:
        """
        Extensions run in order: guest attestation and Entra join, then the
        FSLogix/Kerberos prep script, then host pool registration.
        """
        intune = self.loader.get('session_hosts.intune', False)
        vm_id = f"[resourceId('Microsoft.Compute/virtualMachines', '{name}')]"

        def extension_id(extension_name: str) -> str:
            return f"[resourceId('Microsoft.Compute/virtualMachines/extensions', '{name}', '{extension_name}')]"

        attestation = self._extension(name, "GuestAttestation", vm_id, {
            "publisher": "Microsoft.Azure.Security.WindowsAttestation",
            "type": "GuestAttestation",
            "typeHandlerVersion": "1.0",
            "autoUpgradeMinorVersion": True,
            "enableAutomaticUpgrade": True,
            "settings": {
                "AttestationConfig": {
                    "MaaSettings": {"maaEndpoint": "", "maaTenantName": "GuestAttestation"},
                    "AscSettings": {"ascReportingEndpoint": "", "ascReportingFrequency": ""},
                    "useCustomToken": "false",
                    "disableAlerts": "false"
                }
            }
        })

        entra_settings: Dict[str, Any] = {}
        if intune:
            entra_settings["mdmId"] = INTUNE_MDM_ID
        entra_join = self._extension(name, "AADLoginForWindows", extension_id("GuestAttestation"), {
            "publisher": "Microsoft.Azure.ActiveDirectory",
            "type": "AADLoginForWindows",
            "typeHandlerVersion": "2.0",
            "autoUpgradeMinorVersion": True,
            "settings": entra_settings
        })

        prep = self._extension(name, "SessionHostPrep", extension_id("AADLoginForWindows"), {
            "publisher": "Microsoft.Compute",
            "type": "CustomScriptExtension",
            "typeHandlerVersion": "1.10",
            "autoUpgradeMinorVersion": True,
            "settings": {},
            "protectedSettings": {
                "commandToExecute": "[variables('prepCommand')]"
            }
        })

        dsc_properties: Dict[str, Any] = {
            "hostPoolName": "[variables('hostPoolName')]",
            "registrationInfoTokenCredential": {
                "UserName": "PLACEHOLDER_DO_NOT_USE",
                "Password": "PrivateSettingsRef:RegistrationInfoToken"
            },
            "aadJoin": True,
            "UseAgentDownloadEndpoint": True,
        }
        if intune:
            dsc_properties["mdmId"] = INTUNE_MDM_ID

        registration = self._extension(name, "Microsoft.PowerShell.DSC", extension_id("SessionHostPrep"), {
            "publisher": "Microsoft.Powershell",
            "type": "DSC",
            "typeHandlerVersion": "2.73",
            "autoUpgradeMinorVersion": True,
            "settings": {
                "modulesUrl": AVD_DSC_MODULES_URL,
                "configurationFunction": "Configuration.ps1\\AddSessionHost",
                "properties": dsc_properties
            },
            "protectedSettings": {
                "Items": {
                    "RegistrationInfoToken": "[parameters('registrationToken')]"
                }
            }
        })

        return [attestation, entra_join, prep, registration]

    def _add_outputs(self):
        """Add outputs to the template."""
        self.template["outputs"] = {
            "sessionHostNames": {
                "type": "array",
                "value": self.session_host_names()
            }
        }
