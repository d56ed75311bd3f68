import json

import pytest

from avdeploy.exceptions import ConfigurationError
from avdeploy.template_builder import InfraTemplateBuilder, SessionHostTemplateBuilder


def resources_of(template, resource_type):
    return [r for r in template["resources"] if r["type"] == resource_type]


def test_infra_storage_uses_entra_kerberos(base_config):
    template = InfraTemplateBuilder(base_config).build()

    account = resources_of(template, "Microsoft.Storage/storageAccounts")[0]
    assert template["variables"]["storageAccountName"] == "stavdtest"
    assert account["kind"] == "FileStorage"
    assert account["properties"]["azureFilesIdentityBasedAuthentication"] == {
        "directoryServiceOptions": "AADKERB"
    }
    assert account["properties"]["publicNetworkAccess"] == "Disabled"

    share = resources_of(template, "Microsoft.Storage/storageAccounts/fileServices/shares")[0]
    assert share["properties"]["shareQuota"] == 200


def test_infra_storage_kerberos_domain(base_config):
    base_config["storage"]["kerberos"] = {
        "domain_name": "contoso.com",
        "domain_guid": "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee",
    }
    template = InfraTemplateBuilder(base_config).build()
    account = resources_of(template, "Microsoft.Storage/storageAccounts")[0]
    auth = account["properties"]["azureFilesIdentityBasedAuthentication"]
    assert auth["activeDirectoryProperties"]["domainGuid"] == "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


def test_infra_storage_fqdn_input(base_config):
    base_config["storage"]["account_name"] = "stavdtest.file.core.windows.net"
    template = InfraTemplateBuilder(base_config).build()
    assert template["variables"]["storageAccountName"] == "stavdtest"


def test_private_endpoint_targets_existing_subnet(base_config):
    base_config["network"]["vnet_resource_group"] = "rg-network"
    template = InfraTemplateBuilder(base_config).build()

    endpoint = resources_of(template, "Microsoft.Network/privateEndpoints")[0]
    assert endpoint["properties"]["subnet"]["id"] == (
        "[resourceId('rg-network', 'Microsoft.Network/virtualNetworks/subnets', 'vnet-avd', 'snet-pe')]"
    )
    connection = endpoint["properties"]["privateLinkServiceConnections"][0]
    assert connection["properties"]["groupIds"] == ["file"]
    assert "privateEndpointIp" in template["outputs"]


def test_private_endpoint_can_be_disabled(base_config):
    base_config["storage"]["private_endpoint"] = False
    template = InfraTemplateBuilder(base_config).build()
    assert resources_of(template, "Microsoft.Network/privateEndpoints") == []
    account = resources_of(template, "Microsoft.Storage/storageAccounts")[0]
    assert account["properties"]["publicNetworkAccess"] == "Enabled"


def test_host_pool_application_group_and_workspace(base_config):
    template = InfraTemplateBuilder(base_config).build()

    pool = resources_of(template, "Microsoft.DesktopVirtualization/hostPools")[0]
    assert pool["properties"]["hostPoolType"] == "Pooled"
    assert pool["properties"]["maxSessionLimit"] == 8
    assert "targetisaadjoined:i:1" in pool["properties"]["customRdpProperty"]

    app_group = resources_of(template, "Microsoft.DesktopVirtualization/applicationGroups")[0]
    assert template["variables"]["applicationGroupName"] == "hp-test-DAG"
    assert app_group["properties"]["applicationGroupType"] == "Desktop"

    workspace = resources_of(template, "Microsoft.DesktopVirtualization/workspaces")[0]
    assert len(workspace["properties"]["applicationGroupReferences"]) == 1
    assert "registrationToken" in template["outputs"]


def test_registration_expiry_hours(base_config):
    base_config["host_pool"]["registration_hours"] = 24
    template = InfraTemplateBuilder(base_config).build()
    assert "PT24H" in template["parameters"]["registrationExpiration"]["defaultValue"]


def test_infra_requires_storage_account(base_config):
    del base_config["storage"]["account_name"]
    with pytest.raises(ConfigurationError):
        InfraTemplateBuilder(base_config).build()


def test_session_host_names(base_config):
    base_config["session_hosts"]["start_index"] = 3
    assert SessionHostTemplateBuilder(base_config).session_host_names() == ["avdt-3", "avdt-4"]


def test_session_hosts_have_all_extensions(base_config):
    template = SessionHostTemplateBuilder(base_config).build()

    vms = resources_of(template, "Microsoft.Compute/virtualMachines")
    assert [vm["name"] for vm in vms] == ["avdt-0", "avdt-1"]
    assert vms[0]["properties"]["securityProfile"]["securityType"] == "TrustedLaunch"
    assert vms[0]["identity"] == {"type": "SystemAssigned"}

    extensions = resources_of(template, "Microsoft.Compute/virtualMachines/extensions")
    names = [e["name"] for e in extensions if e["name"].startswith("avdt-0/")]
    assert names == [
        "avdt-0/GuestAttestation",
        "avdt-0/AADLoginForWindows",
        "avdt-0/SessionHostPrep",
        "avdt-0/Microsoft.PowerShell.DSC",
    ]


def test_registration_token_is_protected(base_config):
    template = SessionHostTemplateBuilder(base_config).build()
    dsc = [e for e in template["resources"] if e["name"] == "avdt-0/Microsoft.PowerShell.DSC"][0]
    assert dsc["properties"]["protectedSettings"]["Items"]["RegistrationInfoToken"] == \
        "[parameters('registrationToken')]"
    assert dsc["properties"]["settings"]["properties"]["aadJoin"] is True
    assert template["parameters"]["registrationToken"]["type"] == "securestring"


def test_prep_command_points_fslogix_at_share(base_config):
    template = SessionHostTemplateBuilder(base_config).build()
    command = template["variables"]["prepCommand"]
    assert r"\\stavdtest.file.core.windows.net\profiles" in command
    assert "CloudKerberosTicketRetrievalEnabled" in command


def test_intune_enrollment(base_config):
    base_config["session_hosts"]["intune"] = True
    template = SessionHostTemplateBuilder(base_config).build()
    entra = [e for e in template["resources"] if e["name"] == "avdt-0/AADLoginForWindows"][0]
    assert entra["properties"]["settings"]["mdmId"] == "0000000a-0000-0000-c000-000000000000"


def test_nic_dns_servers(base_config):
    template = SessionHostTemplateBuilder(base_config).build()
    nic = resources_of(template, "Microsoft.Network/networkInterfaces")[0]
    assert nic["properties"]["dnsSettings"]["dnsServers"] == ["10.0.0.4"]


def test_save_template(base_config, tmp_path):
    builder = InfraTemplateBuilder(base_config)
    builder.build()
    output = tmp_path / "infra.json"
    builder.save_template(str(output))
    assert json.loads(output.read_text())["contentVersion"] == "1.0.0.0"
