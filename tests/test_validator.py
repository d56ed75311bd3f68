from pathlib import Path

import yaml

from avdeploy.validator import ConfigValidator

EXAMPLE = Path(__file__).parent.parent / "config" / "examples" / "avd-enterprise.yaml"


def test_example_configuration_is_valid():
    config = yaml.safe_load(EXAMPLE.read_text(encoding="utf-8"))
    is_valid, errors, warnings = ConfigValidator().validate(config)
    assert is_valid, errors


def test_base_config_is_valid(base_config):
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert is_valid, errors


def test_missing_required_field(base_config):
    del base_config["resource_group"]
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid
    assert "resource_group" in errors[0]


def test_unknown_section_is_rejected(base_config):
    base_config["active_directory"] = {"enabled": True}
    is_valid, _, _ = ConfigValidator().validate(base_config)
    assert not is_valid


def test_subscription_must_be_guid(base_config):
    base_config["subscription_id"] = "my-subscription"
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid
    assert any("subscription_id" in e for e in errors)


def test_missing_subscription_is_only_a_warning(base_config):
    del base_config["subscription_id"]
    is_valid, _, warnings = ConfigValidator().validate(base_config)
    assert is_valid
    assert any("subscription_id" in w for w in warnings)


def test_storage_fqdn_is_accepted(base_config):
    base_config["storage"]["account_name"] = "stavdtest.file.core.windows.net"
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert is_valid, errors


def test_malformed_storage_account(base_config):
    base_config["storage"]["account_name"] = "stavd.blob.core.windows.net"
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid
    assert any("Unrecognized storage account" in e for e in errors)


def test_storage_account_naming_rule(base_config):
    base_config["storage"]["account_name"] = "st_avd"
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid
    assert any("3-24" in e for e in errors)


def test_kerberos_needs_name_and_guid(base_config):
    base_config["storage"]["kerberos"] = {"domain_name": "contoso.com"}
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid


def test_private_endpoint_needs_vnet(base_config):
    del base_config["network"]["vnet_name"]
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid
    assert any("vnet_name" in e for e in errors)


def test_dns_servers_must_be_ipv4(base_config):
    base_config["network"]["dns_servers"] = ["dc01.contoso.com"]
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid


def test_session_host_name_length(base_config):
    base_config["session_hosts"] = {"prefix": "avd-production", "count": 10}
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid
    assert any("15 character" in e for e in errors)


def test_personal_pool_requires_persistent_balancer(base_config):
    base_config["host_pool"].update({"type": "Personal", "load_balancer": "BreadthFirst"})
    is_valid, _, _ = ConfigValidator().validate(base_config)
    assert not is_valid


def test_role_assignment_references(base_config):
    base_config["role_assignments"] = [
        {"group": "auditors", "role": "Reader", "scope": "resource_group"},
        {"group": "users", "role": "Reader", "scope": "management_group"},
    ]
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert not is_valid
    assert any("unknown group 'auditors'" in e for e in errors)
    assert any("unknown scope 'management_group'" in e for e in errors)


def test_custom_group_can_be_referenced(base_config):
    base_config["groups"] = {"auditors": "AVD-Auditors"}
    base_config["role_assignments"] = [
        {"group": "auditors", "role": "Reader", "scope": "resource_group"},
    ]
    is_valid, errors, _ = ConfigValidator().validate(base_config)
    assert is_valid, errors
