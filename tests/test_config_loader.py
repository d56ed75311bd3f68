import pytest

from avdeploy.config_loader import ConfigLoader
from avdeploy.exceptions import ConfigurationError


def test_dot_notation(base_config):
    loader = ConfigLoader.from_dict(base_config)
    assert loader.get("storage.share_name") == "profiles"
    assert loader.get("storage.missing", "x") == "x"
    assert loader.get("name.nested") is None


def test_set_creates_sections():
    loader = ConfigLoader.from_dict({})
    loader.set("storage.account_name", "stavd")
    assert loader.config == {"storage": {"account_name": "stavd"}}


def test_groups_merge_defaults():
    loader = ConfigLoader.from_dict({"groups": {"users": "Desk-Users", "admins": {"search": "^Ops"}}})
    groups = loader.get_groups_config()
    assert groups["users"]["name"] == "Desk-Users"
    assert groups["admins"] == {
        "name": "AVD-Admins",
        "description": "Azure Virtual Desktop administrators",
        "search": "^Ops",
    }
    assert groups["devices"]["name"] == "AVD-Devices"


def test_derived_names(base_config):
    loader = ConfigLoader.from_dict(base_config)
    assert loader.get_application_group_name() == "hp-test-DAG"
    assert loader.get_workspace_name() == "hp-test-ws"
    assert loader.get_storage_account().fqdn == "stavdtest.file.core.windows.net"


def test_non_mapping_root(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        ConfigLoader(str(path)).load()


def test_malformed_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("name: [unclosed\n")
    with pytest.raises(ConfigurationError):
        ConfigLoader(str(path)).load()
