import json
import os
from types import SimpleNamespace
from unittest import mock

import pytest
from azure.core.exceptions import HttpResponseError

from avdeploy.exceptions import ResourceNotFoundError
from avdeploy.orchestrator import Orchestrator


def completed(stdout=""):
    return SimpleNamespace(returncode=0, stdout=stdout, stderr="")


def test_missing_resource_group_is_not_found(base_config):
    cli = mock.Mock()
    cli.run.return_value = completed("false\n")
    with pytest.raises(ResourceNotFoundError):
        Orchestrator(base_config, cli=cli).ensure_resource_group()


def test_missing_resource_group_is_created_on_request(base_config):
    cli = mock.Mock()
    cli.run.side_effect = [completed("false\n"), completed()]
    Orchestrator(base_config, cli=cli).ensure_resource_group(create=True)
    assert cli.run.call_args.args[0] == [
        'group', 'create', '--name', 'rg-avd-test', '--location', 'westeurope'
    ]


def test_deploy_returns_outputs_and_removes_temp_files(base_config):
    cli = mock.Mock()
    captured = {}

    def run_json(args):
        params_path = args[args.index('--parameters') + 1].lstrip('@')
        with open(params_path, encoding='utf-8') as f:
            captured['parameters'] = json.load(f)
        captured['paths'] = (args[args.index('--template-file') + 1], params_path)
        return {"properties": {"outputs": {"registrationToken": {"type": "String", "value": "tok"}}}}

    cli.run_json.side_effect = run_json
    outputs = Orchestrator(base_config, cli=cli).deploy(
        {"resources": []}, {"adminPassword": "secret", "unused": None}, "avd-test-hosts"
    )

    assert outputs == {"registrationToken": "tok"}
    parameters = captured['parameters']["parameters"]
    assert parameters["location"] == {"value": "westeurope"}
    assert parameters["adminPassword"] == {"value": "secret"}
    assert "unused" not in parameters
    for path in captured['paths']:
        assert not os.path.exists(path)


def vm(name):
    return SimpleNamespace(
        name=name,
        id=f"/subscriptions/s/resourceGroups/rg-avd-test/providers/Microsoft.Compute/virtualMachines/{name}",
    )


def test_tagging_continues_after_a_failure(base_config):
    resources = mock.Mock()
    resources.resources.list_by_resource_group.return_value = [
        vm("avdt-0"), vm("jumpbox"), vm("AVDT-1"), vm("avdtprd-0"), vm("avdt-2"),
    ]

    def update(scope, parameters):
        if scope.endswith("AVDT-1"):
            raise HttpResponseError(message="Conflict")

    resources.tags.update_at_scope.side_effect = update
    orchestrator = Orchestrator(base_config, cli=mock.Mock(), resources=resources)

    tagged, failed = orchestrator.tag_session_hosts("avdt", {"environment": "test"})

    assert tagged == ["avdt-0", "avdt-2"]
    assert failed == ["AVDT-1"]
    patch = resources.tags.update_at_scope.call_args.args[1]
    assert patch.operation == "Merge"
    assert patch.properties.tags == {"environment": "test"}


def test_follow_up_lists_dns_and_permissions(base_config, capsys):
    Orchestrator(base_config, cli=mock.Mock()).print_follow_up(
        "stavdtest.file.core.windows.net", "profiles", "10.1.0.5", {"users": "U", "admins": "A"}
    )
    out = capsys.readouterr().out
    assert '-ZoneName "file.core.windows.net" -Name "stavdtest"' in out
    assert '-ComputerName "10.0.0.4"' in out
    assert '/grant "U":(M)' in out


def test_session_hosts_of_another_pool_are_not_listed(base_config):
    resources = mock.Mock()
    resources.resources.list_by_resource_group.return_value = [
        vm("avd-0"), vm("avdprd-0"), vm("avd-1"),
    ]
    orchestrator = Orchestrator(base_config, cli=mock.Mock(), resources=resources)

    assert [v.name for v in orchestrator.list_session_hosts("avd")] == ["avd-0", "avd-1"]


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_parameter_file_is_private(base_config):
    cli = mock.Mock()
    modes = {}

    def run_json(args):
        params_path = args[args.index('--parameters') + 1].lstrip('@')
        modes['params'] = os.stat(params_path).st_mode & 0o777
        modes['name'] = os.path.basename(params_path)
        return {"properties": {"outputs": {}}}

    cli.run_json.side_effect = run_json
    Orchestrator(base_config, cli=cli).deploy({"resources": []}, {"adminPassword": "secret"}, "avd-test-hosts")

    assert modes['params'] == 0o600
    assert modes['name'] != "avd-test-hosts-params.json"
