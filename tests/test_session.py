from unittest import mock

from avdeploy.session import AzureSession


@mock.patch("avdeploy.session.AzureCliCredential")
def test_reuses_cli_login(cli_credential):
    cli = mock.Mock()
    cli.current_account.return_value = {"id": "sub"}
    session = AzureSession("sub", tenant_id="t1", cli=cli)

    assert session.credential is session.credential
    cli_credential.assert_called_once_with(tenant_id="t1")


@mock.patch("avdeploy.session.DefaultAzureCredential")
def test_falls_back_to_default_credential(default_credential):
    cli = mock.Mock()
    cli.current_account.return_value = None
    assert AzureSession("sub", cli=cli).credential is default_credential.return_value


@mock.patch("avdeploy.session.AuthorizationManagementClient")
@mock.patch("avdeploy.session.ResourceManagementClient")
@mock.patch("avdeploy.session.InteractiveBrowserCredential")
def test_clients_share_the_credential(browser, resources, authorization):
    session = AzureSession("sub", interactive=True, cli=mock.Mock())

    session.resources
    session.authorization

    resources.assert_called_once_with(browser.return_value, "sub")
    authorization.assert_called_once_with(browser.return_value, "sub")
    assert session.graph.credential is browser.return_value
