"""
Azure Session Module

Holds the Azure Resource Manager, Microsoft Graph and Azure CLI handles one
command works with, built from a single azure-identity credential.
"""

import logging
from typing import Optional

from azure.identity import AzureCliCredential, DefaultAzureCredential, InteractiveBrowserCredential
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.resource import ResourceManagementClient

from .azure_cli import AzureCli
from .graph_client import GraphClient

logger = logging.getLogger(__name__)


class AzureSession:
    """Lazily constructed clients sharing one credential."""

    def __init__(self, subscription_id: str, tenant_id: Optional[str] = None,
                 interactive: bool = False, cli: Optional[AzureCli] = None):
        """
        Initialize the AzureSession.

        Args:
            subscription_id: Subscription the ARM clients operate on
            tenant_id: Entra tenant (defaults to the credential's home tenant)
            interactive: Sign in through the browser instead of reusing a session
            cli: Azure CLI wrapper
        """
        self.subscription_id = subscription_id
        self.tenant_id = tenant_id
        self.interactive = interactive
        self.cli = cli or AzureCli()
        self._credential = None
        self._resources = None
        self._authorization = None
        self._graph = None

    @property
    def credential(self):
        if self._credential is None:
            if self.interactive:
                logger.info("Opening browser sign-in...")
                self._credential = InteractiveBrowserCredential(tenant_id=self.tenant_id)
            elif self.cli.current_account() is not None:
                self._credential = AzureCliCredential(tenant_id=self.tenant_id)
            else:
                self._credential = DefaultAzureCredential()
        return self._credential

    @property
    def resources(self) -> ResourceManagementClient:
        if self._resources is None:
            self._resources = ResourceManagementClient(self.credential, self.subscription_id)
        return self._resources

    @property
    def authorization(self) -> AuthorizationManagementClient:
        if self._authorization is None:
            self._authorization = AuthorizationManagementClient(self.credential, self.subscription_id)
        return self._authorization

    @property
    def graph(self) -> GraphClient:
        if self._graph is None:
            self._graph = GraphClient(self.credential)
        return self._graph
