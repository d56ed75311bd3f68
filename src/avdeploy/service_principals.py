"""
Storage Service Principal Module

Looks up the Enterprise Application Azure registers for a storage account when
Entra ID Kerberos authentication is enabled on Azure Files.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any

from .exceptions import ResourceNotFoundError
from .storage_name import StorageAccountName

logger = logging.getLogger(__name__)

DISPLAY_NAME_PREFIX = "[Storage Account]"


@dataclass(frozen=True)
class ServicePrincipal:
    """Enterprise Application identity."""

    object_id: str
    app_id: str
    display_name: str

    @classmethod
    def from_graph(cls, item: Dict[str, Any]) -> "ServicePrincipal":
        return cls(
            object_id=item['id'],
            app_id=item['appId'],
            display_name=item.get('displayName', ''),
        )


def storage_app_display_names(account: StorageAccountName) -> list:
    """Display names the storage Enterprise Application may carry, most specific first."""
    return [
        f"{DISPLAY_NAME_PREFIX} {account.fqdn}",
        f"{DISPLAY_NAME_PREFIX} {account.name}",
    ]


def find_storage_service_principal(graph, account: StorageAccountName) -> ServicePrincipal:
    """
    Find the storage account's Enterprise Application.

    Args:
        graph: GraphClient
        account: Normalized storage account name

    Returns:
        The service principal

    Raises:
        ResourceNotFoundError: If Kerberos auth has not registered the application
    """
    for display_name in storage_app_display_names(account):
        items = graph.get_all(
            "servicePrincipals",
            params={
                "$filter": f"displayName eq '{display_name}'",
                "$select": "id,appId,displayName",
            },
        )
        if items:
            principal = ServicePrincipal.from_graph(items[0])
            logger.info("Found '%s' (appId %s)", principal.display_name, principal.app_id)
            return principal

    raise ResourceNotFoundError(
        f"No Enterprise Application named '{DISPLAY_NAME_PREFIX} {account.fqdn}'. "
        f"Enable Microsoft Entra Kerberos on the storage account first."
    )


def manual_consent_instructions(principal: ServicePrincipal) -> str:
    """Steps the operator completes in the portal after the application exists."""
    return "\n".join([
        "Grant admin consent for the storage account application:",
        "  1. Entra admin center > Identity > Applications > App registrations > All applications",
        f"  2. Open '{principal.display_name}' (appId {principal.app_id})",
        "  3. API permissions > Grant admin consent for <tenant>",
        "  4. Confirm openid, profile and User.Read show 'Granted'",
    ])
