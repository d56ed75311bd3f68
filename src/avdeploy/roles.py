"""
Role Assignment Module

Idempotent Azure RBAC role assignments for the AVD groups.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple

from azure.mgmt.authorization.models import RoleAssignmentCreateParameters

from .exceptions import ResourceNotFoundError

logger = logging.getLogger(__name__)

# (group key, role name, scope key)
DEFAULT_ROLE_PLAN = [
    ("users", "Desktop Virtualization User", "application_group"),
    ("users", "Virtual Machine User Login", "resource_group"),
    ("admins", "Virtual Machine Administrator Login", "resource_group"),
    ("users", "Storage File Data SMB Share Contributor", "storage_account"),
    ("admins", "Storage File Data SMB Share Elevated Contributor", "storage_account"),
]

SCOPE_KEYS = ("subscription", "resource_group", "storage_account", "application_group")


@dataclass(frozen=True)
class RoleAssignmentRequest:
    """A (principal, role, scope) triple."""

    principal_id: str
    role_name: str
    scope: str
    principal_type: str = "Group"


def subscription_scope(subscription_id: str) -> str:
    return f"/subscriptions/{subscription_id}"


def resource_group_scope(subscription_id: str, resource_group: str) -> str:
    return f"{subscription_scope(subscription_id)}/resourceGroups/{resource_group}"


def storage_account_scope(subscription_id: str, resource_group: str, account_name: str) -> str:
    return (
        f"{resource_group_scope(subscription_id, resource_group)}"
        f"/providers/Microsoft.Storage/storageAccounts/{account_name}"
    )


def application_group_scope(subscription_id: str, resource_group: str, app_group: str) -> str:
    return (
        f"{resource_group_scope(subscription_id, resource_group)}"
        f"/providers/Microsoft.DesktopVirtualization/applicationGroups/{app_group}"
    )


def build_scopes(subscription_id: str, resource_group: str,
                 storage_account: Optional[str] = None,
                 application_group: Optional[str] = None) -> Dict[str, str]:
    """Map scope keys used in configuration to ARM scope paths."""
    scopes = {
        "subscription": subscription_scope(subscription_id),
        "resource_group": resource_group_scope(subscription_id, resource_group),
    }
    if storage_account:
        scopes["storage_account"] = storage_account_scope(
            subscription_id, resource_group, storage_account
        )
    if application_group:
        scopes["application_group"] = application_group_scope(
            subscription_id, resource_group, application_group
        )
    return scopes


def build_role_plan(groups: Dict[str, str], scopes: Dict[str, str],
                    assignments: Optional[List[Dict[str, Any]]] = None) -> List[RoleAssignmentRequest]:
    """
    Turn a role plan into concrete requests.

    Args:
        groups: Group key ('users', 'admins', 'devices') to object id
        scopes: Scope key to ARM scope path
        assignments: Entries with 'group', 'role' and 'scope' keys
            (defaults to DEFAULT_ROLE_PLAN)

    Returns:
        Requests for every entry whose group and scope are known
    """
    if assignments is None:
        entries = [{"group": g, "role": r, "scope": s} for g, r, s in DEFAULT_ROLE_PLAN]
    else:
        entries = assignments

    plan = []
    for entry in entries:
        principal_id = groups.get(entry['group'])
        scope = scopes.get(entry['scope'])
        if not principal_id or not scope:
            logger.warning(
                "Skipping '%s' for group '%s': group or scope '%s' not resolved",
                entry['role'], entry['group'], entry['scope'],
            )
            continue
        plan.append(RoleAssignmentRequest(principal_id, entry['role'], scope))
    return plan


def _definition_guid(role_definition_id: str) -> str:
    return role_definition_id.rstrip('/').split('/')[-1].lower()


class RoleAssigner:
    """Create role assignments unless an identical one already exists."""

    def __init__(self, authorization_client):
        """
        Initialize the RoleAssigner.

        Args:
            authorization_client: azure.mgmt.authorization.AuthorizationManagementClient
        """
        self.client = authorization_client
        self._definitions: Dict[Tuple[str, str], str] = {}

    def get_role_definition_id(self, role_name: str, scope: str) -> str:
        """Resolve a built-in or custom role name to its definition id."""
        key = (role_name.lower(), scope.lower())
        if key not in self._definitions:
            definitions = list(self.client.role_definitions.list(
                scope, filter=f"roleName eq '{role_name}'"
            ))
            if not definitions:
                raise ResourceNotFoundError(f"Role definition '{role_name}' not found at {scope}")
            self._definitions[key] = definitions[0].id
        return self._definitions[key]

    def find_assignment(self, principal_id: str, role_definition_id: str, scope: str):
        """Return the existing assignment with this exact triple, or None."""
        wanted_role = _definition_guid(role_definition_id)
        wanted_scope = scope.rstrip('/').lower()

        for assignment in self.client.role_assignments.list_for_scope(
            scope, filter=f"principalId eq '{principal_id}'"
        ):
            if (assignment.principal_id == principal_id
                    and _definition_guid(assignment.role_definition_id) == wanted_role
                    and (assignment.scope or '').rstrip('/').lower() == wanted_scope):
                return assignment
        return None

    def assign(self, request: RoleAssignmentRequest) -> bool:
        """
        Assign a role to a principal at a scope.

        Errors from Azure propagate to the caller.

        Args:
            request: The (principal, role, scope) triple

        Returns:
            True if an assignment was created, False if it already existed
        """
        role_definition_id = self.get_role_definition_id(request.role_name, request.scope)

        if self.find_assignment(request.principal_id, role_definition_id, request.scope):
            logger.info(
                "'%s' already assigned to %s at %s",
                request.role_name, request.principal_id, request.scope,
            )
            return False

        self.client.role_assignments.create(
            request.scope,
            str(uuid.uuid4()),
            RoleAssignmentCreateParameters(
                role_definition_id=role_definition_id,
                principal_id=request.principal_id,
                principal_type=request.principal_type,
            ),
        )
        logger.info(
            "Assigned '%s' to %s at %s",
            request.role_name, request.principal_id, request.scope,
        )
        return True

    def assign_many(self, requests: List[RoleAssignmentRequest]) -> List[Tuple[RoleAssignmentRequest, bool]]:
        """Assign every request in order, stopping at the first error."""
        return [(request, self.assign(request)) for request in requests]
